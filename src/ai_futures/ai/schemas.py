"""Decision schema and strict parsing of untrusted model output."""

from __future__ import annotations

import json
import math
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ai_futures.errors import DecisionParseError

TradeAction = Literal["BUY", "SELL", "CLOSE", "UPDATE_TPSL", "HOLD"]

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


class Decision(BaseModel):
    """One trade recommendation.

    Numeric fields are untrusted: anything that is not a finite number is
    stored as ``None`` and treated as absent downstream.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    action: TradeAction
    size: float | None = None
    leverage: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=100.0)
    rationale: str = ""

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("size", "leverage", "stop_loss", "take_profit", mode="before")
    @classmethod
    def coerce_number(cls, v: Any) -> float | None:
        return coerce_float(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> float | None:
        value = coerce_float(v)
        if value is None:
            return None
        return min(100.0, max(0.0, value))

    @field_validator("rationale", mode="before")
    @classmethod
    def coerce_rationale(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v)[:4000]

    @classmethod
    def hold(cls, reason: str) -> "Decision":
        """Construct a conservative no-op decision."""
        return cls(action="HOLD", rationale=reason)

    def with_action(self, action: TradeAction, *, note: str | None = None) -> "Decision":
        """Return a copy with a different action and an appended audit note."""
        rationale = self.rationale
        if note:
            rationale = f"{rationale} [{note}]".strip()
        return self.model_copy(update={"action": action, "rationale": rationale})


def coerce_float(value: Any) -> float | None:
    """Read a finite float from loosely typed model output."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").rstrip("%").strip()
        for suffix in ("USDT", "U", "x", "X", "张"):
            if cleaned.endswith(suffix):
                cleaned = cleaned[: -len(suffix)].strip()
        if not _NUMBER_RE.match(cleaned):
            return None
        number = float(cleaned)
        return number if math.isfinite(number) else None
    return None


def parse_decision(payload: dict[str, Any]) -> Decision:
    """Validate a decoded model payload.

    Accepts either a flat object or the nested ``trading_decision`` layout.
    Raises DecisionParseError on anything that cannot yield a valid action.
    """
    nested = payload.get("trading_decision")
    source: dict[str, Any] = nested if isinstance(nested, dict) else payload
    fields = {
        "action": source.get("action", payload.get("action")),
        "size": _first_present(source, "position_size", "size"),
        "leverage": source.get("leverage"),
        "stop_loss": source.get("stop_loss"),
        "take_profit": _first_present(source, "profit_target", "take_profit"),
        "confidence": source.get("confidence"),
        "rationale": payload.get("reasoning", source.get("reasoning", "")),
    }
    if fields["action"] is None:
        raise DecisionParseError("decision_missing_action")
    try:
        return Decision.model_validate(fields)
    except ValidationError as exc:
        raise DecisionParseError(f"schema_validation_error: {exc.errors()[0]['msg']}") from exc


def parse_decision_text(text: str) -> Decision:
    """Parse model text response. Any failure becomes HOLD."""
    try:
        return parse_decision(_extract_json_obj(text))
    except (ValueError, DecisionParseError) as exc:
        return Decision.hold(f"invalid_model_response: {exc}")


def _first_present(source: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in source:
            return source[key]
    return None


def _extract_json_obj(text: str) -> dict[str, Any]:
    """Extract the first JSON object from plain text or fenced content."""
    stripped = text.strip()
    if stripped.startswith("{") and stripped.endswith("}"):
        decoded = json.loads(stripped)
        if isinstance(decoded, dict):
            return decoded
        raise ValueError("model_response_json_not_object")

    fenced_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", stripped, re.DOTALL)
    if fenced_match:
        decoded = json.loads(fenced_match.group(1))
        if isinstance(decoded, dict):
            return decoded
        raise ValueError("model_response_json_not_object")

    brace_match = re.search(r"\{.*\}", stripped, re.DOTALL)
    if brace_match:
        decoded = json.loads(brace_match.group(0))
        if isinstance(decoded, dict):
            return decoded
        raise ValueError("model_response_json_not_object")

    raise ValueError("model_response_not_json")
