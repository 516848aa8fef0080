"""Decision normalization against live position state."""

from __future__ import annotations

import math
from dataclasses import dataclass

from ai_futures.ai.schemas import Decision
from ai_futures.types import PositionSnapshot


@dataclass(slots=True, frozen=True)
class NormalizedDecision:
    """Decision after safety overrides, with the reason for any override."""

    decision: Decision
    original_action: str
    note: str | None = None

    @property
    def overridden(self) -> bool:
        return self.decision.action != self.original_action


def is_valid_price(value: float | None) -> bool:
    """True for a finite, strictly positive price."""
    return value is not None and math.isfinite(value) and value > 0


def ratchet_violation(position: PositionSnapshot, proposed_stop: float) -> str | None:
    """Return a reason when moving the stop would give back protected profit."""
    current = position.current_stop_loss
    if not is_valid_price(current):
        return None
    if position.side == "long" and proposed_stop < current:
        return f"ratchet_blocked: long stop {current} -> {proposed_stop} would loosen protection"
    if position.side == "short" and proposed_stop > current:
        return f"ratchet_blocked: short stop {current} -> {proposed_stop} would loosen protection"
    return None


def normalize_decision(
    decision: Decision,
    position: PositionSnapshot | None,
) -> NormalizedDecision:
    """Apply position-aware overrides. Never raises.

    ``UPDATE_TPSL`` is downgraded to ``HOLD`` when there is no position to
    protect, when neither trigger is a usable price, or when the stop-loss
    would move against the ratchet. An add to an existing position keeps its
    action but loses a stop-loss that sits behind the current one.
    """
    original = decision.action
    if decision.action in ("BUY", "SELL"):
        return _normalize_entry(decision, position)
    if decision.action != "UPDATE_TPSL":
        return NormalizedDecision(decision=decision, original_action=original)

    if position is None or position.size_contracts <= 0:
        note = "update_tpsl_without_position"
        return NormalizedDecision(decision.with_action("HOLD", note=note), original, note)

    has_stop = is_valid_price(decision.stop_loss)
    has_take_profit = is_valid_price(decision.take_profit)
    if not has_stop and not has_take_profit:
        note = "update_tpsl_without_valid_prices"
        return NormalizedDecision(decision.with_action("HOLD", note=note), original, note)

    if has_stop and decision.stop_loss is not None:
        violation = ratchet_violation(position, decision.stop_loss)
        if violation is not None:
            return NormalizedDecision(
                decision.with_action("HOLD", note=violation),
                original,
                violation,
            )

    return NormalizedDecision(decision=decision, original_action=original)


def _normalize_entry(decision: Decision, position: PositionSnapshot | None) -> NormalizedDecision:
    # An add carries its own attached stop; it must not sit behind the current one.
    original = decision.action
    if position is None or position.size_contracts <= 0:
        return NormalizedDecision(decision=decision, original_action=original)
    adding = (position.side == "long") == (decision.action == "BUY")
    stop = decision.stop_loss
    if not adding or stop is None or not is_valid_price(stop):
        return NormalizedDecision(decision=decision, original_action=original)
    violation = ratchet_violation(position, stop)
    if violation is None:
        return NormalizedDecision(decision=decision, original_action=original)
    stripped = decision.model_copy(
        update={"stop_loss": None, "rationale": f"{decision.rationale} [{violation}]".strip()}
    )
    return NormalizedDecision(decision=stripped, original_action=original, note=violation)
