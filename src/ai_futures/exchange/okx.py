"""OKX V5 REST client for perpetual swaps in long/short position mode."""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ai_futures.config import Settings
from ai_futures.errors import ExchangeRejectionError, ExchangeTransportError, classify_rejection
from ai_futures.exchange.base import effective_triggers
from ai_futures.exchange.signing import OkxHmacSigner, RequestSigner
from ai_futures.types import (
    AccountSnapshot,
    AlgoKind,
    AlgoOrder,
    OrderSide,
    PosSide,
    PositionSnapshot,
)
from ai_futures.utils.logging import get_logger


def format_decimal(value: float) -> str:
    """Plain decimal string without exponent or trailing zeros."""
    text = format(Decimal(str(value)).normalize(), "f")
    return text if text not in ("", "-0") else "0"


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class OkxClient:
    """Signed OKX REST client implementing the exchange gateway.

    Private calls are issued exactly once; only public market reads retry on
    transport errors.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        signer: RequestSigner | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings
        self._logger = get_logger("ai_futures.exchange.okx")
        self._signer = signer or OkxHmacSigner(
            settings.okx_api_key,
            settings.okx_secret_key,
            settings.okx_passphrase,
            simulated=settings.okx_simulated_trading,
        )
        self._client = http_client or httpx.Client(
            base_url=settings.okx_base_url,
            timeout=settings.okx_timeout,
        )

    def close(self) -> None:
        self._client.close()

    # ==================== transport ====================

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | list[dict[str, Any]] | None = None,
        signed: bool = True,
        operation: str = "",
    ) -> list[Any]:
        request_path = path
        if params:
            request_path = f"{path}?{urlencode(params)}"
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""
        headers = (
            self._signer.headers(method, request_path, body)
            if signed
            else {"Content-Type": "application/json"}
        )
        try:
            response = self._client.request(
                method,
                request_path,
                content=body or None,
                headers=headers,
            )
            decoded = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ExchangeTransportError(f"{operation or path}: {exc}") from exc
        if not isinstance(decoded, dict):
            raise ExchangeTransportError(f"{operation or path}: unexpected_response_shape")
        return _unwrap_envelope(decoded, operation or path)

    @retry(
        retry=retry_if_exception_type(ExchangeTransportError),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def public_get(self, path: str, params: dict[str, Any]) -> list[Any]:
        """Unsigned market-data GET. Rows are objects, or arrays for candles."""
        return self._request("GET", path, params=params, signed=False)

    # ==================== account reads ====================

    def get_account(self) -> AccountSnapshot:
        data = self._request(
            "GET",
            "/api/v5/account/balance",
            params={"ccy": "USDT"},
            operation="get_balance",
        )
        if not data:
            return AccountSnapshot(total_equity=0.0, available_equity=0.0)
        details = data[0].get("details") or [{}]
        usdt = details[0] if isinstance(details[0], dict) else {}
        total = _as_float(usdt.get("eq"), _as_float(data[0].get("totalEq")))
        available = _as_float(usdt.get("availEq"), _as_float(usdt.get("availBal")))
        return AccountSnapshot(total_equity=total, available_equity=available)

    def get_positions(self, instruments: list[str]) -> list[PositionSnapshot]:
        wanted = set(instruments)
        raw = self._request(
            "GET",
            "/api/v5/account/positions",
            params={"instType": "SWAP"},
            operation="get_positions",
        )
        relevant = [
            row for row in raw if row.get("instId") in wanted and abs(_as_float(row.get("pos"))) > 0
        ]
        algos: dict[str, list[AlgoOrder]] = {}
        for inst_id in sorted({str(row["instId"]) for row in relevant}):
            algos[inst_id] = self.pending_conditional_orders(inst_id)
        return [_position_from_row(row, algos.get(str(row["instId"]), [])) for row in relevant]

    def get_position(self, instrument: str) -> PositionSnapshot | None:
        raw = self._request(
            "GET",
            "/api/v5/account/positions",
            params={"instId": instrument},
            operation="get_position",
        )
        open_rows = [row for row in raw if abs(_as_float(row.get("pos"))) > 0]
        if not open_rows:
            return None
        return _position_from_row(open_rows[0], self.pending_conditional_orders(instrument))

    def pending_conditional_orders(self, instrument: str) -> list[AlgoOrder]:
        raw = self._request(
            "GET",
            "/api/v5/trade/orders-algo-pending",
            params={"instType": "SWAP", "instId": instrument, "ordType": "conditional,oco"},
            operation="pending_algos",
        )
        orders: list[AlgoOrder] = []
        for row in raw:
            pos_side = row.get("posSide")
            if pos_side not in ("long", "short"):
                continue
            for kind, key in (("SL", "slTriggerPx"), ("TP", "tpTriggerPx")):
                trigger = _as_float(row.get(key))
                if trigger > 0:
                    orders.append(
                        AlgoOrder(
                            algo_id=str(row.get("algoId", "")),
                            instrument=str(row.get("instId", instrument)),
                            pos_side=pos_side,
                            trigger_price=trigger,
                            kind=kind,  # type: ignore[arg-type]
                        )
                    )
        return orders

    def ensure_long_short_mode(self) -> None:
        """Switch the account to long/short position mode when needed."""
        data = self._request("GET", "/api/v5/account/config", operation="account_config")
        if data and data[0].get("posMode") == "long_short_mode":
            return
        current = data[0].get("posMode") if data else None
        self._logger.info("switching_position_mode", current=current)
        self._request(
            "POST",
            "/api/v5/account/set-position-mode",
            payload={"posMode": "long_short_mode"},
            operation="set_position_mode",
        )

    # ==================== writes ====================

    def set_leverage(self, instrument: str, leverage: float, pos_side: PosSide) -> None:
        payload: dict[str, Any] = {
            "instId": instrument,
            "lever": format_decimal(leverage),
            "mgnMode": self._settings.okx_margin_mode,
        }
        if self._settings.okx_margin_mode == "isolated":
            payload["posSide"] = pos_side
        self._request(
            "POST",
            "/api/v5/account/set-leverage",
            payload=payload,
            operation="set_leverage",
        )

    def place_market_order(
        self,
        instrument: str,
        *,
        side: OrderSide,
        pos_side: PosSide,
        size: float,
        reduce_only: bool,
        stop_loss: float | None = None,
        take_profit: float | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "instId": instrument,
            "tdMode": self._settings.okx_margin_mode,
            "side": side,
            "posSide": pos_side,
            "ordType": "market",
            "sz": format_decimal(size),
            "reduceOnly": reduce_only,
        }
        attached: dict[str, str] = {}
        if take_profit is not None:
            attached.update({"tpTriggerPx": format_decimal(take_profit), "tpOrdPx": "-1"})
        if stop_loss is not None:
            attached.update({"slTriggerPx": format_decimal(stop_loss), "slOrdPx": "-1"})
        if attached and not reduce_only:
            payload["attachAlgoOrds"] = [attached]
        data = self._request(
            "POST",
            "/api/v5/trade/order",
            payload=payload,
            operation="place_order",
        )
        return str(data[0].get("ordId", "")) if data else ""

    def place_conditional_order(
        self,
        instrument: str,
        *,
        pos_side: PosSide,
        size: float,
        trigger_price: float,
        kind: AlgoKind,
    ) -> str:
        prefix = "sl" if kind == "SL" else "tp"
        payload = {
            "instId": instrument,
            "posSide": pos_side,
            "tdMode": self._settings.okx_margin_mode,
            "side": "sell" if pos_side == "long" else "buy",
            "ordType": "conditional",
            "sz": format_decimal(size),
            "reduceOnly": True,
            f"{prefix}TriggerPx": format_decimal(trigger_price),
            f"{prefix}OrdPx": "-1",
        }
        data = self._request(
            "POST",
            "/api/v5/trade/order-algo",
            payload=payload,
            operation=f"place_{prefix}_algo",
        )
        return str(data[0].get("algoId", "")) if data else ""

    def cancel_conditional_orders(self, instrument: str, algo_ids: list[str]) -> None:
        if not algo_ids:
            return
        self._request(
            "POST",
            "/api/v5/trade/cancel-algos",
            payload=[{"algoId": algo_id, "instId": instrument} for algo_id in algo_ids],
            operation="cancel_algos",
        )

    def close_position(self, instrument: str, pos_side: PosSide) -> None:
        self._request(
            "POST",
            "/api/v5/trade/close-position",
            payload={
                "instId": instrument,
                "posSide": pos_side,
                "mgnMode": self._settings.okx_margin_mode,
            },
            operation=f"close_{pos_side}",
        )

    def add_margin(self, instrument: str, pos_side: PosSide, amount: float) -> None:
        """Move ``amount`` USDT into an isolated position's margin."""
        if amount <= 0:
            raise ValueError("margin_amount_must_be_positive")
        self._request(
            "POST",
            "/api/v5/account/position/margin-balance",
            payload={
                "instId": instrument,
                "posSide": pos_side,
                "type": "add",
                "amt": format_decimal(amount),
            },
            operation="add_margin",
        )


def _unwrap_envelope(decoded: dict[str, Any], operation: str) -> list[Any]:
    """Return ``data`` or raise the rejection for the most specific code present.

    OKX reports per-item failures with a top-level ``code`` of ``1`` (or
    ``2`` for batch endpoints) and the real reason in ``data[i].sCode``.
    """
    code = str(decoded.get("code", ""))
    message = str(decoded.get("msg", ""))
    raw_data = decoded.get("data")
    data: list[Any] = raw_data if isinstance(raw_data, list) else []

    failed_item = next(
        (
            row
            for row in data
            if isinstance(row, dict) and str(row.get("sCode", "0")) not in ("0", "")
        ),
        None,
    )
    if code == "0" and failed_item is None:
        return data
    if failed_item is not None:
        item_code = str(failed_item.get("sCode"))
        item_message = str(failed_item.get("sMsg") or message)
        raise classify_rejection(item_code, item_message, operation=operation)
    if not code:
        raise ExchangeRejectionError("unknown", "missing_response_code", operation=operation)
    raise classify_rejection(code, message, operation=operation)


def _position_from_row(row: dict[str, Any], algos: list[AlgoOrder]) -> PositionSnapshot:
    pos_side = row.get("posSide")
    size = _as_float(row.get("pos"))
    if pos_side not in ("long", "short"):
        # net mode reports the direction through the sign of pos
        pos_side = "long" if size >= 0 else "short"
    stop, take = effective_triggers(
        pos_side,
        ((order.kind, order.trigger_price) for order in algos if order.pos_side == pos_side),
    )
    return PositionSnapshot(
        instrument=str(row.get("instId", "")),
        side=pos_side,
        size_contracts=abs(size),
        entry_price=_as_float(row.get("avgPx")),
        margin=_as_float(row.get("margin")),
        current_stop_loss=stop,
        current_take_profit=take,
        breakeven_price=_as_float(row.get("bePx") or row.get("breakEvenPx")),
        leverage=_as_float(row.get("lever")),
        unrealized_pnl=_as_float(row.get("upl")),
    )
