from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pandas as pd  # type: ignore[import-untyped]
import pytest

from ai_futures.errors import ExchangeRejectionError
from ai_futures.types import AlgoOrder, PositionSnapshot


class FakeGateway:
    """Scriptable in-memory ExchangeGateway that records every call."""

    def __init__(self) -> None:
        self.position: PositionSnapshot | None = None
        self.pending: list[AlgoOrder] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.order_errors: list[ExchangeRejectionError] = []
        self.leverage_error: ExchangeRejectionError | None = None
        self.conditional_error: ExchangeRejectionError | None = None
        self.close_errors: dict[str, ExchangeRejectionError] = {}
        self._seq = 0

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def get_position(self, instrument: str) -> PositionSnapshot | None:
        self.calls.append(("get_position", {"instrument": instrument}))
        return self.position

    def set_leverage(self, instrument: str, leverage: float, pos_side: str) -> None:
        self.calls.append(
            ("set_leverage", {"instrument": instrument, "leverage": leverage, "pos_side": pos_side})
        )
        if self.leverage_error is not None:
            raise self.leverage_error

    def place_market_order(self, instrument: str, **kwargs: Any) -> str:
        self.calls.append(("place_market_order", {"instrument": instrument, **kwargs}))
        if self.order_errors:
            raise self.order_errors.pop(0)
        self._seq += 1
        return f"ord-{self._seq}"

    def place_conditional_order(self, instrument: str, **kwargs: Any) -> str:
        self.calls.append(("place_conditional_order", {"instrument": instrument, **kwargs}))
        if self.conditional_error is not None:
            raise self.conditional_error
        self._seq += 1
        return f"algo-{self._seq}"

    def pending_conditional_orders(self, instrument: str) -> list[AlgoOrder]:
        self.calls.append(("pending_conditional_orders", {"instrument": instrument}))
        return list(self.pending)

    def cancel_conditional_orders(self, instrument: str, algo_ids: list[str]) -> None:
        self.calls.append(
            ("cancel_conditional_orders", {"instrument": instrument, "algo_ids": list(algo_ids)})
        )

    def close_position(self, instrument: str, pos_side: str) -> None:
        self.calls.append(("close_position", {"instrument": instrument, "pos_side": pos_side}))
        error = self.close_errors.get(pos_side)
        if error is not None:
            raise error


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


def make_position(
    side: str = "long",
    *,
    size: float = 1.0,
    entry: float = 3000.0,
    stop: float = 0.0,
    take: float = 0.0,
    instrument: str = "ETH-USDT-SWAP",
) -> PositionSnapshot:
    return PositionSnapshot(
        instrument=instrument,
        side=side,  # type: ignore[arg-type]
        size_contracts=size,
        entry_price=entry,
        current_stop_loss=stop,
        current_take_profit=take,
    )


def make_candles(rows: int = 60, *, start: float = 3000.0, step: float = 1.0) -> pd.DataFrame:
    """Ascending 15m candles on a straight line, high/low one dollar either side."""
    origin = datetime(2024, 1, 1, tzinfo=timezone.utc)
    closes = [start + i * step for i in range(rows)]
    return pd.DataFrame(
        {
            "open_time": [origin + timedelta(minutes=15 * i) for i in range(rows)],
            "open": closes,
            "high": [c + 1.0 for c in closes],
            "low": [c - 1.0 for c in closes],
            "close": closes,
            "volume": [100.0] * rows,
        }
    )
