"""Exchange boundary used by the execution core."""

from __future__ import annotations

from typing import Iterable, Protocol

from ai_futures.types import (
    AccountSnapshot,
    AlgoKind,
    AlgoOrder,
    OrderSide,
    PosSide,
    PositionSnapshot,
)


class ExchangeGateway(Protocol):
    """Write and position-read calls the core issues.

    Implementations raise ``ExchangeRejectionError`` subclasses for exchange
    rejections and ``ExchangeTransportError`` for transport failures. Every
    call is a single exchange request; none retries on its own.
    """

    def get_position(self, instrument: str) -> PositionSnapshot | None:
        """Fresh read of the open position on ``instrument``."""

    def set_leverage(self, instrument: str, leverage: float, pos_side: PosSide) -> None:
        """Set isolated leverage for one position side."""

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
        """Submit a market order and return the exchange order id."""

    def place_conditional_order(
        self,
        instrument: str,
        *,
        pos_side: PosSide,
        size: float,
        trigger_price: float,
        kind: AlgoKind,
    ) -> str:
        """Place a reduce-only trigger order and return its algo id."""

    def pending_conditional_orders(self, instrument: str) -> list[AlgoOrder]:
        """List pending SL/TP trigger orders on ``instrument``."""

    def cancel_conditional_orders(self, instrument: str, algo_ids: list[str]) -> None:
        """Cancel trigger orders by id."""

    def close_position(self, instrument: str, pos_side: PosSide) -> None:
        """Market-close the whole position on one side."""


class AccountReader(Protocol):
    """Read-only account calls used by the snapshot provider."""

    def get_account(self) -> AccountSnapshot:
        """Total and available equity in USDT."""

    def get_positions(self, instruments: list[str]) -> list[PositionSnapshot]:
        """Open positions on the given instruments, SL/TP filled from pending algos."""


def effective_triggers(
    pos_side: str, triggers: Iterable[tuple[str, float]]
) -> tuple[float, float]:
    """Return the ``(stop_loss, take_profit)`` pair that fires first.

    With several pending stops on one side the tightest one protects the
    position: the highest for a long, the lowest for a short. Take-profits
    are picked the same way. Missing legs are reported as ``0.0``.
    """
    stops: list[float] = []
    takes: list[float] = []
    for kind, price in triggers:
        if price <= 0:
            continue
        if kind == "SL":
            stops.append(price)
        elif kind == "TP":
            takes.append(price)
    if pos_side == "long":
        return max(stops, default=0.0), min(takes, default=0.0)
    return min(stops, default=0.0), max(takes, default=0.0)
