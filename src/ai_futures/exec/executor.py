"""Market order execution with side resolution and margin-shrink retries."""

from __future__ import annotations

from dataclasses import dataclass

from ai_futures.ai.schemas import Decision
from ai_futures.errors import MarginInsufficientError
from ai_futures.exchange.base import ExchangeGateway
from ai_futures.risk.normalizer import is_valid_price
from ai_futures.risk.sizing import floor_to_increment
from ai_futures.types import ExecutionResult, OrderSide, PosSide, PositionSnapshot
from ai_futures.utils.logging import get_logger, log_order_execution


@dataclass(slots=True, frozen=True)
class SideResolution:
    """Order side and position side for one BUY/SELL against live state."""

    side: OrderSide
    pos_side: PosSide
    reduce_only: bool
    position: PositionSnapshot | None = None

    @property
    def adding(self) -> bool:
        return self.position is not None and not self.reduce_only


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Bounded shrink-and-resubmit policy for margin rejections."""

    shrink_factor: float = 0.8
    max_retries: int = 2
    min_size: float = 0.01
    lot_size: float = 0.01


def resolve_side(action: str, position: PositionSnapshot | None) -> SideResolution:
    """Map an action onto order side, position side and reduce-only.

    Same direction as an open position adds to it; the opposite direction
    only reduces it and never opens the other side.
    """
    if action not in ("BUY", "SELL"):
        raise ValueError(f"unsupported_order_action: {action}")
    side: OrderSide = "buy" if action == "BUY" else "sell"
    if position is None or position.size_contracts <= 0:
        pos_side: PosSide = "long" if action == "BUY" else "short"
        return SideResolution(side=side, pos_side=pos_side, reduce_only=False)
    opening_side: OrderSide = "buy" if position.side == "long" else "sell"
    return SideResolution(
        side=side,
        pos_side=position.side,
        reduce_only=side != opening_side,
        position=position,
    )


class OrderExecutor:
    """ResolveSide -> SetLeverage -> PlaceOrder, with ShrinkRetry on margin rejection."""

    def __init__(self, gateway: ExchangeGateway, policy: RetryPolicy) -> None:
        self._gateway = gateway
        self._policy = policy
        self._logger = get_logger("ai_futures.exec.executor")

    def execute(self, instrument: str, decision: Decision, leverage: float) -> ExecutionResult:
        """Execute a sized BUY/SELL decision.

        Leverage failures and non-margin rejections propagate unchanged.
        ``MarginInsufficientError`` propagates once the retry budget is spent.
        """
        if decision.size is None or decision.size <= 0:
            raise ValueError("order_size_must_be_positive")

        resolution = resolve_side(decision.action, self._gateway.get_position(instrument))
        size = decision.size
        notes: list[str] = []
        held = resolution.position
        if resolution.reduce_only and held is not None and size > held.size_contracts:
            notes.append(f"reduce_size_capped_to_position: {size} -> {held.size_contracts}")
            size = held.size_contracts

        self._gateway.set_leverage(instrument, leverage, resolution.pos_side)

        stop_loss = take_profit = None
        if not resolution.reduce_only:
            stop_loss = decision.stop_loss if is_valid_price(decision.stop_loss) else None
            take_profit = decision.take_profit if is_valid_price(decision.take_profit) else None

        filled_size, order_id = self._place_with_retry(
            instrument,
            resolution,
            size,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        if filled_size != size:
            notes.append(f"size_shrunk_after_margin_rejection: {size} -> {filled_size}")
        return ExecutionResult(
            accepted=True,
            applied_action=decision.action,
            applied_size_contracts=filled_size,
            applied_stop_loss=stop_loss,
            applied_take_profit=take_profit,
            order_id=order_id,
            notes=notes,
        )

    def _place_with_retry(
        self,
        instrument: str,
        resolution: SideResolution,
        size: float,
        *,
        stop_loss: float | None,
        take_profit: float | None,
    ) -> tuple[float, str]:
        retries = 0
        current = size
        while True:
            try:
                order_id = self._gateway.place_market_order(
                    instrument,
                    side=resolution.side,
                    pos_side=resolution.pos_side,
                    size=current,
                    reduce_only=resolution.reduce_only,
                    stop_loss=stop_loss,
                    take_profit=take_profit,
                )
            except MarginInsufficientError as exc:
                log_order_execution(
                    self._logger,
                    instrument=instrument,
                    side=resolution.side,
                    pos_side=resolution.pos_side,
                    size=current,
                    reduce_only=resolution.reduce_only,
                    status="rejected",
                    code=exc.code,
                    attempt=retries + 1,
                )
                if retries >= self._policy.max_retries:
                    raise
                shrunk = floor_to_increment(
                    current * self._policy.shrink_factor,
                    self._policy.lot_size,
                )
                if shrunk < self._policy.min_size:
                    raise MarginInsufficientError(
                        exc.code,
                        f"shrunk size {shrunk} below minimum {self._policy.min_size}",
                        operation="place_market_order",
                    ) from exc
                retries += 1
                current = shrunk
                continue

            log_order_execution(
                self._logger,
                instrument=instrument,
                side=resolution.side,
                pos_side=resolution.pos_side,
                size=current,
                reduce_only=resolution.reduce_only,
                order_id=order_id,
                status="accepted",
                attempt=retries + 1,
            )
            return current, order_id
