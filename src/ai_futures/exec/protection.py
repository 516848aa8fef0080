"""Place-before-cancel replacement of stop-loss/take-profit trigger orders."""

from __future__ import annotations

from typing import Iterable

from ai_futures.exchange.base import ExchangeGateway
from ai_futures.risk.normalizer import is_valid_price
from ai_futures.types import AlgoKind, AlgoOrder, ExecutionResult, PositionSnapshot
from ai_futures.utils.logging import get_logger, log_protection_update


class ProtectiveOrderReconciler:
    """Swap SL/TP triggers so the position always has its old or new protection.

    New triggers are placed first. Old triggers for the same instrument and
    side are cancelled only after every placement succeeded; a placement
    failure propagates and leaves the old triggers in place.

    Only triggers of the kinds being replaced are cancelled. When one pending
    order carries both kinds (an attached SL/TP pair) and only one kind is
    replaced, the other trigger is re-placed on its own before the cancel.
    """

    def __init__(self, gateway: ExchangeGateway) -> None:
        self._gateway = gateway
        self._logger = get_logger("ai_futures.exec.protection")

    def replace(
        self,
        position: PositionSnapshot,
        *,
        stop_loss: float | None,
        take_profit: float | None,
    ) -> ExecutionResult:
        instrument = position.instrument
        targets: list[tuple[AlgoKind, float]] = []
        if stop_loss is not None and is_valid_price(stop_loss):
            targets.append(("SL", stop_loss))
        if take_profit is not None and is_valid_price(take_profit):
            targets.append(("TP", take_profit))

        if not targets:
            return ExecutionResult(
                accepted=True,
                applied_action="UPDATE_TPSL",
                notes=["no_new_trigger_prices"],
            )

        pending = [
            order
            for order in self._gateway.pending_conditional_orders(instrument)
            if order.pos_side == position.side
        ]
        replaced_kinds = {kind for kind, _ in targets}
        stale = _unique_ids(order for order in pending if order.kind in replaced_kinds)
        carried = [
            (order.kind, order.trigger_price)
            for order in pending
            if order.algo_id in stale and order.kind not in replaced_kinds
        ]

        placed: list[str] = []
        for kind, trigger in [*targets, *carried]:
            placed.append(
                self._gateway.place_conditional_order(
                    instrument,
                    pos_side=position.side,
                    size=position.size_contracts,
                    trigger_price=trigger,
                    kind=kind,
                )
            )

        if stale:
            self._gateway.cancel_conditional_orders(instrument, stale)

        log_protection_update(
            self._logger,
            instrument=instrument,
            pos_side=position.side,
            stop_loss=stop_loss,
            take_profit=take_profit,
            placed=placed,
            cancelled=stale,
            carried=len(carried),
        )
        notes = [f"cancelled_{len(stale)}_stale_triggers"]
        if carried:
            notes.append(f"carried_{len(carried)}_unchanged_triggers")
        return ExecutionResult(
            accepted=True,
            applied_action="UPDATE_TPSL",
            applied_size_contracts=position.size_contracts,
            applied_stop_loss=stop_loss if is_valid_price(stop_loss) else None,
            applied_take_profit=take_profit if is_valid_price(take_profit) else None,
            order_id=",".join(placed),
            notes=notes,
        )


def _unique_ids(orders: Iterable[AlgoOrder]) -> list[str]:
    seen: list[str] = []
    for order in orders:
        if order.algo_id not in seen:
            seen.append(order.algo_id)
    return seen
