"""Dispatch planned decisions to the executor, reconciler and close resolver."""

from __future__ import annotations

import threading

from ai_futures.config import Settings
from ai_futures.errors import TradingError
from ai_futures.exchange.base import ExchangeGateway
from ai_futures.exec.close import CloseResolver
from ai_futures.exec.executor import OrderExecutor, RetryPolicy
from ai_futures.exec.protection import ProtectiveOrderReconciler
from ai_futures.risk.normalizer import normalize_decision
from ai_futures.risk.planner import TradePlan
from ai_futures.types import ExecutionResult
from ai_futures.utils.logging import get_logger


class ExecutionService:
    """Serialized per-instrument execution of trade plans.

    Writes for one instrument never interleave; different instruments may
    execute from different threads. Exchange failures end up as a rejected
    ``ExecutionResult`` rather than an exception.
    """

    def __init__(self, gateway: ExchangeGateway, settings: Settings) -> None:
        self._gateway = gateway
        self._executor = OrderExecutor(
            gateway,
            RetryPolicy(
                shrink_factor=settings.margin_shrink_factor,
                max_retries=settings.max_margin_retries,
                min_size=settings.min_order_size,
                lot_size=settings.lot_size,
            ),
        )
        self._reconciler = ProtectiveOrderReconciler(gateway)
        self._closer = CloseResolver(gateway)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._logger = get_logger("ai_futures.exec.service")

    def execute(self, plan: TradePlan) -> ExecutionResult:
        decision = plan.decision
        if decision.action == "HOLD":
            return ExecutionResult(accepted=True, applied_action="HOLD", notes=list(plan.notes))

        with self._lock_for(plan.instrument):
            try:
                result = self._dispatch(plan)
            except TradingError as exc:
                self._logger.error(
                    "execution_failed",
                    instrument=plan.instrument,
                    action=decision.action,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return ExecutionResult(
                    accepted=False,
                    applied_action=decision.action,
                    error=f"{type(exc).__name__}: {exc}",
                    notes=list(plan.notes),
                )
        result.notes[:0] = plan.notes
        return result

    def _dispatch(self, plan: TradePlan) -> ExecutionResult:
        decision = plan.decision
        if decision.action == "CLOSE":
            return self._closer.close(plan.instrument)

        if decision.action == "UPDATE_TPSL":
            # Ratchet is checked again against the position as it is now.
            position = self._gateway.get_position(plan.instrument)
            normalized = normalize_decision(decision, position)
            if normalized.decision.action != "UPDATE_TPSL" or position is None:
                return ExecutionResult(
                    accepted=True,
                    applied_action="HOLD",
                    notes=[normalized.note or "position_changed"],
                )
            return self._reconciler.replace(
                position,
                stop_loss=decision.stop_loss,
                take_profit=decision.take_profit,
            )

        return self._executor.execute(plan.instrument, decision, plan.leverage)

    def _lock_for(self, instrument: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(instrument)
            if lock is None:
                lock = threading.Lock()
                self._locks[instrument] = lock
            return lock
