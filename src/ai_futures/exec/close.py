"""CLOSE handling for accounts in long/short position mode."""

from __future__ import annotations

from ai_futures.errors import (
    AmbiguousPositionError,
    ExchangeRejectionError,
    PositionNotFoundError,
)
from ai_futures.exchange.base import ExchangeGateway
from ai_futures.types import ExecutionResult, PosSide
from ai_futures.utils.logging import get_logger

_CLOSE_ORDER: tuple[PosSide, ...] = ("long", "short")


class CloseResolver:
    """Close whichever side of an instrument is open.

    Tries long, then short, one request each, never concurrently. The first
    success wins. Positions may change between the two requests; a fresh
    cycle re-reads state rather than this class retrying.
    """

    def __init__(self, gateway: ExchangeGateway) -> None:
        self._gateway = gateway
        self._logger = get_logger("ai_futures.exec.close")

    def close(self, instrument: str) -> ExecutionResult:
        """Close one side or raise AmbiguousPositionError naming both failures."""
        reasons: dict[PosSide, str] = {}
        for pos_side in _CLOSE_ORDER:
            try:
                self._gateway.close_position(instrument, pos_side)
            except PositionNotFoundError as exc:
                reasons[pos_side] = f"{pos_side}_position_not_found"
                self._logger.info(
                    "close_side_absent",
                    instrument=instrument,
                    pos_side=pos_side,
                    code=exc.code,
                )
                continue
            except ExchangeRejectionError as exc:
                reasons[pos_side] = f"code={exc.code} {exc.message}"
                self._logger.warning(
                    "close_side_rejected",
                    instrument=instrument,
                    pos_side=pos_side,
                    code=exc.code,
                    error=exc.message,
                )
                continue

            self._logger.info("position_closed", instrument=instrument, pos_side=pos_side)
            return ExecutionResult(
                accepted=True,
                applied_action="CLOSE",
                notes=[f"closed_{pos_side}", *(f"{k}: {v}" for k, v in reasons.items())],
            )

        raise AmbiguousPositionError(instrument, reasons["long"], reasons["short"])
