"""Position sizing with a hard cap independent of the recommendation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from ai_futures.ai.schemas import Decision
from ai_futures.types import RiskStageConfig


@dataclass(slots=True, frozen=True)
class SizingInputs:
    available_equity: float
    price: float
    contract_value: float
    leverage: float
    risk_ratio: float
    cap_ratio: float
    modifier: float = 1.0
    proposed_size: float | None = None
    cap_leverage: float | None = None


@dataclass(slots=True, frozen=True)
class SizingResult:
    """Final contract count plus the numbers it was derived from."""

    contracts: float
    algo_contracts: float
    hard_cap: float
    source: str
    capped: bool
    no_op: bool = False
    reason: str | None = None


def floor_to_increment(value: float, increment: float) -> float:
    """Round down to a multiple of ``increment``."""
    if not math.isfinite(value) or value <= 0 or increment <= 0:
        return 0.0
    step = Decimal(str(increment))
    steps = (Decimal(str(value)) / step).to_integral_value(rounding=ROUND_DOWN)
    return float(steps * step)


def contracts_for_margin(
    equity: float,
    ratio: float,
    leverage: float,
    contract_value: float,
    price: float,
) -> float:
    """Contracts whose notional equals ``equity * ratio * leverage``."""
    values = (equity, ratio, leverage, contract_value, price)
    if not all(math.isfinite(v) for v in values):
        return 0.0
    if equity <= 0 or ratio <= 0 or leverage <= 0 or contract_value <= 0 or price <= 0:
        return 0.0
    return (equity * ratio * leverage) / (contract_value * price)


def compute_position_size(
    inputs: SizingInputs,
    *,
    min_size: float,
    lot_size: float,
) -> SizingResult:
    """Size an order.

    The proposed size is preferred when it is a finite positive number, but
    the result never exceeds the cap derived from available equity, cap ratio
    and leverage, with leverage bounded by ``cap_leverage`` when given.
    A result below ``min_size`` is a clamp to zero.
    """
    modifier = inputs.modifier if math.isfinite(inputs.modifier) and inputs.modifier > 0 else 0.0
    algo = contracts_for_margin(
        inputs.available_equity,
        inputs.risk_ratio * modifier,
        inputs.leverage,
        inputs.contract_value,
        inputs.price,
    )
    cap_leverage = inputs.leverage
    if inputs.cap_leverage is not None:
        cap_leverage = min(inputs.leverage, inputs.cap_leverage)
    hard_cap = contracts_for_margin(
        inputs.available_equity,
        inputs.cap_ratio,
        cap_leverage,
        inputs.contract_value,
        inputs.price,
    )

    proposed = inputs.proposed_size
    if proposed is not None and math.isfinite(proposed) and proposed > 0:
        candidate, source = proposed, "proposed"
    else:
        candidate, source = algo, "algorithmic"

    final = floor_to_increment(min(candidate, hard_cap), lot_size)
    if final < min_size:
        return SizingResult(
            contracts=0.0,
            algo_contracts=algo,
            hard_cap=hard_cap,
            source=source,
            capped=candidate > hard_cap,
            no_op=True,
            reason=f"size_below_minimum: {final} < {min_size}",
        )
    return SizingResult(
        contracts=final,
        algo_contracts=algo,
        hard_cap=hard_cap,
        source=source,
        capped=candidate > hard_cap,
        reason="capped_by_hard_limit" if candidate > hard_cap else None,
    )


def resolve_leverage(proposed: float | None, stage: RiskStageConfig, max_leverage: float) -> float:
    """Clamp a proposed leverage to ``[1, max_leverage]``, defaulting to the stage."""
    if proposed is None or not math.isfinite(proposed) or proposed <= 0:
        return stage.leverage
    return float(min(max(1.0, math.floor(proposed)), max_leverage))


def apply_sizing(decision: Decision, result: SizingResult, leverage: float) -> Decision:
    """Write sizing back onto an entry decision. Below-minimum becomes HOLD."""
    if result.no_op or result.contracts <= 0:
        held = decision.with_action("HOLD", note=result.reason or "size_zero")
        return held.model_copy(update={"size": 0.0, "leverage": leverage})
    return decision.model_copy(update={"size": result.contracts, "leverage": leverage})
