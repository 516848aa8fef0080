"""Turn a parsed decision into an executable plan: normalize, then size."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from ai_futures.ai.schemas import Decision
from ai_futures.config import Settings
from ai_futures.risk.normalizer import normalize_decision
from ai_futures.risk.sizing import (
    SizingInputs,
    SizingResult,
    apply_sizing,
    compute_position_size,
    resolve_leverage,
)
from ai_futures.risk.stages import select_risk_stage
from ai_futures.types import AccountSnapshot, PositionSnapshot, RiskStageConfig


@dataclass(slots=True)
class TradePlan:
    """Decision ready for execution plus the audit trail that produced it."""

    instrument: str
    decision: Decision
    original_action: str
    leverage: float
    stage: RiskStageConfig
    sizing: SizingResult | None = None
    notes: list[str] = field(default_factory=list)


def plan_trade(
    instrument: str,
    decision: Decision,
    *,
    account: AccountSnapshot,
    position: PositionSnapshot | None,
    price: float,
    settings: Settings,
    modifier: float = 1.0,
) -> TradePlan:
    """Normalize and size one decision. Pure: no I/O, never raises on bad input."""
    stage = select_risk_stage(account.total_equity, settings)
    leverage = resolve_leverage(decision.leverage, stage, settings.max_leverage)
    normalized = normalize_decision(decision, position)
    plan = TradePlan(
        instrument=instrument,
        decision=normalized.decision,
        original_action=decision.action,
        leverage=leverage,
        stage=stage,
    )
    if normalized.note:
        plan.notes.append(normalized.note)

    if plan.decision.action not in ("BUY", "SELL"):
        return plan

    adding = position is not None and position.size_contracts > 0
    try:
        contract_value = settings.contract_value(instrument)
    except ValueError as exc:
        plan.decision = plan.decision.with_action("HOLD", note=str(exc))
        plan.notes.append(str(exc))
        return plan

    inputs = SizingInputs(
        available_equity=account.available_equity,
        price=price if math.isfinite(price) else 0.0,
        contract_value=contract_value,
        leverage=leverage,
        risk_ratio=stage.add_risk_ratio if adding else stage.risk_ratio,
        cap_ratio=stage.add_cap_ratio if adding else stage.cap_ratio,
        modifier=modifier,
        proposed_size=plan.decision.size,
        cap_leverage=stage.leverage,
    )
    result = compute_position_size(
        inputs,
        min_size=settings.min_order_size,
        lot_size=settings.lot_size,
    )
    plan.sizing = result
    plan.decision = apply_sizing(plan.decision, result, leverage)
    if result.reason:
        plan.notes.append(result.reason)
    return plan
