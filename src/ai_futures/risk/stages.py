"""Equity-bracket risk stages."""

from __future__ import annotations

import math

from ai_futures.config import Settings
from ai_futures.types import RiskStageConfig


def select_risk_stage(total_equity: float, settings: Settings) -> RiskStageConfig:
    """Pick sizing parameters for the given total equity.

    Brackets are half-open: ``[0, stage_1_max)``, ``[stage_1_max, stage_2_max)``
    and ``[stage_2_max, inf)``. Non-finite equity falls into the first stage.
    """
    equity = total_equity if math.isfinite(total_equity) else 0.0
    if equity < settings.stage_1_max_equity:
        name, leverage, risk_ratio = (
            "stage_1_survival",
            settings.stage_1_leverage,
            settings.stage_1_risk_ratio,
        )
    elif equity < settings.stage_2_max_equity:
        name, leverage, risk_ratio = (
            "stage_2_growth",
            settings.stage_2_leverage,
            settings.stage_2_risk_ratio,
        )
    else:
        name, leverage, risk_ratio = (
            "stage_3_preservation",
            settings.stage_3_leverage,
            settings.stage_3_risk_ratio,
        )
    return RiskStageConfig(
        name=name,
        leverage=min(leverage, settings.max_leverage),
        risk_ratio=risk_ratio,
        cap_ratio=settings.open_cap_ratio,
        add_risk_ratio=settings.add_risk_ratio,
        add_cap_ratio=settings.add_cap_ratio,
    )
