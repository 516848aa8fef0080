"""Risk scaling from trailing risk-adjusted performance."""

from __future__ import annotations

import math
from statistics import fmean, pstdev
from typing import Sequence

from ai_futures.config import Settings


def trailing_sharpe(equity_marks: Sequence[float]) -> float | None:
    """Per-period Sharpe ratio of equity returns, or None with too few samples."""
    clean = [float(v) for v in equity_marks if math.isfinite(v) and v > 0]
    if len(clean) < 3:
        return None
    returns = [(curr / prev) - 1.0 for prev, curr in zip(clean, clean[1:])]
    mean = fmean(returns)
    std = pstdev(returns)
    if std == 0:
        return 0.0 if mean == 0 else math.copysign(math.inf, mean)
    return mean / std


def performance_modifier(equity_marks: Sequence[float], settings: Settings) -> float:
    """Risk multiplier for the sizer: reduced while trailing Sharpe is negative."""
    window = list(equity_marks)[-settings.performance_lookback :]
    sharpe = trailing_sharpe(window)
    if sharpe is not None and sharpe < 0:
        return settings.negative_sharpe_modifier
    return 1.0
