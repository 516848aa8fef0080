"""Shared domain types for the execution pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

PosSide = Literal["long", "short"]
OrderSide = Literal["buy", "sell"]
AlgoKind = Literal["SL", "TP"]


@dataclass(slots=True, frozen=True)
class AccountSnapshot:
    """Account equity read once per cycle."""

    total_equity: float
    available_equity: float


@dataclass(slots=True, frozen=True)
class PositionSnapshot:
    """Read-only view of one exchange position.

    Stop-loss and take-profit are 0.0 when no trigger is pending.
    """

    instrument: str
    side: PosSide
    size_contracts: float
    entry_price: float
    margin: float = 0.0
    current_stop_loss: float = 0.0
    current_take_profit: float = 0.0
    breakeven_price: float = 0.0
    leverage: float = 0.0
    unrealized_pnl: float = 0.0


@dataclass(slots=True, frozen=True)
class AlgoOrder:
    """Pending conditional order held by the exchange."""

    algo_id: str
    instrument: str
    pos_side: PosSide
    trigger_price: float
    kind: AlgoKind


@dataclass(slots=True, frozen=True)
class RiskStageConfig:
    """Sizing parameters selected by total equity."""

    name: str
    leverage: float
    risk_ratio: float
    cap_ratio: float
    add_risk_ratio: float
    add_cap_ratio: float


@dataclass(slots=True)
class MarketContext:
    """Per-instrument market state handed to the decision model."""

    instrument: str
    last_price: float
    open_24h: float = 0.0
    volume_24h: float = 0.0
    funding_rate: float = 0.0
    open_interest: float = 0.0
    indicators: dict[str, float | str] = field(default_factory=dict)


@dataclass(slots=True)
class CycleSnapshot:
    """Everything read from the exchange at the start of a cycle."""

    account: AccountSnapshot
    positions: list[PositionSnapshot] = field(default_factory=list)
    markets: dict[str, MarketContext] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def position_for(self, instrument: str) -> PositionSnapshot | None:
        """Return the first open position on the instrument."""
        for position in self.positions:
            if position.instrument == instrument and position.size_contracts > 0:
                return position
        return None


@dataclass(slots=True)
class ExecutionResult:
    """Terminal outcome of executing one decision."""

    accepted: bool
    applied_action: str
    applied_size_contracts: float = 0.0
    applied_stop_loss: float | None = None
    applied_take_profit: float | None = None
    order_id: str | None = None
    error: str | None = None
    notes: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CycleResult:
    """Outcome of one pipeline cycle run."""

    status: str
    decisions: list[dict[str, object]] = field(default_factory=list)
    executions: list[dict[str, object]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
