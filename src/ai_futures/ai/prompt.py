"""Prompt assembly for the trade-decision model."""

from __future__ import annotations

import json

from ai_futures.config import Settings
from ai_futures.features.indicators import estimate_net_pnl
from ai_futures.types import AccountSnapshot, MarketContext, PositionSnapshot, RiskStageConfig

RESPONSE_SCHEMA = {
    "market_assessment": "short market read",
    "trading_decision": {
        "action": "BUY|SELL|HOLD|CLOSE|UPDATE_TPSL",
        "confidence": "0-100",
        "position_size": "contracts; 0 when only adjusting SL/TP",
        "leverage": "integer leverage",
        "profit_target": "optional hard take-profit price",
        "stop_loss": "stop-loss trigger price",
    },
    "reasoning": "did breakeven or ratchet rules apply, and what is the net PnL",
}

_RULES = """Rules:
1. Stop-loss ratchet: a LONG stop may only move up, a SHORT stop may only move down.
   A proposal that loosens an existing stop is rejected.
2. Breakeven anchor: once price is clear of the breakeven price by more than
   {buffer}% and the stop still sits in the loss zone, move the stop beyond breakeven.
3. Prefer a trailing stop over a fixed take-profit unless a strong level is near.
4. Add to a position only when risk is contained and the thesis still holds.
5. Judge profit on net PnL after fees.

Actions:
- UPDATE_TPSL: adjust protection only. stop_loss is required.
- BUY / SELL: open, or add when a same-direction position exists. The opposite
  direction reduces the open position.
- CLOSE: flatten the position.
- HOLD: do nothing."""


def build_messages(
    *,
    market: MarketContext,
    account: AccountSnapshot,
    position: PositionSnapshot | None,
    stage: RiskStageConfig,
    settings: Settings,
) -> list[dict[str, str]]:
    """Return chat messages for one instrument."""
    net_pnl = 0.0
    if position is not None:
        net_pnl = _net_pnl(position, market.last_price, settings)

    system = "\n\n".join(
        [
            f"You manage risk for {market.instrument} perpetual swaps. "
            "Goal: maximize net profit while protecting capital.",
            _environment_block(market, account, stage),
            _position_block(position, net_pnl),
            _RULES.format(buffer=settings.breakeven_buffer_pct),
            "Reply with JSON ONLY using this layout:\n"
            + json.dumps(RESPONSE_SCHEMA, ensure_ascii=False, indent=2),
        ]
    )
    user = f"Net PnL: {net_pnl:.2f} USDT. Give the best action under the rules."
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def _environment_block(
    market: MarketContext,
    account: AccountSnapshot,
    stage: RiskStageConfig,
) -> str:
    change_pct = 0.0
    if market.open_24h > 0:
        change_pct = (market.last_price - market.open_24h) / market.open_24h * 100
    indicators = ", ".join(
        f"{key}={_fmt(value)}" for key, value in sorted(market.indicators.items())
    )
    return (
        f"Stage: {stage.name} (leverage {stage.leverage:g}x)\n"
        f"Total equity: {account.total_equity:.2f} USDT, "
        f"available: {account.available_equity:.2f} USDT\n"
        f"Price: {market.last_price:.2f} (24h change {change_pct:.2f}%), "
        f"funding: {market.funding_rate:.6f}, open interest: {market.open_interest:g}\n"
        f"Indicators: {indicators or 'n/a'}"
    )


def _position_block(position: PositionSnapshot | None, net_pnl: float) -> str:
    if position is None:
        return "Position: none"
    stop = f"{position.current_stop_loss:g}" if position.current_stop_loss > 0 else "not set"
    take = f"{position.current_take_profit:g}" if position.current_take_profit > 0 else "not set"
    return (
        f"Position: {position.side.upper()} {position.size_contracts:g} contracts "
        f"@ {position.entry_price:.2f}, leverage {position.leverage:g}x\n"
        f"Unrealized PnL: {position.unrealized_pnl:.2f} USDT, net of fees: {net_pnl:.2f} USDT\n"
        f"Breakeven: {position.breakeven_price:.2f}\n"
        f"Current SL: {stop}, current TP: {take}"
    )


def _net_pnl(position: PositionSnapshot, mark_price: float, settings: Settings) -> float:
    try:
        contract_value = settings.contract_value(position.instrument)
    except ValueError:
        return position.unrealized_pnl
    return estimate_net_pnl(
        position.unrealized_pnl,
        size_coin=position.size_contracts * contract_value,
        entry_price=position.entry_price,
        mark_price=mark_price,
        fee_rate=settings.taker_fee_rate,
    )


def _fmt(value: float | str) -> str:
    if isinstance(value, float):
        return f"{value:.4f}"
    return str(value)
