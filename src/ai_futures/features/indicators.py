"""Indicator computation for the decision prompt."""

from __future__ import annotations

import math

import numpy as np
import pandas as pd  # type: ignore[import-untyped]

MIN_BARS = 30


def compute_indicators(df: pd.DataFrame) -> dict[str, float | str]:
    """Compute the indicator snapshot for one instrument from ascending candles."""
    if df.empty:
        raise ValueError("input_ohlcv_empty")
    if not _is_time_ascending(df):
        raise ValueError("ohlcv_timestamp_not_ascending")
    if len(df) < MIN_BARS:
        raise ValueError(f"insufficient_bars: {len(df)} < {MIN_BARS}")

    close = df["close"].astype(float)
    last_close = float(close.iloc[-1])

    macd_line, signal_line, hist = _macd(close)
    upper, mid, lower = _bollinger(close, period=20, multiplier=2.0)
    k, d, j = _kdj(df, period=9)
    rsi = _rsi(close, period=14)

    return {
        "price": last_close,
        "ema20": float(_ema(close, 20).iloc[-1]),
        "sma20": float(close.rolling(window=20, min_periods=20).mean().iloc[-1]),
        "rsi14": rsi,
        "macd": macd_line,
        "macd_signal": signal_line,
        "macd_hist": hist,
        "macd_trend": "bullish" if hist > 0 else "bearish",
        "boll_upper": upper,
        "boll_mid": mid,
        "boll_lower": lower,
        "boll_position": _bollinger_position(last_close, upper, mid, lower),
        "kdj_k": k,
        "kdj_d": d,
        "kdj_j": j,
        "kdj_signal": _kdj_signal(k, d),
        "volume_ratio": _volume_ratio(df["volume"].astype(float), period=5),
    }


def estimate_breakeven(entry_price: float, pos_side: str, fee_rate: float) -> float:
    """Entry price adjusted for taker fees on both legs."""
    if not math.isfinite(entry_price) or entry_price <= 0:
        return 0.0
    if pos_side == "long":
        return entry_price * (1 + 2 * fee_rate)
    return entry_price * (1 - 2 * fee_rate)


def estimate_net_pnl(
    unrealized_pnl: float,
    *,
    size_coin: float,
    entry_price: float,
    mark_price: float,
    fee_rate: float,
) -> float:
    """Unrealized PnL minus the opening fee and the estimated closing fee."""
    fees = size_coin * entry_price * fee_rate + size_coin * mark_price * fee_rate
    return unrealized_pnl - fees


def _is_time_ascending(df: pd.DataFrame) -> bool:
    open_time = df.get("open_time")
    if open_time is None:
        return False
    return bool(pd.Series(open_time).is_monotonic_increasing)


def _ema(series: pd.Series, period: int) -> pd.Series:
    return series.ewm(span=period, adjust=False).mean()


def _rsi(close: pd.Series, period: int = 14) -> float:
    """Wilder-smoothed RSI. Neutral 50 without enough history."""
    if len(close) < period + 1:
        return 50.0
    delta = close.diff().dropna()
    gains = delta.clip(lower=0.0)
    losses = -delta.clip(upper=0.0)
    avg_gain = gains.ewm(alpha=1.0 / period, adjust=False).mean().iloc[-1]
    avg_loss = losses.ewm(alpha=1.0 / period, adjust=False).mean().iloc[-1]
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return float(100.0 - 100.0 / (1.0 + rs))


def _macd(
    close: pd.Series,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> tuple[float, float, float]:
    macd_line = _ema(close, fast) - _ema(close, slow)
    signal_line = _ema(macd_line, signal)
    hist = macd_line - signal_line
    return float(macd_line.iloc[-1]), float(signal_line.iloc[-1]), float(hist.iloc[-1])


def _bollinger(
    close: pd.Series,
    period: int = 20,
    multiplier: float = 2.0,
) -> tuple[float, float, float]:
    window = close.iloc[-period:]
    mid = float(window.mean())
    std = float(np.std(window.to_numpy(), ddof=0))
    return mid + multiplier * std, mid, mid - multiplier * std


def _bollinger_position(price: float, upper: float, mid: float, lower: float) -> str:
    if price > upper:
        return "above_upper"
    if price < lower:
        return "below_lower"
    if price > mid:
        return "upper_half"
    return "lower_half"


def _kdj(df: pd.DataFrame, period: int = 9) -> tuple[float, float, float]:
    """Stochastic K/D/J with 1/3 smoothing seeded at 50."""
    high = df["high"].astype(float).rolling(window=period, min_periods=period).max()
    low = df["low"].astype(float).rolling(window=period, min_periods=period).min()
    close = df["close"].astype(float)
    spread = high - low
    rsv = ((close - low) / spread.replace(0.0, np.nan) * 100.0).where(spread != 0, 50.0)

    k = d = 50.0
    for value in rsv.dropna():
        k = (2.0 / 3.0) * k + (1.0 / 3.0) * float(value)
        d = (2.0 / 3.0) * d + (1.0 / 3.0) * k
    return k, d, 3.0 * k - 2.0 * d


def _kdj_signal(k: float, d: float) -> str:
    if k > 80:
        return "overbought"
    if k < 20:
        return "oversold"
    return "golden_cross" if k > d else "death_cross"


def _volume_ratio(volume: pd.Series, period: int = 5) -> float:
    """Last bar volume relative to its trailing simple average."""
    if len(volume) < period:
        return 1.0
    average = float(volume.iloc[-period:].mean())
    if average <= 0:
        return 1.0
    return float(volume.iloc[-1]) / average
