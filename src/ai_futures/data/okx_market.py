"""OKX public market data client."""

from __future__ import annotations

from typing import Any

import pandas as pd  # type: ignore[import-untyped]

from ai_futures.errors import TradingError
from ai_futures.exchange.okx import OkxClient
from ai_futures.utils.logging import get_logger


class OkxMarketData:
    """Read-only client for ticker/candles/funding/OI."""

    _BARS = {"1m", "5m", "15m", "30m", "1H", "4H", "1D"}

    def __init__(self, client: OkxClient) -> None:
        self._client = client
        self._logger = get_logger("ai_futures.data.okx_market")

    def fetch_ticker(self, instrument: str) -> dict[str, float]:
        """Fetch last price, 24h open and 24h quote volume."""
        rows = self._client.public_get("/api/v5/market/ticker", {"instId": instrument})
        if not rows:
            raise RuntimeError(f"empty_ticker_response: {instrument}")
        row = rows[0]
        last = float(row.get("last") or 0.0)
        if last <= 0:
            raise RuntimeError(f"invalid_last_price: {instrument}")
        return {
            "last": last,
            "open_24h": float(row.get("open24h") or 0.0),
            "vol_ccy_24h": float(row.get("volCcy24h") or 0.0),
        }

    def fetch_candles(self, instrument: str, bar: str = "15m", limit: int = 100) -> pd.DataFrame:
        """Fetch candles and return an ascending normalized dataframe."""
        if bar not in self._BARS:
            raise ValueError(f"unsupported_bar: {bar}")

        rows: list[Any] = self._client.public_get(
            "/api/v5/market/candles",
            {"instId": instrument, "bar": bar, "limit": str(limit)},
        )
        df = pd.DataFrame(
            [row[:6] for row in rows if isinstance(row, list) and len(row) >= 6],
            columns=["open_time", "open", "high", "low", "close", "volume"],
        )
        if df.empty:
            raise RuntimeError("empty_ohlcv_response")

        numeric_cols = ["open", "high", "low", "close", "volume"]
        for col in numeric_cols:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        df["open_time"] = pd.to_datetime(pd.to_numeric(df["open_time"]), unit="ms", utc=True)
        df = df.dropna(subset=numeric_cols)
        # OKX returns newest first
        return df.sort_values("open_time").reset_index(drop=True)

    def fetch_funding_rate(self, instrument: str) -> float | None:
        """Fetch current funding rate. Returns None on failure."""
        try:
            rows = self._client.public_get("/api/v5/public/funding-rate", {"instId": instrument})
            if not rows:
                return None
            value = rows[0].get("fundingRate")
            return float(value) if value not in (None, "") else None
        except (TradingError, ValueError) as exc:
            self._logger.warning("funding_fetch_failed", instrument=instrument, error=str(exc))
            return None

    def fetch_open_interest(self, instrument: str) -> float | None:
        """Fetch open interest in contracts. Returns None on failure."""
        try:
            rows = self._client.public_get(
                "/api/v5/public/open-interest",
                {"instType": "SWAP", "instId": instrument},
            )
            if not rows:
                return None
            value = rows[0].get("oi")
            return float(value) if value not in (None, "") else None
        except (TradingError, ValueError) as exc:
            self._logger.warning("oi_fetch_failed", instrument=instrument, error=str(exc))
            return None
