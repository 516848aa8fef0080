"""Per-cycle account, position and market snapshot."""

from __future__ import annotations

import dataclasses
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Protocol

import pandas as pd  # type: ignore[import-untyped]

from ai_futures.config import Settings
from ai_futures.errors import TradingError
from ai_futures.exchange.base import AccountReader
from ai_futures.features.indicators import compute_indicators, estimate_breakeven
from ai_futures.types import CycleSnapshot, MarketContext, PositionSnapshot
from ai_futures.utils.logging import get_logger


class MarketDataSource(Protocol):
    """Public market reads used to build a ``MarketContext``."""

    def fetch_ticker(self, instrument: str) -> dict[str, float]: ...

    def fetch_candles(
        self, instrument: str, bar: str = "15m", limit: int = 100
    ) -> pd.DataFrame: ...

    def fetch_funding_rate(self, instrument: str) -> float | None: ...

    def fetch_open_interest(self, instrument: str) -> float | None: ...


class SnapshotProvider:
    """Reads everything a cycle needs exactly once.

    Account and position failures are fatal for the cycle. A market-data
    failure only drops the affected instrument.
    """

    def __init__(
        self,
        account: AccountReader,
        market: MarketDataSource,
        settings: Settings,
        *,
        candle_bar: str = "15m",
        candle_limit: int = 100,
        mark_sink: Callable[[str, float], object] | None = None,
    ) -> None:
        self._account = account
        self._market = market
        self._settings = settings
        self._candle_bar = candle_bar
        self._candle_limit = candle_limit
        self._mark_sink = mark_sink
        self._logger = get_logger("ai_futures.data.snapshot")

    def fetch(self, instruments: list[str]) -> CycleSnapshot:
        markets: dict[str, MarketContext] = {}
        warnings: list[str] = []
        with ThreadPoolExecutor(max_workers=max(1, len(instruments))) as pool:
            futures = {inst: pool.submit(self._market_context, inst) for inst in instruments}
            for instrument, future in futures.items():
                try:
                    markets[instrument] = future.result()
                except (TradingError, RuntimeError, ValueError, KeyError) as exc:
                    warnings.append(f"market_data_unavailable: {instrument}: {exc}")
                    self._logger.warning(
                        "market_data_failed",
                        instrument=instrument,
                        error=str(exc),
                    )

        if self._mark_sink is not None:
            # paper accounts value positions and fire triggers from these marks
            for instrument, context in markets.items():
                self._mark_sink(instrument, context.last_price)

        account = self._account.get_account()
        positions = self._account.get_positions(instruments)
        return CycleSnapshot(
            account=account,
            positions=[self._with_breakeven(position) for position in positions],
            markets=markets,
            warnings=warnings,
        )

    def _market_context(self, instrument: str) -> MarketContext:
        ticker = self._market.fetch_ticker(instrument)
        candles = self._market.fetch_candles(
            instrument,
            bar=self._candle_bar,
            limit=self._candle_limit,
        )
        indicators = compute_indicators(candles)
        return MarketContext(
            instrument=instrument,
            last_price=ticker["last"],
            open_24h=ticker.get("open_24h", 0.0),
            volume_24h=ticker.get("vol_ccy_24h", 0.0),
            funding_rate=self._market.fetch_funding_rate(instrument) or 0.0,
            open_interest=self._market.fetch_open_interest(instrument) or 0.0,
            indicators=indicators,
        )

    def _with_breakeven(self, position: PositionSnapshot) -> PositionSnapshot:
        if position.breakeven_price > 0:
            return position
        return dataclasses.replace(
            position,
            breakeven_price=estimate_breakeven(
                position.entry_price,
                position.side,
                self._settings.taker_fee_rate,
            ),
        )
