from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import pandas as pd  # type: ignore[import-untyped]
import pytest

from ai_futures.config import Settings
from ai_futures.data.okx_market import OkxMarketData
from ai_futures.data.snapshot import SnapshotProvider
from ai_futures.errors import ExchangeTransportError
from ai_futures.exchange.okx import OkxClient
from ai_futures.types import AccountSnapshot, PositionSnapshot

from conftest import make_candles, make_position


def _market_client(handler: Any, tmp_path: Path) -> OkxMarketData:
    http_client = httpx.Client(base_url="https://okx.test", transport=httpx.MockTransport(handler))
    return OkxMarketData(OkxClient(Settings(journal_dir=tmp_path), http_client=http_client))


def test_candles_are_sorted_ascending(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["bar"] == "15m"
        rows = [
            ["1700000900000", "3001", "3005", "2999", "3004", "12", "0", "0", "1"],
            ["1700000000000", "3000", "3002", "2998", "3001", "10", "0", "0", "1"],
        ]
        return httpx.Response(200, json={"code": "0", "msg": "", "data": rows})

    df = _market_client(handler, tmp_path).fetch_candles("ETH-USDT-SWAP", limit=2)

    assert list(df["close"]) == [3001.0, 3004.0]
    assert df["open_time"].is_monotonic_increasing
    assert str(df["open_time"].dt.tz) == "UTC"


def test_unsupported_bar_is_rejected(tmp_path: Path) -> None:
    market = _market_client(lambda request: httpx.Response(500), tmp_path)
    with pytest.raises(ValueError, match="unsupported_bar"):
        market.fetch_candles("ETH-USDT-SWAP", bar="7m")


def test_ticker_and_optional_reads(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/market/ticker"):
            data = [{"last": "3050.5", "open24h": "3000", "volCcy24h": "1234"}]
        elif path.endswith("/public/funding-rate"):
            data = [{"fundingRate": "0.0001"}]
        else:
            body = {"code": "51001", "msg": "Instrument ID does not exist"}
            return httpx.Response(200, json=body)
        return httpx.Response(200, json={"code": "0", "msg": "", "data": data})

    market = _market_client(handler, tmp_path)
    assert market.fetch_ticker("ETH-USDT-SWAP") == {
        "last": 3050.5,
        "open_24h": 3000.0,
        "vol_ccy_24h": 1234.0,
    }
    assert market.fetch_funding_rate("ETH-USDT-SWAP") == pytest.approx(0.0001)
    assert market.fetch_open_interest("ETH-USDT-SWAP") is None


class FakeMarket:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()

    def fetch_ticker(self, instrument: str) -> dict[str, float]:
        if instrument in self.failing:
            raise ExchangeTransportError("ticker: timed out")
        return {"last": 3100.0, "open_24h": 3000.0, "vol_ccy_24h": 10.0}

    def fetch_candles(self, instrument: str, bar: str = "15m", limit: int = 100) -> pd.DataFrame:
        return make_candles(60)

    def fetch_funding_rate(self, instrument: str) -> float | None:
        return None

    def fetch_open_interest(self, instrument: str) -> float | None:
        return 5000.0


class FakeAccount:
    def __init__(self, positions: list[PositionSnapshot]) -> None:
        self.positions = positions
        self.calls: list[str] = []

    def get_account(self) -> AccountSnapshot:
        self.calls.append("get_account")
        return AccountSnapshot(total_equity=100.0, available_equity=70.0)

    def get_positions(self, instruments: list[str]) -> list[PositionSnapshot]:
        self.calls.append("get_positions")
        return [p for p in self.positions if p.instrument in instruments]


def test_snapshot_drops_failed_instrument_and_feeds_marks(tmp_path: Path) -> None:
    account = FakeAccount([make_position("short", entry=3000.0)])
    marks: list[tuple[str, float]] = []
    provider = SnapshotProvider(
        account,
        FakeMarket(failing={"BTC-USDT-SWAP"}),
        Settings(journal_dir=tmp_path),
        mark_sink=lambda inst, price: marks.append((inst, price)),
    )

    snapshot = provider.fetch(["ETH-USDT-SWAP", "BTC-USDT-SWAP"])

    assert list(snapshot.markets) == ["ETH-USDT-SWAP"]
    assert snapshot.warnings[0].startswith("market_data_unavailable: BTC-USDT-SWAP")
    assert marks == [("ETH-USDT-SWAP", 3100.0)]
    assert account.calls == ["get_account", "get_positions"]

    context = snapshot.markets["ETH-USDT-SWAP"]
    assert context.funding_rate == 0.0
    assert context.open_interest == 5000.0
    assert context.indicators["price"] == 3059.0

    position = snapshot.position_for("ETH-USDT-SWAP")
    assert position is not None
    assert position.breakeven_price == pytest.approx(3000.0 * (1 - 2 * 0.0005))
