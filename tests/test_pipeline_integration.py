from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd  # type: ignore[import-untyped]
import pytest

from ai_futures import pipeline
from ai_futures.ai.schemas import Decision
from ai_futures.config import Settings
from ai_futures.errors import ExchangeTransportError
from ai_futures.exchange.paper import PaperExchange
from ai_futures.pipeline import run_trading_cycle

from conftest import make_candles


class _FakeMarketData:
    last_price = 3100.0
    failing = False

    def __init__(self, client: object) -> None:
        self._client = client

    def fetch_ticker(self, instrument: str) -> dict[str, float]:
        if self.failing:
            raise ExchangeTransportError("ticker: connection refused")
        return {"last": self.last_price, "open_24h": 3000.0, "vol_ccy_24h": 1.0}

    def fetch_candles(self, instrument: str, bar: str = "15m", limit: int = 100) -> pd.DataFrame:
        return make_candles(60, start=3040.0)

    def fetch_funding_rate(self, instrument: str) -> float | None:
        return 0.0001

    def fetch_open_interest(self, instrument: str) -> float | None:
        return 1234.5


class _ScriptedLLM:
    script: list[Decision | Exception] = []

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def decide(self, messages: list[dict[str, str]], *, instrument: str = "") -> Decision:
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setattr(pipeline, "OkxMarketData", _FakeMarketData)
    monkeypatch.setattr(pipeline, "DeepSeekClient", _ScriptedLLM)
    monkeypatch.setattr(_FakeMarketData, "failing", False)
    monkeypatch.setattr(_ScriptedLLM, "script", [])
    return Settings(journal_dir=tmp_path, paper_initial_equity=100.0)


def _events(journal_dir: Path) -> list[str]:
    rows: list[str] = []
    for file in sorted(journal_dir.glob("*.jsonl")):
        for line in file.read_text(encoding="utf-8").splitlines():
            rows.append(json.loads(line)["event_type"])
    return rows


def test_paper_cycle_opens_position(settings: Settings) -> None:
    _ScriptedLLM.script.append(Decision(action="BUY", stop_loss=3000.0, rationale="breakout"))

    result = run_trading_cycle(settings, dry_run=False)

    assert result.status == "completed"
    assert result.executions[0]["accepted"] is True
    assert result.executions[0]["applied_action"] == "BUY"
    assert result.executions[0]["applied_size_contracts"] > 0

    position = PaperExchange(settings).get_position("ETH-USDT-SWAP")
    assert position is not None
    assert position.side == "long"
    assert position.current_stop_loss == 3000.0

    events = _events(settings.journal_dir)
    assert events[0] == "cycle_start"
    assert events[-1] == "cycle_end"
    for expected in ("equity", "market_data", "ai_decision", "sizing", "order"):
        assert expected in events


def test_stop_ratchet_holds_across_cycles(settings: Settings) -> None:
    _ScriptedLLM.script.extend(
        [
            Decision(action="BUY", stop_loss=3000.0),
            Decision(action="UPDATE_TPSL", stop_loss=2900.0),
            Decision(action="UPDATE_TPSL", stop_loss=3050.0),
        ]
    )

    assert run_trading_cycle(settings, dry_run=False).status == "completed"

    loosened = run_trading_cycle(settings, dry_run=False)
    assert loosened.decisions[0]["action"] == "HOLD"
    assert loosened.decisions[0]["original_action"] == "UPDATE_TPSL"
    held = PaperExchange(settings).get_position("ETH-USDT-SWAP")
    assert held is not None and held.current_stop_loss == 3000.0

    tightened = run_trading_cycle(settings, dry_run=False)
    assert tightened.executions[0]["applied_action"] == "UPDATE_TPSL"
    paper = PaperExchange(settings)
    held = paper.get_position("ETH-USDT-SWAP")
    assert held is not None and held.current_stop_loss == 3050.0
    assert [o.trigger_price for o in paper.pending_conditional_orders("ETH-USDT-SWAP")] == [3050.0]
    assert "protection" in _events(settings.journal_dir)


def test_dry_run_places_nothing(settings: Settings) -> None:
    _ScriptedLLM.script.append(Decision(action="SELL", stop_loss=3200.0))

    result = run_trading_cycle(settings, dry_run=True)

    assert result.status == "completed_dry_run"
    assert "dry_run" in result.executions[0]["notes"]
    assert PaperExchange(settings).get_position("ETH-USDT-SWAP") is None


def test_update_without_position_becomes_hold(settings: Settings) -> None:
    _ScriptedLLM.script.append(Decision(action="UPDATE_TPSL", stop_loss=3000.0))

    result = run_trading_cycle(settings, dry_run=True)

    assert result.decisions[0]["action"] == "HOLD"
    assert "normalization" in _events(settings.journal_dir)
    assert "order" not in _events(settings.journal_dir)


def test_market_data_outage_skips_cycle(settings: Settings, monkeypatch: Any) -> None:
    monkeypatch.setattr(_FakeMarketData, "failing", True)

    result = run_trading_cycle(settings, dry_run=False)

    assert result.status == "no_market_data"
    assert result.warnings[0].startswith("market_data_unavailable: ETH-USDT-SWAP")
    assert result.decisions == []


def test_instrument_failure_is_isolated(settings: Settings) -> None:
    _ScriptedLLM.script.append(RuntimeError("model exploded"))

    result = run_trading_cycle(settings, dry_run=False)

    assert result.status == "completed_with_errors"
    assert any("instrument_failed: ETH-USDT-SWAP" in w for w in result.warnings)
    assert "error" in _events(settings.journal_dir)
