from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest
from tenacity import wait_none

from ai_futures.ai.deepseek_client import DeepSeekAPIError, DeepSeekClient
from ai_futures.ai.prompt import build_messages
from ai_futures.config import Settings
from ai_futures.risk.stages import select_risk_stage
from ai_futures.types import AccountSnapshot, MarketContext, PositionSnapshot

MESSAGES = [{"role": "user", "content": "decide"}]


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        DeepSeekClient._request_completion.retry,  # type: ignore[attr-defined]
        "wait",
        wait_none(),
    )


def _client(handler: Any, tmp_path: Path, api_key: str = "sk-test") -> DeepSeekClient:
    settings = Settings(journal_dir=tmp_path, deepseek_api_key=api_key)
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return DeepSeekClient(settings, http_client=http_client)


def _completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def test_decide_parses_model_json(tmp_path: Path) -> None:
    seen: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer sk-test"
        return _completion(
            '{"trading_decision": {"action": "UPDATE_TPSL", "stop_loss": "3010"}, '
            '"reasoning": "trail"}'
        )

    decision = _client(handler, tmp_path).decide(MESSAGES, instrument="ETH-USDT-SWAP")

    assert decision.action == "UPDATE_TPSL"
    assert decision.stop_loss == 3010.0
    assert seen[0]["response_format"] == {"type": "json_object"}
    assert seen[0]["stream"] is False


def test_server_errors_retry_then_hold(tmp_path: Path) -> None:
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(503, json={"error": "overloaded"})

    decision = _client(handler, tmp_path).decide(MESSAGES)

    assert len(attempts) == 3
    assert decision.action == "HOLD"
    assert decision.rationale.startswith("llm_unavailable")


def test_transient_error_recovers(tmp_path: Path) -> None:
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return _completion('{"action": "CLOSE"}')

    assert _client(handler, tmp_path).decide(MESSAGES).action == "CLOSE"
    assert len(attempts) == 2


def test_unparseable_content_is_hold(tmp_path: Path) -> None:
    decision = _client(lambda request: _completion("I think you should buy"), tmp_path).decide(
        MESSAGES
    )
    assert decision.action == "HOLD"
    assert decision.rationale.startswith("invalid_model_response")


def test_missing_choices_is_hold(tmp_path: Path) -> None:
    decision = _client(lambda request: httpx.Response(200, json={}), tmp_path).decide(MESSAGES)
    assert decision.action == "HOLD"


def test_missing_key_fails_ping(tmp_path: Path) -> None:
    client = _client(lambda request: _completion("{}"), tmp_path, api_key="")
    with pytest.raises(DeepSeekAPIError, match="missing_deepseek_api_key"):
        client.ping()


def test_build_messages_reports_position_and_net_pnl(tmp_path: Path) -> None:
    settings = Settings(journal_dir=tmp_path)
    market = MarketContext(
        instrument="ETH-USDT-SWAP",
        last_price=3100.0,
        open_24h=3000.0,
        indicators={"rsi14": 55.0, "macd_trend": "bullish"},
    )
    position = PositionSnapshot(
        instrument="ETH-USDT-SWAP",
        side="long",
        size_contracts=1.0,
        entry_price=3000.0,
        current_stop_loss=2950.0,
        breakeven_price=3003.0,
        leverage=10.0,
        unrealized_pnl=10.305,
    )
    messages = build_messages(
        market=market,
        account=AccountSnapshot(total_equity=100.0, available_equity=70.0),
        position=position,
        stage=select_risk_stage(100.0, settings),
        settings=settings,
    )

    system, user = messages[0]["content"], messages[1]["content"]
    assert [m["role"] for m in messages] == ["system", "user"]
    assert "Position: LONG 1 contracts @ 3000.00" in system
    assert "Current SL: 2950, current TP: not set" in system
    assert "rsi14=55.0000" in system
    assert "24h change 3.33%" in system
    assert "0.3%" in system
    assert user.startswith("Net PnL: 10.00 USDT")


def test_build_messages_without_position(tmp_path: Path) -> None:
    settings = Settings(journal_dir=tmp_path)
    messages = build_messages(
        market=MarketContext(instrument="BTC-USDT-SWAP", last_price=60_000.0),
        account=AccountSnapshot(total_equity=10.0, available_equity=10.0),
        position=None,
        stage=select_risk_stage(10.0, settings),
        settings=settings,
    )
    assert "Position: none" in messages[0]["content"]
    assert "Indicators: n/a" in messages[0]["content"]
    assert messages[1]["content"].startswith("Net PnL: 0.00 USDT")
