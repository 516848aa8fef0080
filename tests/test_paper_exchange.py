from __future__ import annotations

from pathlib import Path

import pytest

from ai_futures.ai.schemas import Decision
from ai_futures.config import Settings
from ai_futures.errors import MarginInsufficientError, PositionNotFoundError
from ai_futures.exchange.paper import PaperExchange
from ai_futures.exec import ExecutionService
from ai_futures.risk.planner import TradePlan
from ai_futures.risk.stages import select_risk_stage

INST = "ETH-USDT-SWAP"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(journal_dir=tmp_path, paper_initial_equity=100.0)


@pytest.fixture
def paper(settings: Settings) -> PaperExchange:
    exchange = PaperExchange(settings, slippage_bps=0.0)
    exchange.set_mark_price(INST, 3000.0)
    exchange.set_leverage(INST, 10, "long")
    exchange.set_leverage(INST, 10, "short")
    return exchange


def test_open_long_reserves_margin_and_fee(paper: PaperExchange) -> None:
    order_id = paper.place_market_order(
        INST, side="buy", pos_side="long", size=1.0, reduce_only=False, stop_loss=2900.0
    )
    assert order_id.startswith("paper-ord-")

    account = paper.get_account()
    assert account.available_equity == pytest.approx(100.0 - 30.0 - 0.15)
    assert account.total_equity == pytest.approx(100.0 - 0.15)

    position = paper.get_position(INST)
    assert position is not None
    assert position.side == "long"
    assert position.size_contracts == pytest.approx(1.0)
    assert position.margin == pytest.approx(30.0)
    assert position.current_stop_loss == 2900.0
    assert position.current_take_profit == 0.0


def test_unaffordable_order_is_margin_rejection(paper: PaperExchange) -> None:
    with pytest.raises(MarginInsufficientError) as excinfo:
        paper.place_market_order(INST, side="buy", pos_side="long", size=4.0, reduce_only=False)
    assert excinfo.value.code == "51008"
    assert paper.get_position(INST) is None


def test_close_missing_side_is_position_not_found(paper: PaperExchange) -> None:
    with pytest.raises(PositionNotFoundError) as excinfo:
        paper.close_position(INST, "short")
    assert excinfo.value.code == "51000"


def test_reduce_without_position_is_rejected(paper: PaperExchange) -> None:
    with pytest.raises(PositionNotFoundError):
        paper.place_market_order(INST, side="sell", pos_side="long", size=1.0, reduce_only=True)


def test_order_without_mark_price_fails(settings: Settings) -> None:
    exchange = PaperExchange(settings)
    with pytest.raises(RuntimeError, match="no_mark_price"):
        exchange.place_market_order(
            "BTC-USDT-SWAP", side="buy", pos_side="long", size=1.0, reduce_only=False
        )


def test_stop_trigger_fires_and_realizes_loss(paper: PaperExchange) -> None:
    paper.place_market_order(
        INST, side="buy", pos_side="long", size=1.0, reduce_only=False, stop_loss=2900.0
    )
    assert paper.set_mark_price(INST, 2950.0) == []
    fired = paper.set_mark_price(INST, 2890.0)

    assert len(fired) == 1
    assert paper.get_position(INST) is None
    assert paper.pending_conditional_orders(INST) == []
    # entry fee + 10 USDT loss + exit fee at the trigger price
    expected = 100.0 - 0.15 - 10.0 - 0.1 * 2900.0 * 0.0005
    assert paper.get_account().available_equity == pytest.approx(expected)


def test_short_take_profit_fires_below_trigger(paper: PaperExchange) -> None:
    paper.place_market_order(
        INST, side="sell", pos_side="short", size=1.0, reduce_only=False, take_profit=2800.0
    )
    assert paper.set_mark_price(INST, 2850.0) == []
    assert len(paper.set_mark_price(INST, 2799.0)) == 1
    assert paper.get_position(INST) is None


def test_conditional_orders_replace_and_cancel(paper: PaperExchange) -> None:
    paper.place_market_order(INST, side="buy", pos_side="long", size=1.0, reduce_only=False)
    algo_id = paper.place_conditional_order(
        INST, pos_side="long", size=1.0, trigger_price=2950.0, kind="SL"
    )
    assert paper.get_position(INST).current_stop_loss == 2950.0  # type: ignore[union-attr]

    paper.cancel_conditional_orders(INST, [algo_id])
    assert paper.pending_conditional_orders(INST) == []

    with pytest.raises(PositionNotFoundError):
        paper.place_conditional_order(
            INST, pos_side="short", size=1.0, trigger_price=3100.0, kind="SL"
        )


def test_state_survives_reload(settings: Settings, paper: PaperExchange) -> None:
    paper.place_market_order(
        INST, side="sell", pos_side="short", size=0.5, reduce_only=False, stop_loss=3100.0
    )
    reloaded = PaperExchange(settings, slippage_bps=0.0)

    position = reloaded.get_position(INST)
    assert position is not None
    assert position.side == "short"
    assert position.size_contracts == pytest.approx(0.5)
    assert position.current_stop_loss == 3100.0
    assert reloaded.describe()["positions"] == 1
    assert reloaded.describe()["pending_algos"] == 1


def test_execution_service_shrinks_size_on_paper_margin(
    settings: Settings, paper: PaperExchange
) -> None:
    service = ExecutionService(paper, settings)
    plan = TradePlan(
        instrument=INST,
        decision=Decision(action="BUY", size=4.0),
        original_action="BUY",
        leverage=10.0,
        stage=select_risk_stage(100.0, settings),
    )

    result = service.execute(plan)

    assert result.accepted
    assert result.applied_size_contracts == pytest.approx(3.2)
    assert any("size_shrunk_after_margin_rejection" in note for note in result.notes)


def test_execution_service_close_routes_to_open_side(
    settings: Settings, paper: PaperExchange
) -> None:
    paper.place_market_order(INST, side="sell", pos_side="short", size=1.0, reduce_only=False)
    service = ExecutionService(paper, settings)
    plan = TradePlan(
        instrument=INST,
        decision=Decision(action="CLOSE"),
        original_action="CLOSE",
        leverage=10.0,
        stage=select_risk_stage(100.0, settings),
    )

    result = service.execute(plan)

    assert result.accepted
    assert "closed_short" in result.notes
    assert paper.get_position(INST) is None


def test_fired_partial_trigger_is_removed(paper: PaperExchange) -> None:
    paper.place_market_order(INST, side="buy", pos_side="long", size=1.0, reduce_only=False)
    algo_id = paper.place_conditional_order(
        INST, pos_side="long", size=0.5, trigger_price=2950.0, kind="SL"
    )

    assert paper.set_mark_price(INST, 2940.0) == [algo_id]
    assert paper.set_mark_price(INST, 2939.0) == []

    position = paper.get_position(INST)
    assert position is not None
    assert position.size_contracts == pytest.approx(0.5)
    assert paper.pending_conditional_orders(INST) == []


def test_snapshot_reports_tightest_of_several_stops(paper: PaperExchange) -> None:
    paper.place_market_order(
        INST, side="buy", pos_side="long", size=1.0, reduce_only=False, stop_loss=2900.0
    )
    paper.place_conditional_order(INST, pos_side="long", size=0.5, trigger_price=2950.0, kind="SL")
    assert paper.get_position(INST).current_stop_loss == 2950.0  # type: ignore[union-attr]

    paper.place_market_order(
        INST, side="sell", pos_side="short", size=0.5, reduce_only=False, stop_loss=3150.0
    )
    paper.place_conditional_order(
        INST, pos_side="short", size=0.5, trigger_price=3100.0, kind="SL"
    )
    short = next(p for p in paper.get_positions([INST]) if p.side == "short")
    assert short.current_stop_loss == 3100.0


def test_update_after_add_cannot_loosen_tighter_stop(
    settings: Settings, paper: PaperExchange
) -> None:
    paper.place_market_order(
        INST, side="buy", pos_side="long", size=1.0, reduce_only=False, stop_loss=2900.0
    )
    service = ExecutionService(paper, settings)
    stage = select_risk_stage(100.0, settings)

    added = service.execute(
        TradePlan(
            instrument=INST,
            decision=Decision(action="BUY", size=0.5, stop_loss=2950.0),
            original_action="BUY",
            leverage=10.0,
            stage=stage,
        )
    )
    assert added.accepted
    stops = sorted(o.trigger_price for o in paper.pending_conditional_orders(INST))
    assert stops == [2900.0, 2950.0]

    update = service.execute(
        TradePlan(
            instrument=INST,
            decision=Decision(action="UPDATE_TPSL", stop_loss=2920.0),
            original_action="UPDATE_TPSL",
            leverage=10.0,
            stage=stage,
        )
    )

    assert update.applied_action == "HOLD"
    remaining = [o.trigger_price for o in paper.pending_conditional_orders(INST)]
    assert max(remaining) == 2950.0
