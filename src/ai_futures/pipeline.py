"""Unified trading cycle pipeline."""

from __future__ import annotations

import contextvars
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from ai_futures.ai.deepseek_client import DeepSeekClient
from ai_futures.ai.prompt import build_messages
from ai_futures.config import Settings
from ai_futures.data.okx_market import OkxMarketData
from ai_futures.data.snapshot import SnapshotProvider
from ai_futures.exchange.okx import OkxClient
from ai_futures.exchange.paper import PaperExchange
from ai_futures.exec.service import ExecutionService
from ai_futures.journal.store import JournalStore
from ai_futures.risk.performance import performance_modifier
from ai_futures.risk.planner import TradePlan, plan_trade
from ai_futures.risk.stages import select_risk_stage
from ai_futures.types import CycleResult, CycleSnapshot, ExecutionResult
from ai_futures.utils.logging import (
    bind_cycle_context,
    clear_cycle_context,
    get_logger,
    log_risk_event,
)


def run_trading_cycle(settings: Settings, dry_run: bool) -> CycleResult:
    """Run one full trading cycle across all configured instruments."""
    logger = get_logger("ai_futures.pipeline")
    started = perf_counter()
    journal = JournalStore(settings.journal_dir)
    cycle_result = CycleResult(status="unknown")
    cycle_id = uuid.uuid4().hex[:12]
    bind_cycle_context(cycle_id, mode=settings.mode.value, dry_run=dry_run)

    journal.append(
        "cycle_start",
        {
            "cycle_id": cycle_id,
            "instruments": settings.instruments,
            "mode": settings.mode.value,
            "dry_run": dry_run,
            "started_at": datetime.now(timezone.utc).isoformat(),
        },
    )

    okx = OkxClient(settings)
    try:
        gateway: Any
        if settings.is_paper_mode:
            gateway = PaperExchange(settings)
            provider = SnapshotProvider(
                gateway,
                OkxMarketData(okx),
                settings,
                mark_sink=gateway.set_mark_price,
            )
        else:
            gateway = okx
            if not dry_run:
                okx.ensure_long_short_mode()
            provider = SnapshotProvider(gateway, OkxMarketData(okx), settings)

        snapshot = provider.fetch(settings.instruments)
        cycle_result.warnings.extend(snapshot.warnings)
        _journal_snapshot(journal, snapshot)

        if not snapshot.markets:
            return _finish_cycle(cycle_result, journal, started, status="no_market_data")

        modifier = performance_modifier(
            journal.load_equity_marks(settings.performance_lookback),
            settings,
        )
        if modifier < 1.0:
            log_risk_event(
                logger,
                event_type="negative_trailing_sharpe",
                action="scale_risk",
                modifier=modifier,
            )

        llm = DeepSeekClient(settings)
        service = ExecutionService(gateway, settings)
        instruments = [inst for inst in settings.instruments if inst in snapshot.markets]

        def _run(instrument: str) -> tuple[TradePlan, ExecutionResult]:
            return _run_instrument(
                instrument,
                snapshot=snapshot,
                settings=settings,
                llm=llm,
                service=service,
                journal=journal,
                modifier=modifier,
                dry_run=dry_run,
            )

        failed = 0
        with ThreadPoolExecutor(max_workers=len(instruments)) as pool:
            # worker threads inherit the cycle log context
            futures = {
                inst: pool.submit(contextvars.copy_context().run, _run, inst)
                for inst in instruments
            }
            for instrument, future in futures.items():
                try:
                    plan, execution = future.result()
                except Exception as exc:  # noqa: BLE001 - one instrument must not sink the cycle.
                    failed += 1
                    logger.exception("instrument_failed", instrument=instrument, error=str(exc))
                    journal.append("error", {"instrument": instrument, "error": str(exc)})
                    cycle_result.warnings.append(f"instrument_failed: {instrument}: {exc}")
                    continue
                cycle_result.decisions.append(
                    {
                        "instrument": instrument,
                        "original_action": plan.original_action,
                        **plan.decision.model_dump(),
                    }
                )
                cycle_result.executions.append({"instrument": instrument, **asdict(execution)})
                if not execution.accepted:
                    failed += 1

        status = "completed" if failed == 0 else "completed_with_errors"
        if dry_run:
            status = f"{status}_dry_run"
        return _finish_cycle(cycle_result, journal, started, status=status)

    except Exception as exc:  # noqa: BLE001 - top-level guard for loop resilience.
        logger.exception("pipeline_failed", error=str(exc))
        journal.append("error", {"error": str(exc)})
        return _finish_cycle(cycle_result, journal, started, status="failed")
    finally:
        okx.close()
        clear_cycle_context()


def _run_instrument(
    instrument: str,
    *,
    snapshot: CycleSnapshot,
    settings: Settings,
    llm: DeepSeekClient,
    service: ExecutionService,
    journal: JournalStore,
    modifier: float,
    dry_run: bool,
) -> tuple[TradePlan, ExecutionResult]:
    market = snapshot.markets[instrument]
    position = snapshot.position_for(instrument)
    stage = select_risk_stage(snapshot.account.total_equity, settings)

    messages = build_messages(
        market=market,
        account=snapshot.account,
        position=position,
        stage=stage,
        settings=settings,
    )
    decision = llm.decide(messages, instrument=instrument)
    journal.append("ai_decision", {"instrument": instrument, **decision.model_dump()})

    plan = plan_trade(
        instrument,
        decision,
        account=snapshot.account,
        position=position,
        price=market.last_price,
        settings=settings,
        modifier=modifier,
    )
    if plan.decision.action != decision.action or plan.notes:
        journal.append(
            "normalization",
            {
                "instrument": instrument,
                "original_action": plan.original_action,
                "action": plan.decision.action,
                "notes": plan.notes,
            },
        )
    if plan.sizing is not None:
        journal.append(
            "sizing",
            {
                "instrument": instrument,
                "stage": plan.stage.name,
                "leverage": plan.leverage,
                "modifier": modifier,
                **asdict(plan.sizing),
            },
        )

    if dry_run:
        execution = ExecutionResult(
            accepted=True,
            applied_action=plan.decision.action,
            applied_size_contracts=plan.decision.size or 0.0,
            applied_stop_loss=plan.decision.stop_loss,
            applied_take_profit=plan.decision.take_profit,
            notes=["dry_run", *plan.notes],
        )
    else:
        execution = service.execute(plan)

    if execution.applied_action != "HOLD":
        event = "protection" if execution.applied_action == "UPDATE_TPSL" else "order"
        journal.append(event, {"instrument": instrument, "dry_run": dry_run, **asdict(execution)})
    return plan, execution


def _journal_snapshot(journal: JournalStore, snapshot: CycleSnapshot) -> None:
    journal.append(
        "equity",
        {
            "total_equity": snapshot.account.total_equity,
            "available_equity": snapshot.account.available_equity,
            "open_positions": len(snapshot.positions),
        },
    )
    for instrument, market in snapshot.markets.items():
        position = snapshot.position_for(instrument)
        journal.append(
            "market_data",
            {
                "instrument": instrument,
                "last_price": market.last_price,
                "funding_rate": market.funding_rate,
                "open_interest": market.open_interest,
                "position_side": position.side if position else None,
                "position_size": position.size_contracts if position else 0.0,
                "current_stop_loss": position.current_stop_loss if position else 0.0,
            },
        )


def _finish_cycle(
    result: CycleResult,
    journal: JournalStore,
    started: float,
    *,
    status: str,
) -> CycleResult:
    elapsed_ms = (perf_counter() - started) * 1000
    result.status = status
    result.elapsed_ms = elapsed_ms
    journal.append("cycle_end", {"status": status, "elapsed_ms": elapsed_ms})
    return result
