"""CLI 入口模块 - AI Futures 命令行接口。"""

import json
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, NoReturn

import click

from ai_futures import __version__
from ai_futures.ai.deepseek_client import DeepSeekAPIError, DeepSeekClient
from ai_futures.config import get_settings
from ai_futures.exchange.paper import PaperExchange
from ai_futures.journal.store import JOURNAL_EVENT_TYPES, JournalStore
from ai_futures.pipeline import run_trading_cycle
from ai_futures.risk.stages import select_risk_stage
from ai_futures.utils.logging import get_logger, setup_logging


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """AI Futures - LLM 辅助的 OKX 永续合约风控执行系统。

    模型给出建议，系统负责仓位计算、止损棘轮与订单执行。
    """
    if version:
        click.echo(f"ai-futures version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _require_live_config(logger: Any) -> None:
    """实盘模式下校验必要配置，缺失时退出。"""
    settings = get_settings()
    if not settings.is_live_mode:
        return
    missing = settings.validate_for_live()
    if missing:
        logger.error(
            "missing_required_config",
            missing_keys=missing,
            hint="请在 .env 文件中配置必要的 API 密钥",
        )
        sys.exit(1)


@cli.command()
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="试运行模式，不执行实际操作",
)
def once(dry_run: bool) -> None:
    """执行单次交易循环。

    快照 → AI 决策 → 规范化 → 仓位计算 → 执行/记录
    """
    setup_logging()
    logger = get_logger("ai_futures.main")
    settings = get_settings()

    # 确保目录存在
    settings.ensure_directories()

    logger.info(
        "starting_single_run",
        mode=settings.mode.value,
        instruments=settings.instruments,
        dry_run=dry_run,
        timestamp=datetime.now().isoformat(),
    )

    _require_live_config(logger)

    try:
        result = run_trading_cycle(settings, dry_run=dry_run)
        logger.info(
            "run_completed",
            status=result.status,
            elapsed_ms=round(result.elapsed_ms, 2),
            decisions=len(result.decisions),
            executions=len(result.executions),
            warnings=result.warnings,
        )

    except KeyboardInterrupt:
        logger.info("run_interrupted", message="User interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("run_failed", error=str(e))
        sys.exit(1)

    if result.status == "failed":
        sys.exit(1)


def seconds_until_next_boundary(now: float, interval_sec: int, offset_sec: int = 0) -> float:
    """距离下一个周期边界（加偏移）的秒数，保证在 K 线收盘后启动。"""
    if interval_sec <= 0:
        raise ValueError("interval_must_be_positive")
    next_boundary = (int(now) // interval_sec + 1) * interval_sec + offset_sec
    return next_boundary - now


@cli.command()
@click.option(
    "--interval-min",
    "-i",
    type=click.IntRange(min=1),
    default=15,
    help="循环间隔（分钟），与 K 线周期对齐",
)
@click.option(
    "--offset-sec",
    type=click.IntRange(min=0),
    default=5,
    help="K 线收盘后延迟启动的秒数",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="试运行模式，不执行实际操作",
)
def loop(interval_min: int, offset_sec: int, dry_run: bool) -> NoReturn:
    """循环执行交易循环。

    启动后立即执行一次，之后在每个周期边界（如 15 分钟 K 线收盘）后执行。
    使用 Ctrl+C 停止。
    """
    setup_logging()
    logger = get_logger("ai_futures.main")
    settings = get_settings()
    settings.ensure_directories()

    logger.info(
        "starting_loop",
        mode=settings.mode.value,
        instruments=settings.instruments,
        interval_min=interval_min,
        offset_sec=offset_sec,
        dry_run=dry_run,
    )

    _require_live_config(logger)

    iteration = 0
    interval_sec = interval_min * 60
    consecutive_failures = 0

    try:
        while True:
            iteration += 1
            try:
                result = run_trading_cycle(settings, dry_run=dry_run)
            except Exception as e:
                # 单轮失败不退出循环
                consecutive_failures += 1
                logger.exception(
                    "loop_iteration_failed",
                    iteration=iteration,
                    consecutive_failures=consecutive_failures,
                    error=str(e),
                )
            else:
                consecutive_failures = (
                    consecutive_failures + 1 if result.status == "failed" else 0
                )
                logger.info(
                    "loop_iteration_completed",
                    iteration=iteration,
                    status=result.status,
                    elapsed_ms=round(result.elapsed_ms, 2),
                    decisions=len(result.decisions),
                    executions=len(result.executions),
                    warnings=result.warnings,
                )

            wait_sec = seconds_until_next_boundary(time.time(), interval_sec, offset_sec)
            logger.debug("waiting_next_iteration", wait_seconds=round(wait_sec, 1))
            time.sleep(wait_sec)

    except KeyboardInterrupt:
        logger.info(
            "loop_stopped",
            message="User stopped loop",
            total_iterations=iteration,
        )
        sys.exit(0)


@cli.command()
def status() -> None:
    """显示系统状态和配置摘要。"""
    setup_logging()
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("AI Futures - Status")
    click.echo("=" * 50)
    click.echo()

    # 运行模式
    mode_marker = "[PAPER]" if settings.is_paper_mode else "[LIVE]"
    mode_text = "Paper Trading" if settings.is_paper_mode else "Live Trading"
    click.echo(f"{mode_marker} Mode: {mode_text}")
    click.echo(f"   Instruments: {', '.join(settings.instruments)}")
    click.echo()

    # API 配置状态
    click.echo("[API Configuration]")
    okx_ok = settings.okx_api_key and settings.okx_secret_key and settings.okx_passphrase
    okx_status = "[OK] Configured" if okx_ok else "[--] Not configured"
    deepseek_status = "[OK] Configured" if settings.deepseek_api_key else "[--] Not configured"
    click.echo(f"   OKX API: {okx_status}")
    click.echo(f"   DeepSeek API: {deepseek_status}")
    click.echo(f"   OKX Simulated: {'Yes' if settings.okx_simulated_trading else 'No'}")
    click.echo(f"   Margin mode: {settings.okx_margin_mode}")
    click.echo(f"   LLM Model: {settings.deepseek_model}")
    click.echo()

    # 风控参数
    click.echo("[Risk Stages]")
    for probe in (0.0, settings.stage_1_max_equity, settings.stage_2_max_equity):
        stage = select_risk_stage(probe, settings)
        click.echo(
            f"   {stage.name}: from {probe:g} U, leverage {stage.leverage:g}x, "
            f"risk {stage.risk_ratio:.0%}, cap {stage.cap_ratio:.0%}"
        )
    click.echo(f"   Add risk/cap: {settings.add_risk_ratio:.0%} / {settings.add_cap_ratio:.0%}")
    click.echo(
        f"   Margin retry: x{settings.margin_shrink_factor} up to {settings.max_margin_retries}"
    )
    click.echo()

    # 纸交易账户
    if settings.is_paper_mode:
        click.echo("[Paper Account]")
        summary = PaperExchange(settings).describe()
        for key, value in summary.items():
            click.echo(f"   {key}: {value}")
        click.echo()

    # 日志配置
    click.echo("[Logging]")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo(f"   Journal dir: {settings.journal_dir}")
    click.echo()

    # 验证状态
    if settings.is_live_mode:
        missing = settings.validate_for_live()
        if missing:
            click.echo("[ERROR] Live mode configuration incomplete, missing:")
            for key in missing:
                click.echo(f"   - {key}")
        else:
            click.echo("[OK] Live mode configuration complete")
    else:
        click.echo("[INFO] Paper mode only needs a DeepSeek key for decisions")

    click.echo()
    click.echo("=" * 50)


@cli.command()
def check() -> None:
    """检查系统依赖和配置。"""
    setup_logging()
    logger = get_logger("ai_futures.main")

    click.echo("Checking system dependencies...")
    click.echo()

    all_ok = True

    # 检查必要的包
    packages = [
        ("pydantic", "Configuration validation"),
        ("pydantic_settings", "Settings loading"),
        ("httpx", "HTTP client"),
        ("pandas", "Data processing"),
        ("numpy", "Numerical computing"),
        ("structlog", "Structured logging"),
        ("click", "CLI framework"),
        ("tenacity", "Retry mechanism"),
    ]

    for pkg_name, desc in packages:
        try:
            __import__(pkg_name)
            click.echo(f"  [OK] {pkg_name} - {desc}")
        except ImportError:
            click.echo(f"  [MISSING] {pkg_name} - {desc}")
            all_ok = False

    click.echo()

    # 检查配置文件
    env_file = Path(".env")
    if env_file.exists():
        click.echo("  [OK] .env configuration file exists")
    else:
        click.echo("  [WARN] .env file not found (using defaults)")

    click.echo()

    if all_ok:
        click.echo("[OK] All dependency checks passed")
    else:
        click.echo("[ERROR] Some dependencies missing. Run: pip install -e .")

    logger.info("dependency_check_completed", all_ok=all_ok)


@cli.command("ping-llm")
def ping_llm() -> None:
    """测试 DeepSeek API 连通性。"""
    setup_logging()
    logger = get_logger("ai_futures.main")
    settings = get_settings()

    try:
        content = DeepSeekClient(settings).ping()
    except DeepSeekAPIError as e:
        click.echo(f"[ERROR] DeepSeek unreachable: {e}")
        logger.warning("llm_ping_failed", error=str(e))
        sys.exit(1)

    click.echo(f"[OK] DeepSeek replied: {content[:200]}")
    logger.info("llm_ping_ok", model=settings.deepseek_model)


@cli.command("journal")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=20, help="显示的事件条数")
@click.option(
    "--event-type",
    "-t",
    type=click.Choice(sorted(JOURNAL_EVENT_TYPES)),
    default=None,
    help="只显示指定类型的事件",
)
def journal(limit: int, event_type: str | None) -> None:
    """显示最近的交易日志事件。"""
    settings = get_settings()
    store = JournalStore(settings.journal_dir)
    rows = store.load_recent(limit, event_type=event_type)
    if not rows:
        click.echo("No journal events found")
        return

    for row in rows:
        payload = row.get("payload", {})
        summary = json.dumps(payload, ensure_ascii=False, default=str)
        if len(summary) > 160:
            summary = summary[:157] + "..."
        click.echo(f"{row.get('timestamp', '')}  {row.get('event_type', ''):<13} {summary}")


# 支持 python -m ai_futures.main 调用
if __name__ == "__main__":
    cli()
