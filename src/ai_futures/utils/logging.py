"""结构化日志配置模块。

使用 structlog 提供结构化日志支持，支持 JSON 和控制台两种输出格式。
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from ai_futures.config import LogFormat, Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """配置结构化日志系统。

    根据配置设置日志级别和输出格式，未传入配置时使用全局配置。
    """
    settings = settings or get_settings()

    # 设置标准库日志级别
    log_level = getattr(logging, settings.log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    # httpx 默认会记录每个请求，降低噪音
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    # 共享处理器
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    # 根据格式选择渲染器
    if settings.log_format == LogFormat.JSON:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取结构化日志记录器。

    Args:
        name: 日志记录器名称。如果为 None，则使用调用模块名。

    Returns:
        结构化日志记录器实例。
    """
    return structlog.get_logger(name)


def bind_cycle_context(cycle_id: str, **kwargs: Any) -> None:
    """绑定本轮循环的上下文，之后的日志都会带上 cycle_id。"""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(cycle_id=cycle_id, **kwargs)


def clear_cycle_context() -> None:
    """清除循环上下文。"""
    structlog.contextvars.clear_contextvars()


# 便捷日志函数
def log_llm_call(
    logger: structlog.stdlib.BoundLogger,
    *,
    model: str,
    success: bool,
    latency_ms: float,
    **kwargs: Any,
) -> None:
    """记录 LLM 调用。"""
    level = "info" if success else "warning"
    getattr(logger, level)(
        "llm_call",
        model=model,
        success=success,
        latency_ms=round(latency_ms, 2),
        **kwargs,
    )


def log_order_execution(
    logger: structlog.stdlib.BoundLogger,
    *,
    instrument: str,
    side: str,
    pos_side: str,
    size: float,
    reduce_only: bool = False,
    order_id: str | None = None,
    status: str = "submitted",
    **kwargs: Any,
) -> None:
    """记录订单执行。"""
    level = "warning" if status in {"rejected", "failed"} else "info"
    getattr(logger, level)(
        "order_execution",
        instrument=instrument,
        side=side,
        pos_side=pos_side,
        size=size,
        reduce_only=reduce_only,
        order_id=order_id,
        status=status,
        **kwargs,
    )


def log_protection_update(
    logger: structlog.stdlib.BoundLogger,
    *,
    instrument: str,
    pos_side: str,
    stop_loss: float | None,
    take_profit: float | None,
    placed: list[str],
    cancelled: list[str],
    **kwargs: Any,
) -> None:
    """记录止盈止损替换。"""
    logger.info(
        "protection_update",
        instrument=instrument,
        pos_side=pos_side,
        stop_loss=stop_loss,
        take_profit=take_profit,
        placed=placed,
        cancelled=cancelled,
        **kwargs,
    )


def log_risk_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    event_type: str,
    action: str,
    **kwargs: Any,
) -> None:
    """记录风控事件。"""
    logger.warning(
        "risk_event",
        event_type=event_type,
        action=action,
        **kwargs,
    )
