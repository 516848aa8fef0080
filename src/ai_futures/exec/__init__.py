"""Execution package exports."""

from ai_futures.errors import (
    AmbiguousPositionError,
    DecisionParseError,
    ExchangeRejectionError,
    ExchangeTransportError,
    MarginInsufficientError,
    PositionNotFoundError,
    TradingError,
)
from ai_futures.exec.close import CloseResolver
from ai_futures.exec.executor import OrderExecutor, RetryPolicy, resolve_side
from ai_futures.exec.protection import ProtectiveOrderReconciler
from ai_futures.exec.service import ExecutionService

__all__ = [
    "AmbiguousPositionError",
    "CloseResolver",
    "DecisionParseError",
    "ExchangeRejectionError",
    "ExchangeTransportError",
    "ExecutionService",
    "MarginInsufficientError",
    "OrderExecutor",
    "PositionNotFoundError",
    "ProtectiveOrderReconciler",
    "RetryPolicy",
    "TradingError",
    "resolve_side",
]
