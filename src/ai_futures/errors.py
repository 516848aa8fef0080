"""Error taxonomy for decision parsing and exchange execution."""

from __future__ import annotations

# OKX sCode values with dedicated handling.
MARGIN_INSUFFICIENT_CODES = frozenset({"51008"})
POSITION_NOT_FOUND_CODES = frozenset({"51000", "51023"})


class TradingError(Exception):
    """Base error for the trading core."""


class DecisionParseError(TradingError):
    """Model output could not be turned into a valid decision."""


class ExchangeTransportError(TradingError):
    """Raised when a request never got a decodable exchange response."""


class ExchangeRejectionError(TradingError):
    """Exchange answered with a non-success code."""

    def __init__(self, code: str, message: str, *, operation: str = "") -> None:
        self.code = str(code)
        self.message = message
        self.operation = operation
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}code={self.code} msg={message}")


class MarginInsufficientError(ExchangeRejectionError):
    """Order rejected because isolated margin could not be funded."""


class PositionNotFoundError(ExchangeRejectionError):
    """Close attempted on a side with no open position."""


class AmbiguousPositionError(TradingError):
    """Neither side of an instrument could be closed."""

    def __init__(self, instrument: str, long_reason: str, short_reason: str) -> None:
        self.instrument = instrument
        self.long_reason = long_reason
        self.short_reason = short_reason
        super().__init__(
            f"close_failed {instrument} (long: {long_reason}, short: {short_reason})"
        )


def classify_rejection(code: str, message: str, *, operation: str = "") -> ExchangeRejectionError:
    """Map an OKX code/message pair onto the rejection hierarchy."""
    normalized = str(code)
    if normalized in MARGIN_INSUFFICIENT_CODES:
        return MarginInsufficientError(normalized, message, operation=operation)
    lowered = message.lower()
    if (
        normalized in POSITION_NOT_FOUND_CODES
        or "not exist" in lowered
        or "不存在" in message
    ):
        return PositionNotFoundError(normalized, message, operation=operation)
    return ExchangeRejectionError(normalized, message, operation=operation)
