"""OKX V5 request signing."""

from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Callable, Protocol


class RequestSigner(Protocol):
    """Produces authentication headers for one request."""

    def headers(self, method: str, request_path: str, body: str = "") -> dict[str, str]:
        """Headers for ``method`` + ``request_path`` (including query) + ``body``."""


def okx_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, as OKX expects."""
    moment = now or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + (
        f"{moment.microsecond // 1000:03d}Z"
    )


def sign_message(secret_key: str, timestamp: str, method: str, request_path: str, body: str) -> str:
    """Base64 HMAC-SHA256 of ``timestamp + METHOD + path + body``."""
    message = f"{timestamp}{method.upper()}{request_path}{body}"
    digest = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class OkxHmacSigner:
    """API-key signer for private OKX endpoints."""

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        passphrase: str,
        *,
        simulated: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._api_key = api_key
        self._secret_key = secret_key
        self._passphrase = passphrase
        self._simulated = simulated
        self._clock = clock

    def headers(self, method: str, request_path: str, body: str = "") -> dict[str, str]:
        timestamp = okx_timestamp(self._clock() if self._clock else None)
        headers = {
            "Content-Type": "application/json",
            "OK-ACCESS-KEY": self._api_key,
            "OK-ACCESS-PASSPHRASE": self._passphrase,
            "OK-ACCESS-SIGN": sign_message(self._secret_key, timestamp, method, request_path, body),
            "OK-ACCESS-TIMESTAMP": timestamp,
        }
        if self._simulated:
            headers["x-simulated-trading"] = "1"
        return headers
