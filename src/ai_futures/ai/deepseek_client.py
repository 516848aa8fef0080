"""DeepSeek LLM client."""

from __future__ import annotations

import time
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ai_futures.ai.schemas import Decision, parse_decision_text
from ai_futures.config import Settings
from ai_futures.utils.logging import get_logger, log_llm_call


class DeepSeekError(Exception):
    """Base DeepSeek error."""


class DeepSeekAPIError(DeepSeekError):
    """Raised when API transport/request fails."""


class DeepSeekClient:
    """Thin client for the DeepSeek chat completion endpoint."""

    def __init__(self, settings: Settings, *, http_client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._http_client = http_client
        self._logger = get_logger("ai_futures.ai.deepseek_client")

    def decide(self, messages: list[dict[str, str]], *, instrument: str = "") -> Decision:
        """Ask for one decision. Transport and parse failures both yield HOLD."""
        started = time.perf_counter()
        try:
            content = self._request_completion(messages)
        except DeepSeekAPIError as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000
            log_llm_call(
                self._logger,
                model=self._settings.deepseek_model,
                success=False,
                latency_ms=elapsed_ms,
                instrument=instrument,
                reason="api_error",
                error=str(exc),
            )
            return Decision.hold(f"llm_unavailable: {exc}")

        decision = parse_decision_text(content)
        elapsed_ms = (time.perf_counter() - started) * 1000
        log_llm_call(
            self._logger,
            model=self._settings.deepseek_model,
            success=not decision.rationale.startswith("invalid_model_response"),
            latency_ms=elapsed_ms,
            instrument=instrument,
            action=decision.action,
        )
        return decision

    def ping(self) -> str:
        """Round-trip a trivial JSON request; raises DeepSeekAPIError on failure."""
        return self._request_completion(
            [
                {
                    "role": "user",
                    "content": "Please respond with a JSON object containing the message 'OK'.",
                }
            ]
        )

    @retry(
        retry=retry_if_exception_type(DeepSeekAPIError),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _request_completion(self, messages: list[dict[str, str]]) -> str:
        api_key = self._settings.deepseek_api_key.strip()
        if not api_key:
            raise DeepSeekAPIError("missing_deepseek_api_key")
        if not api_key.isascii():
            raise DeepSeekAPIError("deepseek_api_key_not_ascii")

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self._settings.deepseek_model,
            "messages": messages,
            "stream": False,
            "temperature": self._settings.deepseek_temperature,
            "max_tokens": 4096,
            "response_format": {"type": "json_object"},
        }

        try:
            if self._http_client is not None:
                response = self._http_client.post(
                    self._settings.deepseek_url,
                    headers=headers,
                    json=payload,
                )
            else:
                with httpx.Client(timeout=self._settings.deepseek_timeout) as client:
                    response = client.post(
                        self._settings.deepseek_url,
                        headers=headers,
                        json=payload,
                    )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DeepSeekAPIError(str(exc)) from exc

        return _extract_message_content(body)


def _extract_message_content(payload: Any) -> str:
    """Read assistant content from a chat completion payload."""
    if not isinstance(payload, dict):
        return "{}"
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return "{}"
    first = choices[0]
    if not isinstance(first, dict):
        return "{}"
    message = first.get("message")
    if not isinstance(message, dict):
        return "{}"
    content = message.get("content")
    if isinstance(content, str):
        return content
    return "{}"
