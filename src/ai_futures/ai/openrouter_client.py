"""OpenRouter chat-completions client used by the decision provider."""

from __future__ import annotations

import time
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ai_futures.config import Settings
from ai_futures.utils.logging import get_logger, log_llm_call

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"

_TEMPERATURE = {"decision": 0.5, "learning_summary": 0.7}
_RETRYABLE_STATUS = frozenset({408, 409, 425, 429})


class OpenRouterError(Exception):
    """Any failed completion."""


class OpenRouterTransientError(OpenRouterError):
    """Timeouts, rate limits and 5xx; retried before surfacing."""


class OpenRouterResponseError(OpenRouterError):
    """The request was refused or the body had no assistant text."""


def extract_message_content(payload: dict[str, Any]) -> str:
    """Assistant text of the first choice, or raise if there is none."""
    if isinstance(payload.get("error"), dict):
        raise OpenRouterResponseError(str(payload["error"].get("message", "provider_error")))
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise OpenRouterResponseError("response_without_choices")
    message = choices[0].get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise OpenRouterResponseError("empty_completion")
    return content


class OpenRouterClient:
    """Sends one system+user exchange per call and returns the assistant text."""

    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport
        self._logger = get_logger("ai_futures.ai.openrouter_client")

    @property
    def model(self) -> str:
        return self._settings.openrouter_model

    def complete(self, system_prompt: str, user_prompt: str, *, purpose: str = "decision") -> str:
        if not self._settings.openrouter_api_key:
            raise OpenRouterResponseError("missing_openrouter_api_key")

        started = time.perf_counter()
        try:
            content = self._post(system_prompt, user_prompt, _TEMPERATURE.get(purpose, 0.5))
        except OpenRouterError as exc:
            log_llm_call(
                self._logger,
                model=self.model,
                success=False,
                latency_ms=(time.perf_counter() - started) * 1000,
                purpose=purpose,
                reason=str(exc),
            )
            raise

        log_llm_call(
            self._logger,
            model=self.model,
            success=True,
            latency_ms=(time.perf_counter() - started) * 1000,
            purpose=purpose,
            response_chars=len(content),
        )
        return content

    @retry(
        retry=retry_if_exception_type(OpenRouterTransientError),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _post(self, system_prompt: str, user_prompt: str, temperature: float) -> str:
        payload = {
            "model": self.model,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        headers = {"Authorization": f"Bearer {self._settings.openrouter_api_key}"}
        try:
            with httpx.Client(
                timeout=self._settings.openrouter_timeout, transport=self._transport
            ) as client:
                response = client.post(OPENROUTER_URL, headers=headers, json=payload)
        except httpx.TransportError as exc:
            raise OpenRouterTransientError(f"transport: {exc}") from exc

        status = response.status_code
        if status in _RETRYABLE_STATUS or status >= 500:
            raise OpenRouterTransientError(f"http_{status}")
        if status >= 400:
            raise OpenRouterResponseError(f"http_{status}: {response.text[:200]}")
        try:
            body = response.json()
        except ValueError as exc:
            raise OpenRouterResponseError("response_not_json") from exc
        return extract_message_content(body)
