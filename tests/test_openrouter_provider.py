from __future__ import annotations

import json

import httpx
import pytest

from ai_futures.ai.openrouter_client import (
    OpenRouterClient,
    OpenRouterResponseError,
    extract_message_content,
)
from ai_futures.ai.provider import OpenRouterDecisionProvider
from ai_futures.ai.schemas import AccountInfo, TradingContext
from ai_futures.config import Settings
from ai_futures.errors import DecisionProviderError

_ANSWER = (
    "BTC momentum is fading.\n"
    '[{"symbol": "BTCUSDT", "action": "close_long", "reasoning": "momentum lost"}]'
)


def _completion(content: str) -> dict[str, object]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _context() -> TradingContext:
    return TradingContext(
        current_time="2025-03-01T12:00:00+00:00",
        runtime_minutes=30,
        call_count=10,
        account=AccountInfo(
            total_equity=1000.0,
            available_balance=900.0,
            total_pnl=0.0,
            total_pnl_pct=0.0,
            margin_used=100.0,
            margin_used_pct=10.0,
            position_count=1,
        ),
        btc_eth_leverage=5,
        altcoin_leverage=3,
        max_positions=3,
    )


class _Script:
    """Serves queued responses and counts requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _provider(script: _Script, api_key: str = "sk-test") -> OpenRouterDecisionProvider:
    settings = Settings(_env_file=None, openrouter_api_key=api_key)
    client = OpenRouterClient(settings, transport=httpx.MockTransport(script))
    return OpenRouterDecisionProvider(settings, client)


@pytest.fixture(autouse=True)
def _no_retry_sleep(monkeypatch: object) -> None:
    monkeypatch.setattr(  # type: ignore[attr-defined]
        OpenRouterClient._post.retry, "sleep", lambda seconds: None
    )


def test_decide_returns_parsed_decisions_and_prompts() -> None:
    script = _Script(httpx.Response(200, json=_completion(_ANSWER)))

    result = _provider(script).decide(_context())

    assert result.cot_trace == "BTC momentum is fading."
    assert [d.action for d in result.decisions] == ["close_long"]
    assert "other symbols <= 3x" in result.system_prompt
    assert "cycle #10" in result.user_prompt
    sent = json.loads(script.requests[0].content)
    assert sent["messages"][0]["content"] == result.system_prompt
    assert sent["temperature"] == 0.5
    assert script.requests[0].headers["Authorization"] == "Bearer sk-test"


def test_rate_limit_is_retried() -> None:
    script = _Script(
        httpx.Response(429, json={"error": {"message": "slow down"}}),
        httpx.Response(200, json=_completion(_ANSWER)),
    )
    result = _provider(script).decide(_context())
    assert len(script.requests) == 2
    assert len(result.decisions) == 1


def test_client_error_is_not_retried_and_keeps_prompts() -> None:
    script = _Script(httpx.Response(401, text="bad key"))

    with pytest.raises(DecisionProviderError) as info:
        _provider(script).decide(_context())

    assert len(script.requests) == 1
    assert "http_401" in str(info.value)
    assert info.value.partial.system_prompt
    assert info.value.partial.raw_response == ""


def test_unparseable_answer_keeps_raw_text_as_trace() -> None:
    script = _Script(httpx.Response(200, json=_completion("I would rather not trade today.")))

    with pytest.raises(DecisionProviderError) as info:
        _provider(script).decide(_context())

    assert info.value.partial.cot_trace == "I would rather not trade today."
    assert "decision_parse_failed" in str(info.value)


def test_missing_api_key_fails_without_request() -> None:
    script = _Script()
    with pytest.raises(DecisionProviderError):
        _provider(script, api_key="").decide(_context())
    assert script.requests == []


def test_summarize_uses_learning_temperature() -> None:
    script = _Script(httpx.Response(200, json=_completion("Cut losers faster.")))
    assert _provider(script).summarize("system", "user") == "Cut losers faster."
    assert json.loads(script.requests[0].content)["temperature"] == 0.7


@pytest.mark.parametrize(
    "payload",
    [
        {"choices": []},
        {"choices": [{"message": {"content": "   "}}]},
        {"error": {"message": "model overloaded"}},
    ],
)
def test_extract_message_content_rejects_empty_payloads(payload: dict[str, object]) -> None:
    with pytest.raises(OpenRouterResponseError):
        extract_message_content(payload)
