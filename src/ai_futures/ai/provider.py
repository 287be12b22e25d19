"""Decision providers for the trading cycle."""

from __future__ import annotations

from typing import Protocol

from ai_futures.ai.openrouter_client import OpenRouterClient, OpenRouterError
from ai_futures.ai.prompts import build_decision_system_prompt, build_decision_user_prompt
from ai_futures.ai.schemas import FullDecision, TradingContext, parse_decisions
from ai_futures.config import Settings
from ai_futures.errors import DecisionProviderError


class DecisionProvider(Protocol):
    """External reasoning call. Must not touch core state."""

    def decide(self, context: TradingContext) -> FullDecision:
        """Return ordered decisions plus prompts and CoT trace.

        Raises DecisionProviderError carrying the partial FullDecision.
        """

    def summarize(self, system_prompt: str, user_prompt: str) -> str:
        """Return free text for a learning summary."""


class OpenRouterDecisionProvider:
    """Production provider backed by OpenRouter."""

    def __init__(self, settings: Settings, client: OpenRouterClient | None = None) -> None:
        self._client = client or OpenRouterClient(settings)

    def decide(self, context: TradingContext) -> FullDecision:
        result = FullDecision(
            system_prompt=build_decision_system_prompt(context),
            user_prompt=build_decision_user_prompt(context),
        )
        try:
            result.raw_response = self._client.complete(result.system_prompt, result.user_prompt)
        except OpenRouterError as exc:
            raise DecisionProviderError(f"decision_call_failed: {exc}", partial=result) from exc

        try:
            result.cot_trace, result.decisions = parse_decisions(result.raw_response)
        except ValueError as exc:
            result.cot_trace = result.raw_response
            raise DecisionProviderError(f"decision_parse_failed: {exc}", partial=result) from exc
        return result

    def summarize(self, system_prompt: str, user_prompt: str) -> str:
        try:
            return self._client.complete(system_prompt, user_prompt, purpose="learning_summary")
        except OpenRouterError as exc:
            raise DecisionProviderError(f"summary_call_failed: {exc}") from exc
