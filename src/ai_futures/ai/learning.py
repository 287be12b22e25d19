"""Periodic learning summary distilled from recent trade outcomes."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from ai_futures.ai.prompts import LEARNING_SYSTEM_PROMPT, build_learning_user_prompt
from ai_futures.ai.provider import DecisionProvider
from ai_futures.store.base import DurableStore
from ai_futures.types import LearningSummary, TradeOutcome
from ai_futures.utils.logging import get_logger

MIN_TRADES = 5
LOOKBACK_TRADES = 20


def _describe(trade: TradeOutcome) -> str:
    line = (
        f"{trade.close_time:%m-%d %H:%M} {trade.symbol} {trade.side} {trade.leverage}x "
        f"{trade.open_price:.4f}->{trade.close_price:.4f} pnl {trade.pnl:+.2f} "
        f"({trade.pnl_pct:+.1f}%) held {trade.duration_minutes}min, exit: {trade.exit_reason}"
    )
    if trade.failure_type:
        line += f", failure: {trade.failure_type}"
    return line


class LearningSummarizer:
    """Reads durable outcomes, asks the provider for lessons, saves them.

    Runs off the scheduler thread and never touches in-memory runtime state.
    """

    def __init__(
        self,
        store: DurableStore,
        provider: DecisionProvider,
        trader_id: str,
        clock: Callable[[], datetime],
    ) -> None:
        self._store = store
        self._provider = provider
        self._trader_id = trader_id
        self._clock = clock
        self._logger = get_logger("ai_futures.ai.learning")

    def generate(self) -> LearningSummary | None:
        outcomes = self._store.get_recent_trade_outcomes(LOOKBACK_TRADES)
        if len(outcomes) < MIN_TRADES:
            self._logger.info("learning_summary_skipped", trades=len(outcomes), required=MIN_TRADES)
            return None

        wins = sum(1 for trade in outcomes if trade.pnl > 0)
        win_rate = wins / len(outcomes) * 100
        avg_pnl = sum(trade.pnl for trade in outcomes) / len(outcomes)
        ordered = sorted(outcomes, key=lambda trade: trade.close_time)
        user_prompt = build_learning_user_prompt(
            [_describe(trade) for trade in ordered], win_rate, avg_pnl
        )

        content = self._provider.summarize(LEARNING_SYSTEM_PROMPT, user_prompt).strip()
        if not content:
            self._logger.warning("learning_summary_empty")
            return None

        summary = LearningSummary(
            trader_id=self._trader_id,
            summary_content=content,
            trades_count=len(outcomes),
            date_range_start=ordered[0].open_time,
            date_range_end=ordered[-1].close_time,
            win_rate=win_rate,
            avg_pnl=avg_pnl,
            created_at=self._clock(),
        )
        self._store.save_learning_summary(summary)
        return summary
