from __future__ import annotations

from datetime import timedelta

import pytest

from ai_futures.ai.learning import MIN_TRADES, LearningSummarizer
from ai_futures.performance.recorder import build_trade_outcome
from ai_futures.store.sqlite import SQLiteStore
from ai_futures.types import CloseEvent

from conftest import START, FakeProvider


def seed_outcomes(store: SQLiteStore, count: int) -> None:
    for i in range(count):
        close_time = START + timedelta(hours=i)
        store.save_trade_outcome(
            build_trade_outcome(
                CloseEvent(
                    symbol="BTCUSDT",
                    side="long",
                    quantity=0.01,
                    leverage=5,
                    open_price=50_000.0,
                    close_price=51_000.0 if i % 2 == 0 else 49_500.0,
                    close_time=close_time,
                    trigger="decision",
                    open_time=close_time - timedelta(minutes=45),
                )
            )
        )


def test_too_few_trades_skips_provider(store: SQLiteStore, provider: FakeProvider) -> None:
    seed_outcomes(store, MIN_TRADES - 1)
    summarizer = LearningSummarizer(store, provider, "test", lambda: START)
    assert summarizer.generate() is None
    assert provider.summary_calls == 0
    assert store.get_active_learning_summary() is None


def test_summary_is_saved_and_active(store: SQLiteStore, provider: FakeProvider) -> None:
    seed_outcomes(store, MIN_TRADES)
    summarizer = LearningSummarizer(store, provider, "test", lambda: START + timedelta(days=1))

    summary = summarizer.generate()

    assert summary is not None
    assert provider.summary_calls == 1
    assert summary.trades_count == 5
    assert summary.win_rate == pytest.approx(60.0)
    assert summary.avg_pnl == pytest.approx((3 * 10.0 - 2 * 5.0) / 5)
    assert summary.date_range_start == START - timedelta(minutes=45)
    assert summary.date_range_end == START + timedelta(hours=4)
    active = store.get_active_learning_summary()
    assert active is not None
    assert active.summary_content == "Cut losers faster."


def test_blank_summary_is_not_saved(store: SQLiteStore, provider: FakeProvider) -> None:
    seed_outcomes(store, MIN_TRADES)
    provider.summary_text = "   "
    assert LearningSummarizer(store, provider, "test", lambda: START).generate() is None
    assert store.get_active_learning_summary() is None
