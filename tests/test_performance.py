from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from ai_futures.performance.analyzer import (
    PROFIT_FACTOR_SENTINEL,
    SHARPE_SENTINEL,
    PerformanceAnalyzer,
    max_drawdown_pct,
    sharpe_ratio,
    summarize_outcomes,
)
from ai_futures.performance.recorder import OutcomeRecorder, build_trade_outcome
from ai_futures.store.sqlite import SQLiteStore
from ai_futures.types import AccountSnapshot, ActionRecord, CloseEvent, CycleRecord

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _event(**overrides: object) -> CloseEvent:
    payload: dict[str, object] = {
        "symbol": "BTCUSDT",
        "side": "long",
        "quantity": 0.02,
        "leverage": 5,
        "open_price": 50_000.0,
        "close_price": 51_000.0,
        "close_time": NOW,
        "trigger": "decision",
        "open_time": NOW - timedelta(hours=2),
    }
    payload.update(overrides)
    return CloseEvent(**payload)  # type: ignore[arg-type]


def _account(equity: float) -> AccountSnapshot:
    return AccountSnapshot(
        total_equity=equity,
        wallet_balance=equity,
        unrealized_pnl=0.0,
        available_balance=equity,
        total_pnl=0.0,
        total_pnl_pct=0.0,
        margin_used=0.0,
        margin_used_pct=0.0,
        position_count=0,
    )


def test_long_outcome_economics() -> None:
    outcome = build_trade_outcome(_event())
    assert outcome.pnl == pytest.approx(20.0)
    assert outcome.position_value == pytest.approx(1000.0)
    assert outcome.margin_used == pytest.approx(200.0)
    assert outcome.pnl_pct == pytest.approx(10.0)
    assert outcome.duration_minutes == 120
    assert not outcome.is_premature
    assert outcome.exit_reason == "active take-profit"
    assert outcome.entry_reason == "AI open"
    assert outcome.failure_type == ""


def test_short_loss_premature_and_defaults() -> None:
    outcome = build_trade_outcome(
        _event(side="short", leverage=0, open_time=None, close_price=50_500.0)
    )
    assert outcome.pnl == pytest.approx(-10.0)
    assert outcome.margin_used == pytest.approx(1000.0)
    assert outcome.open_time == NOW - timedelta(minutes=30)
    assert outcome.duration_minutes == 30
    assert not outcome.is_premature
    assert outcome.exit_reason == "active stop-loss"
    assert outcome.failure_type == "signal misjudged or stop placed poorly"


def test_realized_pnl_wins_and_manual_premature_loss() -> None:
    outcome = build_trade_outcome(
        _event(trigger="manual", realized_pnl=-3.5, open_time=NOW - timedelta(minutes=10))
    )
    assert outcome.pnl == -3.5
    assert outcome.is_premature
    assert outcome.exit_reason == "manual close"
    assert outcome.failure_type == "manual close (possibly premature) with loss"


def test_duration_never_negative() -> None:
    outcome = build_trade_outcome(_event(open_time=NOW + timedelta(minutes=5)))
    assert outcome.duration_minutes == 0


def test_recorder_records_each_lifecycle_once(store: SQLiteStore) -> None:
    recorder = OutcomeRecorder(store)
    store.save_position_open_time("BTCUSDT_long", NOW - timedelta(hours=2))

    assert recorder.record(_event()) is not None
    assert recorder.record(_event(trigger="auto")) is None
    assert len(store.get_recent_trade_outcomes(10)) == 1
    assert store.get_position_open_time("BTCUSDT_long") is None

    reopened = _event(open_time=NOW + timedelta(hours=1), close_time=NOW + timedelta(hours=2))
    assert recorder.record(reopened) is not None
    assert len(store.get_recent_trade_outcomes(10)) == 2


@pytest.mark.parametrize(
    ("equities", "expected"),
    [
        ([100.0, 100.0, 100.0], 0.0),
        ([100.0, 105.0, 110.0], SHARPE_SENTINEL),
        ([100.0, 90.0, 81.0], -SHARPE_SENTINEL),
        ([100.0], 0.0),
    ],
)
def test_sharpe_edge_cases(equities: list[float], expected: float) -> None:
    assert sharpe_ratio(equities) == expected


def test_sharpe_regular_series() -> None:
    assert sharpe_ratio([100.0, 110.0, 99.0, 108.9]) == pytest.approx(0.3535534, rel=1e-5)


def test_max_drawdown() -> None:
    assert max_drawdown_pct([100.0, 120.0, 90.0, 130.0]) == pytest.approx(25.0)
    assert max_drawdown_pct([]) == 0.0


def test_summarize_outcomes() -> None:
    outcomes = [
        build_trade_outcome(_event(symbol="ETHUSDT", side="short", close_price=51_000.0)),
        build_trade_outcome(_event(close_price=52_000.0)),
        build_trade_outcome(_event(symbol="SOLUSDT", close_price=50_500.0)),
    ]
    analysis = summarize_outcomes(outcomes)
    assert analysis.total_trades == 3
    assert analysis.winning_trades == 2
    assert analysis.win_rate == pytest.approx(200 / 3)
    assert analysis.profit_factor == pytest.approx(50.0 / 20.0)
    assert analysis.avg_loss == pytest.approx(-20.0)
    assert analysis.long.trades == 2
    assert analysis.long.win_rate == 100.0
    assert analysis.short.avg_pnl == pytest.approx(-20.0)
    assert analysis.best_symbol == "BTCUSDT"
    assert analysis.worst_symbol == "ETHUSDT"
    assert analysis.recent_trades[0].symbol == "ETHUSDT"


def test_profit_factor_sentinel_without_losses() -> None:
    analysis = summarize_outcomes([build_trade_outcome(_event())])
    assert analysis.profit_factor == PROFIT_FACTOR_SENTINEL
    assert summarize_outcomes([]).profit_factor == 0.0


def test_analyzer_rebuilds_outcomes_from_cycle_log(store: SQLiteStore) -> None:
    def action(name: str, price: float, minute: int) -> ActionRecord:
        return ActionRecord(
            action=name,
            symbol="BTCUSDT",
            quantity=0.02,
            leverage=5,
            price=price,
            timestamp=NOW + timedelta(minutes=minute),
            success=True,
        )

    store.save_cycle_record(
        CycleRecord(
            cycle_number=1,
            timestamp=NOW,
            success=True,
            account=_account(1000.0),
            actions=[action("open_long", 50_000.0, 0)],
        )
    )
    store.save_cycle_record(
        CycleRecord(
            cycle_number=2,
            timestamp=NOW + timedelta(minutes=90),
            success=True,
            account=_account(1020.0),
            actions=[action("close_long", 51_000.0, 90)],
        )
    )

    analysis = PerformanceAnalyzer(store).analyze(lookback_cycles=10)
    assert analysis.total_trades == 1
    assert analysis.recent_trades[0].pnl == pytest.approx(20.0)
    assert analysis.recent_trades[0].entry_reason == "reconstructed from decision log"
    assert analysis.sharpe_ratio == SHARPE_SENTINEL

    persisted = store.get_recent_trade_outcomes(10)
    assert len(persisted) == 1
    assert PerformanceAnalyzer(store).analyze(lookback_cycles=10).total_trades == 1
