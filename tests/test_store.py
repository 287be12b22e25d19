from __future__ import annotations

from datetime import UTC, datetime, timedelta

from ai_futures.store.sqlite import SQLiteStore
from ai_futures.types import (
    AccountSnapshot,
    ActionRecord,
    CycleRecord,
    LearningSummary,
    TradeOutcome,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _outcome(symbol: str, pnl: float, closed: datetime) -> TradeOutcome:
    return TradeOutcome(
        symbol=symbol,
        side="long",
        quantity=1.0,
        leverage=5,
        open_price=100.0,
        close_price=100.0 + pnl,
        position_value=100.0,
        margin_used=20.0,
        pnl=pnl,
        pnl_pct=pnl / 20.0 * 100,
        duration_minutes=45,
        open_time=closed - timedelta(minutes=45),
        close_time=closed,
        was_stop_loss=pnl < 0,
        exit_reason="active take-profit",
    )


def _summary(content: str, created: datetime) -> LearningSummary:
    return LearningSummary(
        trader_id="test",
        summary_content=content,
        trades_count=6,
        date_range_start=created - timedelta(days=1),
        date_range_end=created,
        win_rate=50.0,
        avg_pnl=1.5,
        created_at=created,
    )


def test_cycle_records_round_trip_oldest_first(store: SQLiteStore) -> None:
    account = AccountSnapshot(
        total_equity=1010.0,
        wallet_balance=1000.0,
        unrealized_pnl=10.0,
        available_balance=900.0,
        total_pnl=10.0,
        total_pnl_pct=1.0,
        margin_used=100.0,
        margin_used_pct=9.9,
        position_count=1,
    )
    for number in (1, 2, 3):
        store.save_cycle_record(
            CycleRecord(
                cycle_number=number,
                timestamp=NOW + timedelta(minutes=3 * number),
                success=number != 2,
                account=account,
                actions=[
                    ActionRecord(
                        action="open_long",
                        symbol="BTCUSDT",
                        quantity=0.01,
                        leverage=5,
                        price=50_000.0,
                        order_id="1",
                        timestamp=NOW,
                        success=True,
                    )
                ],
                decisions=[{"symbol": "BTCUSDT", "action": "open_long"}],
            )
        )

    records = store.get_recent_cycle_records(2)
    assert [r.cycle_number for r in records] == [2, 3]
    assert records[0].success is False
    assert records[1].account == account
    assert records[1].actions[0].timestamp == NOW
    assert records[1].decisions[0]["action"] == "open_long"


def test_trade_outcomes_newest_first(store: SQLiteStore) -> None:
    store.save_trade_outcome(_outcome("BTCUSDT", 5.0, NOW))
    store.save_trade_outcomes(
        [_outcome("ETHUSDT", -2.0, NOW + timedelta(hours=1)), _outcome("SOLUSDT", 1.0, NOW)]
    )
    outcomes = store.get_recent_trade_outcomes(10)
    assert outcomes[0].symbol == "ETHUSDT"
    assert outcomes[0].was_stop_loss is True
    assert outcomes[0].close_time == NOW + timedelta(hours=1)
    assert len(store.get_recent_trade_outcomes(2)) == 2


def test_position_open_times(store: SQLiteStore) -> None:
    assert store.get_position_open_time("BTCUSDT_long") is None
    store.save_position_open_time("BTCUSDT_long", NOW)
    store.save_position_open_time("BTCUSDT_long", NOW + timedelta(minutes=1))
    store.save_position_open_time("ETHUSDT_short", NOW)
    assert store.get_position_open_time("BTCUSDT_long") == NOW + timedelta(minutes=1)
    assert set(store.get_all_position_open_times()) == {"BTCUSDT_long", "ETHUSDT_short"}
    store.delete_position_open_time("BTCUSDT_long")
    assert store.get_position_open_time("BTCUSDT_long") is None


def test_runtime_state_is_scoped_per_trader(tmp_path) -> None:
    first = SQLiteStore(tmp_path / "shared.db", "alpha")
    second = SQLiteStore(tmp_path / "shared.db", "beta")
    try:
        assert first.get_runtime_state() is None
        first.save_runtime_state(True)
        assert first.get_runtime_state() is True
        assert second.get_runtime_state() is None
        first.save_runtime_state(False)
        assert first.get_runtime_state() is False
    finally:
        first.close()
        second.close()


def test_new_learning_summary_replaces_active_one(store: SQLiteStore) -> None:
    assert store.get_active_learning_summary() is None
    store.save_learning_summary(_summary("first", NOW))
    store.save_learning_summary(_summary("second", NOW + timedelta(hours=1)))
    active = store.get_active_learning_summary()
    assert active is not None
    assert active.summary_content == "second"
    assert active.is_active is True
