"""SQLite implementation of the durable store.

One connection per store, every statement serialized through a lock. Rows are
scoped to a single trader id.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ai_futures.errors import StoreError
from ai_futures.types import (
    AccountSnapshot,
    ActionRecord,
    CycleRecord,
    LearningSummary,
    TradeOutcome,
)
from ai_futures.utils.logging import get_logger

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cycle_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trader_id TEXT NOT NULL,
    cycle_number INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    success INTEGER NOT NULL,
    total_equity REAL,
    payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cycle_records_trader ON cycle_records(trader_id, id);

CREATE TABLE IF NOT EXISTS trade_outcomes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trader_id TEXT NOT NULL,
    symbol TEXT NOT NULL,
    side TEXT NOT NULL,
    quantity REAL NOT NULL,
    leverage INTEGER NOT NULL,
    open_price REAL NOT NULL,
    close_price REAL NOT NULL,
    position_value REAL NOT NULL,
    margin_used REAL NOT NULL,
    pnl REAL NOT NULL,
    pnl_pct REAL NOT NULL,
    duration_minutes INTEGER NOT NULL,
    open_time TEXT NOT NULL,
    close_time TEXT NOT NULL,
    was_stop_loss INTEGER NOT NULL,
    entry_reason TEXT NOT NULL,
    exit_reason TEXT NOT NULL,
    is_premature INTEGER NOT NULL,
    failure_type TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_trade_outcomes_trader ON trade_outcomes(trader_id, close_time);

CREATE TABLE IF NOT EXISTS position_open_times (
    trader_id TEXT NOT NULL,
    position_key TEXT NOT NULL,
    open_time TEXT NOT NULL,
    PRIMARY KEY (trader_id, position_key)
);

CREATE TABLE IF NOT EXISTS runtime_state (
    trader_id TEXT PRIMARY KEY,
    is_paused INTEGER NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS learning_summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trader_id TEXT NOT NULL,
    summary_content TEXT NOT NULL,
    trades_count INTEGER NOT NULL,
    date_range_start TEXT NOT NULL,
    date_range_end TEXT NOT NULL,
    win_rate REAL NOT NULL,
    avg_pnl REAL NOT NULL,
    created_at TEXT NOT NULL,
    is_active INTEGER NOT NULL
);
"""

_OUTCOME_COLUMNS = [f.name for f in fields(TradeOutcome)]
_BOOL_OUTCOME_COLUMNS = {"was_stop_loss", "is_premature"}
_TIME_OUTCOME_COLUMNS = {"open_time", "close_time"}


def _to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_db_time(raw: object) -> datetime:
    parsed = datetime.fromisoformat(str(raw))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _json_default(value: object) -> str:
    if isinstance(value, datetime):
        return _to_db_time(value)
    raise TypeError(f"unserializable: {type(value).__name__}")


def cycle_record_to_json(record: CycleRecord) -> str:
    return json.dumps(asdict(record), default=_json_default, ensure_ascii=False)


def cycle_record_from_json(text: str) -> CycleRecord:
    payload: dict[str, Any] = json.loads(text)
    account = payload.get("account")
    actions = []
    for item in payload.get("actions") or []:
        stamp = item.get("timestamp")
        item["timestamp"] = _parse_db_time(stamp) if stamp else None
        actions.append(ActionRecord(**item))
    return CycleRecord(
        **{
            **payload,
            "timestamp": _parse_db_time(payload["timestamp"]),
            "account": AccountSnapshot(**account) if isinstance(account, dict) else None,
            "actions": actions,
        }
    )


class SQLiteStore:
    """Durable store backed by a single SQLite connection."""

    def __init__(self, db_path: Path | str, trader_id: str) -> None:
        self._trader_id = trader_id
        self._lock = threading.Lock()
        self._logger = get_logger("ai_futures.store.sqlite")
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open store at {db_path}: {exc}") from exc

    @property
    def trader_id(self) -> str:
        return self._trader_id

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    # ---- cycle records ----

    def save_cycle_record(self, record: CycleRecord) -> None:
        equity = record.account.total_equity if record.account else None
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO cycle_records "
                "(trader_id, cycle_number, timestamp, success, total_equity, payload) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    self._trader_id,
                    record.cycle_number,
                    _to_db_time(record.timestamp),
                    int(record.success),
                    equity,
                    cycle_record_to_json(record),
                ),
            )

    def get_recent_cycle_records(self, limit: int) -> list[CycleRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT payload FROM cycle_records WHERE trader_id = ? ORDER BY id DESC LIMIT ?",
                (self._trader_id, limit),
            ).fetchall()
        return [cycle_record_from_json(row["payload"]) for row in reversed(rows)]

    # ---- trade outcomes ----

    def save_trade_outcome(self, outcome: TradeOutcome) -> None:
        self.save_trade_outcomes([outcome])

    def save_trade_outcomes(self, outcomes: list[TradeOutcome]) -> None:
        if not outcomes:
            return
        placeholders = ", ".join("?" for _ in range(len(_OUTCOME_COLUMNS) + 1))
        sql = (
            f"INSERT INTO trade_outcomes (trader_id, {', '.join(_OUTCOME_COLUMNS)}) "
            f"VALUES ({placeholders})"
        )
        with self._transaction() as conn:
            conn.executemany(sql, [self._outcome_row(item) for item in outcomes])

    def _outcome_row(self, outcome: TradeOutcome) -> tuple[object, ...]:
        values: list[object] = [self._trader_id]
        for name in _OUTCOME_COLUMNS:
            value = getattr(outcome, name)
            if name in _TIME_OUTCOME_COLUMNS:
                value = _to_db_time(value)
            elif name in _BOOL_OUTCOME_COLUMNS:
                value = int(value)
            values.append(value)
        return tuple(values)

    def get_recent_trade_outcomes(self, limit: int) -> list[TradeOutcome]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {', '.join(_OUTCOME_COLUMNS)} FROM trade_outcomes "
                "WHERE trader_id = ? ORDER BY close_time DESC, id DESC LIMIT ?",
                (self._trader_id, limit),
            ).fetchall()
        outcomes = []
        for row in rows:
            payload = dict(row)
            for name in _TIME_OUTCOME_COLUMNS:
                payload[name] = _parse_db_time(payload[name])
            for name in _BOOL_OUTCOME_COLUMNS:
                payload[name] = bool(payload[name])
            outcomes.append(TradeOutcome(**payload))
        return outcomes

    # ---- position open times ----

    def save_position_open_time(self, key: str, opened_at: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO position_open_times (trader_id, position_key, open_time) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT(trader_id, position_key) DO UPDATE SET open_time = excluded.open_time",
                (self._trader_id, key, _to_db_time(opened_at)),
            )

    def get_position_open_time(self, key: str) -> datetime | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT open_time FROM position_open_times "
                "WHERE trader_id = ? AND position_key = ?",
                (self._trader_id, key),
            ).fetchone()
        return _parse_db_time(row["open_time"]) if row else None

    def get_all_position_open_times(self) -> dict[str, datetime]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT position_key, open_time FROM position_open_times WHERE trader_id = ?",
                (self._trader_id,),
            ).fetchall()
        return {row["position_key"]: _parse_db_time(row["open_time"]) for row in rows}

    def delete_position_open_time(self, key: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM position_open_times WHERE trader_id = ? AND position_key = ?",
                (self._trader_id, key),
            )

    # ---- runtime state ----

    def save_runtime_state(self, is_paused: bool) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO runtime_state (trader_id, is_paused, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(trader_id) DO UPDATE SET "
                "is_paused = excluded.is_paused, updated_at = excluded.updated_at",
                (self._trader_id, int(is_paused), _to_db_time(datetime.now(timezone.utc))),
            )

    def get_runtime_state(self) -> bool | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT is_paused FROM runtime_state WHERE trader_id = ?",
                (self._trader_id,),
            ).fetchone()
        return bool(row["is_paused"]) if row else None

    # ---- learning summaries ----

    def get_active_learning_summary(self) -> LearningSummary | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM learning_summaries WHERE trader_id = ? AND is_active = 1 "
                "ORDER BY id DESC LIMIT 1",
                (self._trader_id,),
            ).fetchone()
        if row is None:
            return None
        return LearningSummary(
            trader_id=row["trader_id"],
            summary_content=row["summary_content"],
            trades_count=row["trades_count"],
            date_range_start=_parse_db_time(row["date_range_start"]),
            date_range_end=_parse_db_time(row["date_range_end"]),
            win_rate=row["win_rate"],
            avg_pnl=row["avg_pnl"],
            created_at=_parse_db_time(row["created_at"]),
            is_active=bool(row["is_active"]),
        )

    def save_learning_summary(self, summary: LearningSummary) -> None:
        """Deactivate previous summaries and insert the new one atomically."""
        with self._transaction() as conn:
            conn.execute(
                "UPDATE learning_summaries SET is_active = 0 WHERE trader_id = ?",
                (summary.trader_id,),
            )
            conn.execute(
                "INSERT INTO learning_summaries (trader_id, summary_content, trades_count, "
                "date_range_start, date_range_end, win_rate, avg_pnl, created_at, is_active) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1)",
                (
                    summary.trader_id,
                    summary.summary_content,
                    summary.trades_count,
                    _to_db_time(summary.date_range_start),
                    _to_db_time(summary.date_range_end),
                    summary.win_rate,
                    summary.avg_pnl,
                    _to_db_time(summary.created_at),
                ),
            )
        self._logger.info(
            "learning_summary_saved",
            trader_id=summary.trader_id,
            trades_count=summary.trades_count,
        )
