"""Narrow persistence contract used by the decision cycle."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ai_futures.types import CycleRecord, LearningSummary, TradeOutcome


class DurableStore(Protocol):
    """Everything the core reads or writes across restarts."""

    def save_cycle_record(self, record: CycleRecord) -> None: ...

    def get_recent_cycle_records(self, limit: int) -> list[CycleRecord]:
        """Most recent records, oldest first."""
        ...

    def save_trade_outcome(self, outcome: TradeOutcome) -> None: ...

    def save_trade_outcomes(self, outcomes: list[TradeOutcome]) -> None: ...

    def get_recent_trade_outcomes(self, limit: int) -> list[TradeOutcome]:
        """Most recent outcomes, newest first."""
        ...

    def save_position_open_time(self, key: str, opened_at: datetime) -> None: ...

    def get_position_open_time(self, key: str) -> datetime | None: ...

    def get_all_position_open_times(self) -> dict[str, datetime]: ...

    def delete_position_open_time(self, key: str) -> None: ...

    def save_runtime_state(self, is_paused: bool) -> None: ...

    def get_runtime_state(self) -> bool | None:
        """Persisted paused flag, or None if never saved."""
        ...

    def get_active_learning_summary(self) -> LearningSummary | None: ...

    def save_learning_summary(self, summary: LearningSummary) -> None: ...
