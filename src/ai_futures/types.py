"""Shared domain types for the decision cycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

PositionSide = Literal["long", "short"]
ActionType = Literal["open_long", "open_short", "close_long", "close_short", "hold", "wait"]
CloseTrigger = Literal["decision", "manual", "auto"]


def position_key(symbol: str, side: str) -> str:
    """Identity key of a live position."""
    return f"{symbol}_{side}"


@dataclass(slots=True)
class Position:
    """A live exchange position as seen by the core."""

    symbol: str
    side: PositionSide
    entry_price: float
    mark_price: float
    quantity: float
    leverage: int
    liquidation_price: float = 0.0
    unrealized_pnl: float = 0.0
    margin_used: float = 0.0
    opened_at: datetime | None = None

    @property
    def key(self) -> str:
        return position_key(self.symbol, self.side)


@dataclass(slots=True)
class AccountSnapshot:
    """Account view assembled at the start of a cycle."""

    total_equity: float
    wallet_balance: float
    unrealized_pnl: float
    available_balance: float
    total_pnl: float
    total_pnl_pct: float
    margin_used: float
    margin_used_pct: float
    position_count: int


@dataclass(slots=True)
class ActionRecord:
    """Execution outcome of one decision."""

    action: str
    symbol: str
    quantity: float = 0.0
    leverage: int = 0
    price: float = 0.0
    order_id: str = ""
    timestamp: datetime | None = None
    success: bool = False
    error: str = ""


@dataclass(slots=True)
class CycleRecord:
    """Append-only record of one decision cycle."""

    cycle_number: int
    timestamp: datetime
    success: bool = False
    error_message: str = ""
    skipped_reason: str = ""
    system_prompt: str = ""
    user_prompt: str = ""
    cot_trace: str = ""
    account: AccountSnapshot | None = None
    positions: list[dict[str, Any]] = field(default_factory=list)
    candidate_coins: list[str] = field(default_factory=list)
    decisions: list[dict[str, Any]] = field(default_factory=list)
    actions: list[ActionRecord] = field(default_factory=list)
    execution_log: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CloseEvent:
    """One position close, whatever triggered it."""

    symbol: str
    side: PositionSide
    quantity: float
    leverage: int
    open_price: float
    close_price: float
    close_time: datetime
    trigger: CloseTrigger
    open_time: datetime | None = None
    realized_pnl: float | None = None
    entry_reason: str = ""
    exit_reason: str = ""
    was_stop_loss: bool = False

    @property
    def key(self) -> str:
        return position_key(self.symbol, self.side)


@dataclass(slots=True)
class TradeOutcome:
    """Economics of a closed trade."""

    symbol: str
    side: PositionSide
    quantity: float
    leverage: int
    open_price: float
    close_price: float
    position_value: float
    margin_used: float
    pnl: float
    pnl_pct: float
    duration_minutes: int
    open_time: datetime
    close_time: datetime
    was_stop_loss: bool = False
    entry_reason: str = ""
    exit_reason: str = ""
    is_premature: bool = False
    failure_type: str = ""


@dataclass(slots=True)
class RiskState:
    """Daily P&L window and cooldown deadline."""

    daily_pnl: float
    last_reset_time: datetime
    stop_until: datetime | None = None


@dataclass(slots=True)
class RuntimeState:
    """In-memory state owned by the orchestrator.

    ``last_known_positions`` is keyed by identity key; the values are the last
    snapshot of each position, used to estimate fills when it disappears.
    ``recently_closed`` maps keys the core closed itself to their close time,
    so a venue that still lists them for a while is not mistaken for a reopen.
    """

    is_paused: bool = False
    is_running: bool = False
    call_count: int = 0
    position_first_seen_time: dict[str, datetime] = field(default_factory=dict)
    last_known_positions: dict[str, Position] = field(default_factory=dict)
    recently_closed: dict[str, datetime] = field(default_factory=dict)


@dataclass(slots=True)
class LearningSummary:
    """Textual lessons distilled from recent trades."""

    trader_id: str
    summary_content: str
    trades_count: int
    date_range_start: datetime
    date_range_end: datetime
    win_rate: float
    avg_pnl: float
    created_at: datetime
    is_active: bool = True
