"""Trade outcome economics and the single recording funnel."""

from __future__ import annotations

import threading
from datetime import timedelta

from ai_futures.store.base import DurableStore
from ai_futures.types import CloseEvent, TradeOutcome
from ai_futures.utils.logging import get_logger, log_trade_outcome

DEFAULT_HOLDING = timedelta(minutes=30)


def compute_pnl(side: str, quantity: float, open_price: float, close_price: float) -> float:
    if side == "long":
        return quantity * (close_price - open_price)
    return quantity * (open_price - close_price)


def build_trade_outcome(event: CloseEvent, *, premature_minutes: int = 30) -> TradeOutcome:
    """Turn a close event into a TradeOutcome.

    Realized P&L reported by the exchange wins over the price-difference
    estimate. A missing open time falls back to ``close_time - 30min``.
    """
    open_time = event.open_time or event.close_time - DEFAULT_HOLDING
    if event.realized_pnl is not None:
        pnl = event.realized_pnl
    else:
        pnl = compute_pnl(event.side, event.quantity, event.open_price, event.close_price)

    position_value = event.quantity * event.open_price
    leverage = event.leverage if event.leverage > 0 else 1
    margin_used = position_value / leverage
    pnl_pct = pnl / margin_used * 100 if margin_used > 0 else 0.0

    duration_minutes = max(0, int((event.close_time - open_time).total_seconds() // 60))
    is_premature = duration_minutes < premature_minutes

    exit_reason = event.exit_reason
    if not exit_reason:
        if event.trigger == "manual":
            exit_reason = "manual close"
        elif pnl > 0:
            exit_reason = "active take-profit"
        else:
            exit_reason = "active stop-loss"

    failure_type = ""
    if pnl < 0:
        if event.trigger == "manual":
            failure_type = "manual close with loss"
            if is_premature:
                failure_type = "manual close (possibly premature) with loss"
        elif is_premature:
            failure_type = f"premature close (<{premature_minutes}min) with loss"
        else:
            failure_type = "signal misjudged or stop placed poorly"

    return TradeOutcome(
        symbol=event.symbol,
        side=event.side,
        quantity=event.quantity,
        leverage=event.leverage,
        open_price=event.open_price,
        close_price=event.close_price,
        position_value=position_value,
        margin_used=margin_used,
        pnl=pnl,
        pnl_pct=pnl_pct,
        duration_minutes=duration_minutes,
        open_time=open_time,
        close_time=event.close_time,
        was_stop_loss=event.was_stop_loss,
        entry_reason=event.entry_reason or "AI open",
        exit_reason=exit_reason,
        is_premature=is_premature,
        failure_type=failure_type,
    )


class OutcomeRecorder:
    """Persists exactly one TradeOutcome per position lifecycle."""

    def __init__(self, store: DurableStore, *, premature_minutes: int = 30) -> None:
        self._store = store
        self._premature_minutes = premature_minutes
        self._recorded: set[tuple[str, str]] = set()
        self._lock = threading.Lock()
        self._logger = get_logger("ai_futures.performance.recorder")

    def record(self, event: CloseEvent) -> TradeOutcome | None:
        """Record a close. Returns None if this lifecycle was already recorded."""
        outcome = build_trade_outcome(event, premature_minutes=self._premature_minutes)
        marker = (event.key, outcome.open_time.isoformat())
        with self._lock:
            if marker in self._recorded:
                self._logger.warning(
                    "duplicate_close_ignored",
                    position_key=event.key,
                    trigger=event.trigger,
                )
                return None
            self._store.save_trade_outcome(outcome)
            self._recorded.add(marker)
        self._store.delete_position_open_time(event.key)
        log_trade_outcome(
            self._logger,
            symbol=outcome.symbol,
            side=outcome.side,
            pnl=outcome.pnl,
            pnl_pct=outcome.pnl_pct,
            trigger=event.trigger,
            duration_minutes=outcome.duration_minutes,
            exit_reason=outcome.exit_reason,
        )
        return outcome
