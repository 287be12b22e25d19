"""Daily P&L window and post-breach cooldown."""

from __future__ import annotations

from datetime import datetime, timedelta

from ai_futures.types import RiskState
from ai_futures.utils.logging import get_logger, log_risk_event

_DAY = timedelta(hours=24)


class RiskGovernor:
    """Active -> Cooldown -> Active state machine.

    The governor only owns ``RiskState``; deciding whether a breach happened is
    the caller's job.
    """

    def __init__(self, cooldown: timedelta, now: datetime) -> None:
        self._cooldown = cooldown
        self._state = RiskState(daily_pnl=0.0, last_reset_time=now)
        self._logger = get_logger("ai_futures.risk.governor")

    @property
    def state(self) -> RiskState:
        return self._state

    def is_cooling_down(self, now: datetime) -> bool:
        return self._state.stop_until is not None and now < self._state.stop_until

    def remaining(self, now: datetime) -> timedelta:
        stop_until = self._state.stop_until
        if stop_until is None or now >= stop_until:
            return timedelta(0)
        return stop_until - now

    def enter_cooldown(self, now: datetime, reason: str = "") -> datetime:
        self._state.stop_until = now + self._cooldown
        log_risk_event(
            self._logger,
            event_type="cooldown_started",
            action="pause_trading",
            reason=reason,
            stop_until=self._state.stop_until.isoformat(),
        )
        return self._state.stop_until

    def set_stop_until(self, stop_until: datetime | None) -> None:
        self._state.stop_until = stop_until

    def maybe_reset_daily(self, now: datetime) -> bool:
        """Zero the daily P&L once more than 24h have passed since the last reset."""
        if now - self._state.last_reset_time <= _DAY:
            return False
        self._logger.info(
            "daily_pnl_reset",
            previous_daily_pnl=round(self._state.daily_pnl, 4),
        )
        self._state.daily_pnl = 0.0
        self._state.last_reset_time = now
        return True

    def record_pnl(self, pnl: float) -> None:
        self._state.daily_pnl += pnl
