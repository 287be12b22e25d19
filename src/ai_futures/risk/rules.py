"""Daily-loss and drawdown guard rails."""

from __future__ import annotations

from dataclasses import dataclass, field

from ai_futures.config import Settings
from ai_futures.types import AccountSnapshot


@dataclass(slots=True)
class RiskCheckResult:
    """Result of global risk guard checks."""

    allowed: bool
    daily_loss_pct: float = 0.0
    drawdown_pct: float = 0.0
    reasons: list[str] = field(default_factory=list)


class RiskEngine:
    """Rule-based account guards evaluated before each decision call."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def check_global_guards(self, account: AccountSnapshot, daily_pnl: float) -> RiskCheckResult:
        reasons: list[str] = []
        equity = account.total_equity

        daily_loss_pct = -daily_pnl / equity * 100 if equity > 0 and daily_pnl < 0 else 0.0
        initial = self._settings.initial_balance
        drawdown_pct = max(0.0, (initial - equity) / initial * 100) if initial > 0 else 0.0

        if daily_loss_pct >= self._settings.max_daily_loss_pct:
            reasons.append("max_daily_loss_reached")
        if drawdown_pct >= self._settings.max_drawdown_pct:
            reasons.append("max_drawdown_reached")

        return RiskCheckResult(
            allowed=not reasons,
            daily_loss_pct=daily_loss_pct,
            drawdown_pct=drawdown_pct,
            reasons=reasons,
        )
