"""Performance analysis over recorded trade outcomes and equity snapshots."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime
from itertools import pairwise
from statistics import fmean, pstdev
from typing import Any

from ai_futures.performance.recorder import build_trade_outcome
from ai_futures.store.base import DurableStore
from ai_futures.types import CloseEvent, CycleRecord, TradeOutcome
from ai_futures.utils.logging import get_logger

SHARPE_SENTINEL = 999.0
PROFIT_FACTOR_SENTINEL = 999.0
# A per-cycle Sharpe above this only comes from a numerically constant return series.
_MAX_MEANINGFUL_SHARPE = 20.0
_RECENT_TRADES = 10
_RECONSTRUCTED_ENTRY_REASON = "reconstructed from decision log"


@dataclass(slots=True)
class SideStats:
    trades: int = 0
    wins: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0


@dataclass(slots=True)
class SymbolStats:
    symbol: str
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0


@dataclass(slots=True)
class PerformanceAnalysis:
    """Aggregate trading performance. Rates are percentages."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown_pct: float = 0.0
    long: SideStats = field(default_factory=SideStats)
    short: SideStats = field(default_factory=SideStats)
    symbol_stats: dict[str, SymbolStats] = field(default_factory=dict)
    best_symbol: str = ""
    worst_symbol: str = ""
    recent_trades: list[TradeOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["recent_trades"] = [
            {
                **asdict(trade),
                "open_time": trade.open_time.isoformat(),
                "close_time": trade.close_time.isoformat(),
            }
            for trade in self.recent_trades
        ]
        return payload


def sharpe_ratio(equities: Sequence[float]) -> float:
    """Mean over population stdev of per-cycle equity returns (not annualized).

    Zero dispersion maps to +999, -999 or 0 by the sign of the mean return.
    """
    values = [value for value in equities if value > 0]
    returns = [(curr - prev) / prev for prev, curr in pairwise(values)]
    if not returns:
        return 0.0
    mean = fmean(returns)
    std = pstdev(returns)
    if abs(mean) < 1e-12:
        return 0.0
    if std == 0 or abs(mean) / std > _MAX_MEANINGFUL_SHARPE:
        return SHARPE_SENTINEL if mean > 0 else -SHARPE_SENTINEL
    return mean / std


def max_drawdown_pct(values: Sequence[float]) -> float:
    """Largest peak-to-trough decline of an equity series, in percent."""
    if not values:
        return 0.0
    peak = values[0]
    max_dd = 0.0
    for value in values:
        peak = max(peak, value)
        drawdown = 0.0 if peak <= 0 else (peak - value) / peak * 100.0
        max_dd = max(max_dd, drawdown)
    return max_dd


def summarize_outcomes(outcomes: Sequence[TradeOutcome]) -> PerformanceAnalysis:
    """Aggregate outcomes given newest first."""
    analysis = PerformanceAnalysis()
    if not outcomes:
        return analysis

    wins = [o.pnl for o in outcomes if o.pnl > 0]
    losses = [o.pnl for o in outcomes if o.pnl < 0]
    analysis.total_trades = len(outcomes)
    analysis.winning_trades = len(wins)
    analysis.losing_trades = len(losses)
    analysis.win_rate = len(wins) / len(outcomes) * 100
    analysis.avg_win = fmean(wins) if wins else 0.0
    analysis.avg_loss = fmean(losses) if losses else 0.0

    gross_win = sum(wins)
    gross_loss = -sum(losses)
    if gross_loss > 0:
        analysis.profit_factor = gross_win / gross_loss
    elif gross_win > 0:
        analysis.profit_factor = PROFIT_FACTOR_SENTINEL

    for outcome in outcomes:
        side = analysis.long if outcome.side == "long" else analysis.short
        side.trades += 1
        side.total_pnl += outcome.pnl
        if outcome.pnl > 0:
            side.wins += 1

        stats = analysis.symbol_stats.setdefault(outcome.symbol, SymbolStats(symbol=outcome.symbol))
        stats.total_trades += 1
        stats.total_pnl += outcome.pnl
        if outcome.pnl > 0:
            stats.winning_trades += 1
        elif outcome.pnl < 0:
            stats.losing_trades += 1

    for side in (analysis.long, analysis.short):
        if side.trades:
            side.win_rate = side.wins / side.trades * 100
            side.avg_pnl = side.total_pnl / side.trades

    for stats in analysis.symbol_stats.values():
        stats.win_rate = stats.winning_trades / stats.total_trades * 100
        stats.avg_pnl = stats.total_pnl / stats.total_trades

    ranked = sorted(analysis.symbol_stats.values(), key=lambda s: s.total_pnl)
    analysis.worst_symbol = ranked[0].symbol
    analysis.best_symbol = ranked[-1].symbol
    analysis.recent_trades = list(outcomes[:_RECENT_TRADES])
    return analysis


def reconstruct_outcomes(
    records: Sequence[CycleRecord],
    *,
    premature_minutes: int = 30,
) -> list[TradeOutcome]:
    """Pair successful open/close actions from the cycle log, oldest first."""
    opened: dict[str, tuple[float, float, int, datetime]] = {}
    outcomes: list[TradeOutcome] = []
    for record in records:
        for action in record.actions:
            if not action.success or "_" not in action.action:
                continue
            verb, side = action.action.split("_", 1)
            if side not in ("long", "short"):
                continue
            key = f"{action.symbol}_{side}"
            stamp = action.timestamp or record.timestamp
            if verb == "open":
                opened[key] = (action.price, action.quantity, action.leverage, stamp)
            elif verb == "close" and key in opened:
                open_price, quantity, leverage, open_time = opened.pop(key)
                event = CloseEvent(
                    symbol=action.symbol,
                    side=side,  # type: ignore[arg-type]
                    quantity=quantity,
                    leverage=leverage,
                    open_price=open_price,
                    close_price=action.price,
                    close_time=stamp,
                    trigger="decision",
                    open_time=open_time,
                    entry_reason=_RECONSTRUCTED_ENTRY_REASON,
                )
                outcomes.append(build_trade_outcome(event, premature_minutes=premature_minutes))
    return outcomes


class PerformanceAnalyzer:
    """Reads the store and produces the performance block of the next context."""

    def __init__(self, store: DurableStore, *, premature_minutes: int = 30) -> None:
        self._store = store
        self._premature_minutes = premature_minutes
        self._logger = get_logger("ai_futures.performance.analyzer")

    def analyze(self, lookback_cycles: int) -> PerformanceAnalysis:
        outcomes = self._store.get_recent_trade_outcomes(lookback_cycles * 10)
        if not outcomes:
            outcomes = self._rebuild_from_cycle_log(lookback_cycles * 3)

        analysis = summarize_outcomes(outcomes)
        equities = [
            record.account.total_equity
            for record in self._store.get_recent_cycle_records(lookback_cycles)
            if record.account is not None
        ]
        analysis.sharpe_ratio = sharpe_ratio(equities)
        analysis.max_drawdown_pct = max_drawdown_pct(equities)
        return analysis

    def _rebuild_from_cycle_log(self, limit: int) -> list[TradeOutcome]:
        records = self._store.get_recent_cycle_records(limit)
        rebuilt = reconstruct_outcomes(records, premature_minutes=self._premature_minutes)
        if not rebuilt:
            return []
        self._store.save_trade_outcomes(rebuilt)
        self._logger.info("trade_outcomes_reconstructed", count=len(rebuilt))
        return sorted(rebuilt, key=lambda o: o.close_time, reverse=True)
