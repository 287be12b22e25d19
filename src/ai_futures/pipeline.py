"""Decision-cycle orchestrator."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from time import perf_counter
from typing import Any

from ai_futures.ai.learning import LearningSummarizer
from ai_futures.ai.provider import DecisionProvider, OpenRouterDecisionProvider
from ai_futures.ai.schemas import (
    AccountInfo,
    CandidateCoin,
    FullDecision,
    PositionInfo,
    TradingContext,
)
from ai_futures.config import Settings
from ai_futures.data.binance import BinanceDataClient
from ai_futures.errors import (
    DecisionProviderError,
    ExchangeError,
    PositionNotFoundError,
    StoreError,
)
from ai_futures.exchange.base import Balance, Exchange
from ai_futures.exchange.binance_futures import BinanceFuturesExchange
from ai_futures.exchange.paper import PaperExchange
from ai_futures.execution import DecisionExecutor
from ai_futures.performance.analyzer import PerformanceAnalyzer
from ai_futures.performance.recorder import OutcomeRecorder
from ai_futures.reconcile.reconciler import PositionReconciler
from ai_futures.risk.governor import RiskGovernor
from ai_futures.risk.rules import RiskEngine
from ai_futures.store.base import DurableStore
from ai_futures.strategy.candidates import MarketDataSource, build_candidates
from ai_futures.types import (
    AccountSnapshot,
    CloseEvent,
    CycleRecord,
    LearningSummary,
    Position,
    RuntimeState,
    TradeOutcome,
    position_key,
)
from ai_futures.utils.logging import get_logger, log_cycle_summary, log_risk_event


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _position_margin(position: Position) -> float:
    if position.margin_used > 0:
        return position.margin_used
    leverage = position.leverage if position.leverage > 0 else 1
    return position.quantity * position.mark_price / leverage


def _holding_minutes(position: Position, now: datetime) -> int | None:
    if position.opened_at is None:
        return None
    return max(0, int((now - position.opened_at).total_seconds() // 60))


def build_account_snapshot(
    balance: Balance, positions: Sequence[Position], initial_balance: float
) -> AccountSnapshot:
    """Equity is wallet balance plus unrealized P&L."""
    equity = balance.wallet_balance + balance.unrealized_profit
    margin_used = sum(_position_margin(p) for p in positions)
    total_pnl = equity - initial_balance
    return AccountSnapshot(
        total_equity=equity,
        wallet_balance=balance.wallet_balance,
        unrealized_pnl=balance.unrealized_profit,
        available_balance=balance.available_balance,
        total_pnl=total_pnl,
        total_pnl_pct=total_pnl / initial_balance * 100 if initial_balance > 0 else 0.0,
        margin_used=margin_used,
        margin_used_pct=margin_used / equity * 100 if equity > 0 else 0.0,
        position_count=len(positions),
    )


def position_to_dict(position: Position, now: datetime) -> dict[str, Any]:
    margin = _position_margin(position)
    return {
        "symbol": position.symbol,
        "side": position.side,
        "entry_price": position.entry_price,
        "mark_price": position.mark_price,
        "quantity": position.quantity,
        "leverage": position.leverage,
        "unrealized_pnl": position.unrealized_pnl,
        "unrealized_pnl_pct": position.unrealized_pnl / margin * 100 if margin > 0 else 0.0,
        "liquidation_price": position.liquidation_price,
        "margin_used": margin,
        "opened_at": position.opened_at.isoformat() if position.opened_at else None,
        "holding_minutes": _holding_minutes(position, now),
    }


class TradingAgent:
    """Runs the decision cycle for one trader.

    ``RuntimeState`` is only touched under ``_lock``. A single-slot semaphore
    keeps cycles (and manual closes) from overlapping.
    """

    def __init__(
        self,
        settings: Settings,
        exchange: Exchange,
        provider: DecisionProvider,
        store: DurableStore,
        market_data: MarketDataSource,
        *,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._exchange = exchange
        self._provider = provider
        self._store = store
        self._market_data = market_data
        self._clock = clock
        self._logger = get_logger("ai_futures.pipeline")

        self._lock = threading.RLock()
        self._cycle_slot = threading.Semaphore(1)
        self._stop_event = threading.Event()
        self._state = RuntimeState()
        self._started_at = clock()

        self._governor = RiskGovernor(timedelta(minutes=settings.stop_trading_minutes), clock())
        self._risk_engine = RiskEngine(settings)
        self._reconciler = PositionReconciler(exchange, store)
        self._recorder = OutcomeRecorder(store, premature_minutes=settings.premature_close_minutes)
        self._analyzer = PerformanceAnalyzer(
            store, premature_minutes=settings.premature_close_minutes
        )
        self._executor = DecisionExecutor(
            exchange,
            store,
            settings,
            on_open=self._on_position_opened,
            on_close=self._on_position_closed,
            clock=clock,
            sleep=sleep,
        )
        self._learner = LearningSummarizer(store, provider, settings.trader_id, clock)
        self._learning_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="learning")
        self._learning_future: Future[LearningSummary | None] | None = None
        self._closed = False

        if store.get_runtime_state():
            self._state.is_paused = True
            self._logger.info("paused_state_restored", trader_id=settings.trader_id)

    @property
    def risk_governor(self) -> RiskGovernor:
        return self._governor

    @property
    def call_count(self) -> int:
        with self._lock:
            return self._state.call_count

    # ---- control ----

    def pause(self) -> None:
        with self._lock:
            self._state.is_paused = True
            self._store.save_runtime_state(True)
        self._logger.info("trader_paused", trader_id=self._settings.trader_id)

    def resume(self) -> None:
        with self._lock:
            self._state.is_paused = False
            self._store.save_runtime_state(False)
        self._logger.info("trader_resumed", trader_id=self._settings.trader_id)

    def is_paused(self) -> bool:
        with self._lock:
            return self._state.is_paused

    def run(self) -> None:
        """Tick at a fixed cadence until ``stop()``; overrun ticks are skipped."""
        interval = self._settings.scan_interval_min * 60
        with self._lock:
            self._state.is_running = True
        self._stop_event.clear()
        self._logger.info("scheduler_started", interval_sec=interval)

        next_run = time.monotonic()
        try:
            while not self._stop_event.is_set():
                self.tick()
                next_run += interval
                now = time.monotonic()
                if now > next_run:
                    missed = int((now - next_run) // interval) + 1
                    self._logger.warning("ticks_missed", missed=missed, interval_sec=interval)
                    next_run += missed * interval
                self._stop_event.wait(max(0.0, next_run - time.monotonic()))
        finally:
            with self._lock:
                self._state.is_running = False
            self._logger.info("scheduler_stopped")

    def stop(self) -> None:
        """Stop after the current tick; no mid-cycle cancellation."""
        self._stop_event.set()
        with self._lock:
            self._state.is_running = False

    def close(self) -> None:
        """Stop and wait for a running learning pass. Later ticks skip learning."""
        self.stop()
        with self._lock:
            self._closed = True
        self._learning_pool.shutdown(wait=True)

    # ---- cycle ----

    def tick(self) -> CycleRecord | None:
        """Run one cycle. Returns None when paused or when a cycle is in flight."""
        if not self._cycle_slot.acquire(blocking=False):
            self._logger.warning("tick_skipped_cycle_in_flight")
            return None
        try:
            with self._lock:
                if self._state.is_paused:
                    self._logger.debug("tick_skipped_paused")
                    return None
                self._state.call_count += 1
                cycle_number = self._state.call_count
            return self._run_cycle(cycle_number)
        finally:
            self._cycle_slot.release()

    def _run_cycle(self, cycle_number: int) -> CycleRecord:
        started = perf_counter()
        now = self._clock()
        record = CycleRecord(cycle_number=cycle_number, timestamp=now)
        try:
            self._execute_cycle(record, now)
        except DecisionProviderError as exc:
            if isinstance(exc.partial, FullDecision):
                record.system_prompt = exc.partial.system_prompt
                record.user_prompt = exc.partial.user_prompt
                record.cot_trace = exc.partial.cot_trace or exc.partial.raw_response
            record.error_message = str(exc)
            self._logger.error("decision_provider_failed", cycle=cycle_number, error=str(exc))
        except Exception as exc:  # noqa: BLE001 - top-level guard for loop resilience.
            record.error_message = str(exc)
            self._logger.exception("cycle_failed", cycle=cycle_number, error=str(exc))

        try:
            self._store.save_cycle_record(record)
        except StoreError as exc:
            self._logger.error("cycle_record_save_failed", cycle=cycle_number, error=str(exc))

        log_cycle_summary(
            self._logger,
            cycle_number=cycle_number,
            success=record.success,
            elapsed_ms=(perf_counter() - started) * 1000,
            actions=len(record.actions),
            error=record.error_message or None,
        )
        self._maybe_trigger_learning(cycle_number)
        return record

    def _execute_cycle(self, record: CycleRecord, now: datetime) -> None:
        if self._governor.is_cooling_down(now):
            remaining = int(self._governor.remaining(now).total_seconds() // 60)
            record.skipped_reason = f"risk cooldown active, {remaining} min remaining"
            record.error_message = record.skipped_reason
            log_risk_event(
                self._logger,
                event_type="cooldown_active",
                action="skip_cycle",
                remaining_minutes=remaining,
            )
            return

        with self._lock:
            self._governor.maybe_reset_daily(now)

        live_positions = self._exchange.get_positions()
        with self._lock:
            events = self._reconciler.reconcile(live_positions, self._state, now)
            live_positions = [
                p for p in live_positions if p.key in self._state.last_known_positions
            ]
        for event in events:
            self._on_position_closed(event)

        account = build_account_snapshot(
            self._exchange.get_balance(), live_positions, self._settings.initial_balance
        )
        record.account = account
        record.positions = [position_to_dict(p, now) for p in live_positions]

        with self._lock:
            daily_pnl = self._governor.state.daily_pnl
        guard = self._risk_engine.check_global_guards(account, daily_pnl)
        if not guard.allowed:
            reason = ", ".join(guard.reasons)
            with self._lock:
                self._governor.enter_cooldown(now, reason)
            record.skipped_reason = f"risk guard tripped: {reason}"
            record.error_message = record.skipped_reason
            return

        candidates = build_candidates(live_positions, self._settings, self._market_data)
        record.candidate_coins = [coin.symbol for coin in candidates]
        context = self._build_context(now, record.cycle_number, account, live_positions, candidates)

        result = self._provider.decide(context)
        record.system_prompt = result.system_prompt
        record.user_prompt = result.user_prompt
        record.cot_trace = result.cot_trace
        record.decisions = [decision.model_dump() for decision in result.decisions]

        live = {position.key: position for position in live_positions}
        record.actions = self._executor.execute(result.decisions, live, record.execution_log)
        record.success = True

    def _build_context(
        self,
        now: datetime,
        cycle_number: int,
        account: AccountSnapshot,
        positions: Sequence[Position],
        candidates: list[CandidateCoin],
    ) -> TradingContext:
        performance: dict[str, Any] | None = None
        try:
            analysis = self._analyzer.analyze(self._settings.performance_lookback_cycles)
            performance = analysis.to_dict()
        except StoreError as exc:
            self._logger.warning("performance_unavailable", error=str(exc))

        learning_summary: str | None = None
        try:
            summary = self._store.get_active_learning_summary()
            learning_summary = summary.summary_content if summary else None
        except StoreError as exc:
            self._logger.warning("learning_summary_unavailable", error=str(exc))

        return TradingContext(
            current_time=now.isoformat(),
            runtime_minutes=int((now - self._started_at).total_seconds() // 60),
            call_count=cycle_number,
            account=AccountInfo(
                total_equity=account.total_equity,
                available_balance=account.available_balance,
                total_pnl=account.total_pnl,
                total_pnl_pct=account.total_pnl_pct,
                margin_used=account.margin_used,
                margin_used_pct=account.margin_used_pct,
                position_count=account.position_count,
            ),
            positions=[
                PositionInfo(
                    **{k: v for k, v in position_to_dict(p, now).items() if k != "opened_at"}
                )
                for p in positions
            ],
            candidate_coins=candidates,
            performance=performance,
            learning_summary=learning_summary,
            btc_eth_leverage=self._settings.btc_eth_leverage,
            altcoin_leverage=self._settings.altcoin_leverage,
            max_positions=self._settings.max_positions,
        )

    # ---- position lifecycle ----

    def _on_position_opened(self, position: Position) -> None:
        with self._lock:
            if position.opened_at is not None:
                self._state.position_first_seen_time[position.key] = position.opened_at
            self._state.last_known_positions[position.key] = position
            self._state.recently_closed.pop(position.key, None)

    def _on_position_closed(self, event: CloseEvent) -> TradeOutcome | None:
        """Single funnel for decision, manual and reconciled closes."""
        with self._lock:
            self._state.position_first_seen_time.pop(event.key, None)
            self._state.last_known_positions.pop(event.key, None)
            if event.trigger != "auto":
                self._state.recently_closed[event.key] = event.close_time
        outcome = self._recorder.record(event)
        if outcome is not None:
            with self._lock:
                self._governor.record_pnl(outcome.pnl)
        return outcome

    def manual_close_position(self, symbol: str, side: str) -> TradeOutcome | None:
        """Close a live position outside the cycle and record it once."""
        symbol = symbol.strip().upper()
        side = side.strip().lower()
        if side not in ("long", "short"):
            raise ValueError(f"invalid side: {side}")
        key = position_key(symbol, side)

        with self._cycle_slot:
            position = next((p for p in self._exchange.get_positions() if p.key == key), None)
            if position is None:
                raise PositionNotFoundError(symbol, side)

            with self._lock:
                opened_at = self._state.position_first_seen_time.get(key)
            if opened_at is None:
                opened_at = self._store.get_position_open_time(key)

            try:
                close_price = self._exchange.get_market_price(symbol)
            except ExchangeError as exc:
                self._logger.warning("close_price_unavailable", symbol=symbol, error=str(exc))
                close_price = position.mark_price

            if side == "long":
                order_id = self._exchange.close_long(symbol, 0.0)
            else:
                order_id = self._exchange.close_short(symbol, 0.0)
            self._logger.info("manual_close_submitted", symbol=symbol, side=side, order_id=order_id)

            return self._on_position_closed(
                CloseEvent(
                    symbol=symbol,
                    side=position.side,
                    quantity=position.quantity,
                    leverage=position.leverage,
                    open_price=position.entry_price,
                    close_price=close_price,
                    close_time=self._clock(),
                    trigger="manual",
                    open_time=opened_at,
                )
            )

    # ---- observation ----

    def get_status(self) -> dict[str, Any]:
        now = self._clock()
        with self._lock:
            stop_until = self._governor.state.stop_until
            return {
                "trader_id": self._settings.trader_id,
                "trader_name": self._settings.trader_name,
                "mode": self._settings.mode.value,
                "is_running": self._state.is_running,
                "is_paused": self._state.is_paused,
                "call_count": self._state.call_count,
                "runtime_minutes": int((now - self._started_at).total_seconds() // 60),
                "position_count": len(self._state.last_known_positions),
                "daily_pnl": self._governor.state.daily_pnl,
                "cooling_down": self._governor.is_cooling_down(now),
                "stop_until": stop_until.isoformat() if stop_until else None,
            }

    def get_positions(self) -> list[dict[str, Any]]:
        """Positions as of the last cycle, with open time and holding minutes."""
        now = self._clock()
        with self._lock:
            positions = list(self._state.last_known_positions.values())
        return [position_to_dict(p, now) for p in positions]

    # ---- learning ----

    def _maybe_trigger_learning(self, cycle_number: int) -> None:
        interval = self._settings.ai_learn_interval
        if not self._settings.enable_ai_learning or cycle_number % interval != 0:
            return
        with self._lock:
            if self._closed:
                self._logger.info("learning_summary_skipped_agent_closed", cycle=cycle_number)
                return
            if self._learning_future is not None and not self._learning_future.done():
                self._logger.info("learning_summary_still_running", cycle=cycle_number)
                return
            self._learning_future = self._learning_pool.submit(self._generate_learning_summary)

    def _generate_learning_summary(self) -> LearningSummary | None:
        try:
            summary = self._learner.generate()
        except Exception as exc:  # noqa: BLE001 - background task must log its own failures.
            self._logger.exception("learning_summary_failed", error=str(exc))
            return None
        if summary is not None:
            self._logger.info(
                "learning_summary_saved",
                trades=summary.trades_count,
                win_rate=round(summary.win_rate, 2),
            )
        return summary


def build_agent(settings: Settings, store: DurableStore) -> TradingAgent:
    """Wire the production collaborators for the configured mode."""
    market_data = BinanceDataClient(settings)
    exchange: Exchange
    if settings.is_paper_mode:
        exchange = PaperExchange(
            settings.paper_state_path,
            market_data.fetch_price,
            initial_balance=settings.initial_balance,
        )
    else:
        exchange = BinanceFuturesExchange(settings)
    provider = OpenRouterDecisionProvider(settings)
    return TradingAgent(settings, exchange, provider, store, market_data)
