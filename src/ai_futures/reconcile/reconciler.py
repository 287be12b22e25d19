"""Detects exchange-side closes and recovers their fill economics."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from ai_futures.errors import ExchangeError
from ai_futures.exchange.base import AccountTrade, Exchange
from ai_futures.store.base import DurableStore
from ai_futures.types import CloseEvent, Position, RuntimeState
from ai_futures.utils.logging import get_logger

FILL_WINDOW = timedelta(minutes=5)
CLOSE_GRACE = timedelta(minutes=15)
AUTO_EXIT_REASON = "stop/take-profit auto-trigger"
EXACT_ENTRY_REASON = "AI open"
ESTIMATED_ENTRY_REASON = "AI open (fill estimated)"
_TRADE_HISTORY_LIMIT = 20


def is_closing_fill(trade: AccountTrade, side: str) -> bool:
    if side == "long":
        return trade.side == "SELL" and (
            trade.position_side == "LONG"
            or (trade.position_side == "BOTH" and trade.realized_pnl != 0)
        )
    return trade.side == "BUY" and (
        trade.position_side == "SHORT"
        or (trade.position_side == "BOTH" and trade.realized_pnl != 0)
    )


def is_opening_fill(trade: AccountTrade, side: str) -> bool:
    wanted = "BUY" if side == "long" else "SELL"
    expected_position_side = "LONG" if side == "long" else "SHORT"
    if trade.side != wanted:
        return False
    if trade.position_side == "BOTH":
        return trade.realized_pnl == 0
    return trade.position_side == expected_position_side


def estimate_quantity(
    realized_pnl: float, side: str, open_price: float, close_price: float
) -> float:
    """Quantity implied by realized P&L; ignores fees and funding."""
    delta = close_price - open_price if side == "long" else open_price - close_price
    if delta == 0:
        return 0.0
    return abs(realized_pnl / delta)


def _weighted_price(fills: Sequence[AccountTrade]) -> float:
    quantity = sum(f.quantity for f in fills)
    if quantity <= 0:
        return sum(f.price for f in fills) / len(fills)
    return sum(f.price * f.quantity for f in fills) / quantity


class PositionReconciler:
    """Diffs last-known positions against the live set, once per cycle."""

    def __init__(
        self, exchange: Exchange, store: DurableStore, close_grace: timedelta = CLOSE_GRACE
    ) -> None:
        self._exchange = exchange
        self._store = store
        self._close_grace = close_grace
        self._logger = get_logger("ai_futures.reconcile.reconciler")

    def reconcile(
        self,
        live: Sequence[Position],
        state: RuntimeState,
        now: datetime,
    ) -> list[CloseEvent]:
        """Update ``state`` in place and return auto-close events.

        Positions the core closed within the grace window are dropped from
        the live view while the venue still lists them. Must run with the
        runtime state lock held.
        """
        live_map = {position.key: position for position in live}
        self._settle_recent_closes(live_map, state, now)

        for key, position in live_map.items():
            if key not in state.position_first_seen_time:
                state.position_first_seen_time[key] = self._restore_open_time(key, now)
            position.opened_at = state.position_first_seen_time[key]

        events = [
            self._build_auto_close(snapshot, state.position_first_seen_time.get(key), now)
            for key, snapshot in state.last_known_positions.items()
            if key not in live_map
        ]

        state.last_known_positions = dict(live_map)
        return events

    def _settle_recent_closes(
        self, live_map: dict[str, Position], state: RuntimeState, now: datetime
    ) -> None:
        for key, closed_at in list(state.recently_closed.items()):
            if key not in live_map:
                del state.recently_closed[key]
            elif now - closed_at > self._close_grace:
                del state.recently_closed[key]
                self._logger.warning("closed_position_still_open", position_key=key)
            else:
                del live_map[key]
                self._logger.info("closed_position_still_listed", position_key=key)

    def _restore_open_time(self, key: str, now: datetime) -> datetime:
        restored = self._store.get_position_open_time(key)
        if restored is not None:
            self._logger.info("position_open_time_restored", position_key=key)
            return restored
        self._store.save_position_open_time(key, now)
        self._logger.warning(
            "position_open_time_unknown", position_key=key, assumed=now.isoformat()
        )
        return now

    def _build_auto_close(
        self,
        snapshot: Position,
        open_time: datetime | None,
        now: datetime,
    ) -> CloseEvent:
        symbol, side = snapshot.symbol, snapshot.side
        close_price = snapshot.mark_price
        try:
            close_price = self._exchange.get_market_price(symbol)
        except ExchangeError as exc:
            self._logger.warning("auto_close_price_unavailable", symbol=symbol, error=str(exc))

        event = CloseEvent(
            symbol=symbol,
            side=side,
            quantity=snapshot.quantity,
            leverage=snapshot.leverage,
            open_price=snapshot.entry_price,
            close_price=close_price,
            close_time=now,
            trigger="auto",
            open_time=open_time,
            entry_reason=ESTIMATED_ENTRY_REASON,
            exit_reason=AUTO_EXIT_REASON,
            was_stop_loss=True,
        )

        try:
            trades = self._exchange.get_account_trades(symbol, _TRADE_HISTORY_LIMIT)
        except ExchangeError as exc:
            self._logger.warning("auto_close_history_unavailable", symbol=symbol, error=str(exc))
            trades = []
        self._apply_fills(event, trades, now)

        self._logger.info(
            "auto_close_detected",
            symbol=symbol,
            side=side,
            close_price=event.close_price,
            quantity=event.quantity,
            estimated=event.entry_reason == ESTIMATED_ENTRY_REASON,
        )
        return event

    def _apply_fills(
        self, event: CloseEvent, trades: Sequence[AccountTrade], now: datetime
    ) -> None:
        closes = [
            t for t in trades if is_closing_fill(t, event.side) and abs(now - t.time) <= FILL_WINDOW
        ]
        if not closes:
            return

        event.close_price = _weighted_price(closes)
        event.realized_pnl = sum(t.realized_pnl for t in closes)
        if event.open_time is not None:
            opens = [
                t
                for t in trades
                if is_opening_fill(t, event.side) and abs(t.time - event.open_time) <= FILL_WINDOW
            ]
            if opens:
                event.open_price = _weighted_price(opens)

        filled = sum(t.quantity for t in closes)
        if filled > 0:
            event.quantity = filled
            event.entry_reason = EXACT_ENTRY_REASON
        else:
            implied = estimate_quantity(
                event.realized_pnl, event.side, event.open_price, event.close_price
            )
            if implied > 0:
                event.quantity = implied
