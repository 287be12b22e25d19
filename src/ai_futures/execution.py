"""Decision ordering and sequential execution against the exchange."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime

from ai_futures.ai.schemas import Decision
from ai_futures.config import Settings
from ai_futures.errors import (
    DecisionRejectedError,
    DuplicatePositionError,
    ExchangeError,
    PositionNotFoundError,
)
from ai_futures.exchange.base import Exchange
from ai_futures.store.base import DurableStore
from ai_futures.types import ActionRecord, CloseEvent, Position, position_key
from ai_futures.utils.logging import get_logger, log_order_execution

_PRIORITY = {
    "close_long": 1,
    "close_short": 1,
    "open_long": 2,
    "open_short": 2,
    "hold": 3,
    "wait": 3,
}
_UNKNOWN_PRIORITY = 999


def action_priority(action: str) -> int:
    return _PRIORITY.get(action, _UNKNOWN_PRIORITY)


def sort_decisions_by_priority(decisions: Sequence[Decision]) -> list[Decision]:
    """Closes, then opens, then hold/wait. Stable within a priority."""
    return sorted(decisions, key=lambda decision: action_priority(decision.action))


class DecisionExecutor:
    """Executes one cycle's decisions in order.

    ``live`` is the cycle's view of open positions keyed by identity key; it is
    updated as closes and opens succeed so later decisions see earlier ones.
    """

    def __init__(
        self,
        exchange: Exchange,
        store: DurableStore,
        settings: Settings,
        *,
        on_open: Callable[[Position], None],
        on_close: Callable[[CloseEvent], object],
        clock: Callable[[], datetime],
        sleep: Callable[[float], None],
    ) -> None:
        self._exchange = exchange
        self._store = store
        self._settings = settings
        self._on_open = on_open
        self._on_close = on_close
        self._clock = clock
        self._sleep = sleep
        self._logger = get_logger("ai_futures.execution")

    def execute(
        self,
        decisions: Sequence[Decision],
        live: dict[str, Position],
        log: list[str] | None = None,
    ) -> list[ActionRecord]:
        records: list[ActionRecord] = []
        for decision in sort_decisions_by_priority(decisions):
            if not (decision.is_open or decision.is_close):
                if log is not None:
                    log.append(f"{decision.symbol} {decision.action}")
                continue

            record = ActionRecord(
                action=decision.action,
                symbol=decision.symbol,
                leverage=decision.leverage,
                timestamp=self._clock(),
            )
            try:
                if decision.is_open:
                    self._open(decision, live, record)
                else:
                    self._close(decision, live, record)
            except DecisionRejectedError as exc:
                record.error = str(exc)
                log_order_execution(
                    self._logger,
                    symbol=decision.symbol,
                    action=decision.action,
                    quantity=record.quantity,
                    status="rejected",
                    error=record.error,
                )
            except Exception as exc:  # noqa: BLE001 - one failed order must not stop the rest.
                record.error = str(exc)
                log_order_execution(
                    self._logger,
                    symbol=decision.symbol,
                    action=decision.action,
                    quantity=record.quantity,
                    status="failed",
                    error=record.error,
                )
            else:
                record.success = True
                log_order_execution(
                    self._logger,
                    symbol=decision.symbol,
                    action=decision.action,
                    quantity=record.quantity,
                    price=record.price,
                    order_id=record.order_id,
                    status="filled",
                )
                self._sleep(self._settings.order_pause_sec)

            records.append(record)
            if log is not None:
                outcome = "ok" if record.success else f"failed: {record.error}"
                log.append(f"{decision.symbol} {decision.action} {outcome}")
        return records

    def _open(self, decision: Decision, live: dict[str, Position], record: ActionRecord) -> None:
        side = "long" if decision.action == "open_long" else "short"
        key = position_key(decision.symbol, side)
        if key in live:
            raise DuplicatePositionError(decision.symbol, side)

        cap = self._settings.leverage_cap(decision.symbol)
        if decision.leverage > cap:
            raise DecisionRejectedError(
                f"leverage {decision.leverage}x exceeds cap {cap}x for {decision.symbol}"
            )
        if len(live) >= self._settings.max_positions:
            raise DecisionRejectedError(
                f"max positions reached ({len(live)}/{self._settings.max_positions})"
            )

        price = self._exchange.get_market_price(decision.symbol)
        if price <= 0:
            raise ExchangeError(f"invalid market price {price} for {decision.symbol}")
        quantity = decision.position_size_usd / price
        record.quantity = quantity
        record.price = price

        open_order = self._exchange.open_long if side == "long" else self._exchange.open_short
        record.order_id = open_order(decision.symbol, quantity, decision.leverage)

        opened_at = self._clock()
        position = Position(
            symbol=decision.symbol,
            side=side,
            entry_price=price,
            mark_price=price,
            quantity=quantity,
            leverage=decision.leverage,
            margin_used=quantity * price / decision.leverage,
            opened_at=opened_at,
        )
        live[key] = position
        self._store.save_position_open_time(key, opened_at)
        self._on_open(position)
        self._place_protection(decision, side, quantity)

    def _place_protection(self, decision: Decision, side: str, quantity: float) -> None:
        if decision.stop_loss > 0:
            try:
                self._exchange.set_stop_loss(
                    decision.symbol, side, quantity, decision.stop_loss  # type: ignore[arg-type]
                )
            except ExchangeError as exc:
                self._logger.warning("stop_loss_failed", symbol=decision.symbol, error=str(exc))
        if decision.take_profit > 0:
            try:
                self._exchange.set_take_profit(
                    decision.symbol, side, quantity, decision.take_profit  # type: ignore[arg-type]
                )
            except ExchangeError as exc:
                self._logger.warning("take_profit_failed", symbol=decision.symbol, error=str(exc))

    def _close(self, decision: Decision, live: dict[str, Position], record: ActionRecord) -> None:
        side = "long" if decision.action == "close_long" else "short"
        key = position_key(decision.symbol, side)
        position = live.get(key)
        if position is None:
            raise PositionNotFoundError(decision.symbol, side)

        try:
            close_price = self._exchange.get_market_price(decision.symbol)
        except ExchangeError as exc:
            self._logger.warning("close_price_unavailable", symbol=decision.symbol, error=str(exc))
            close_price = position.mark_price

        if side == "long":
            record.order_id = self._exchange.close_long(decision.symbol, 0.0)
        else:
            record.order_id = self._exchange.close_short(decision.symbol, 0.0)
        record.quantity = position.quantity
        record.price = close_price
        record.leverage = position.leverage
        del live[key]

        self._on_close(
            CloseEvent(
                symbol=position.symbol,
                side=position.side,
                quantity=position.quantity,
                leverage=position.leverage,
                open_price=position.entry_price,
                close_price=close_price,
                close_time=self._clock(),
                trigger="decision",
                open_time=position.opened_at,
                entry_reason="AI open",
            )
        )
