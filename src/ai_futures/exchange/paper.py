"""Paper futures exchange with persistent local state."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ai_futures.errors import ExchangeError
from ai_futures.exchange.base import AccountTrade, Balance
from ai_futures.types import Position, PositionSide, position_key
from ai_futures.utils.logging import get_logger

_MAX_FILLS = 500


@dataclass(slots=True)
class _PaperPosition:
    symbol: str
    side: PositionSide
    quantity: float
    entry_price: float
    leverage: int
    opened_at: str
    mark_price: float
    stop_loss: float | None = None
    take_profit: float | None = None


@dataclass(slots=True)
class _PaperState:
    wallet_balance: float
    order_seq: int = 0
    positions: dict[str, _PaperPosition] = field(default_factory=dict)
    fills: list[dict[str, Any]] = field(default_factory=list)


class PaperExchange:
    """Simulated USDT-margined futures account.

    Marks are refreshed from ``price_source`` whenever positions are read; a
    mark crossing a stop-loss or take-profit level closes the position on the
    spot, the same way the venue would between two cycles.
    """

    def __init__(
        self,
        state_file: Path,
        price_source: Callable[[str], float],
        *,
        initial_balance: float = 1000.0,
        slippage_bps: float = 2.0,
    ) -> None:
        self._state_file = state_file
        self._price_source = price_source
        self._slippage_bps = slippage_bps
        self._lock = threading.Lock()
        self._logger = get_logger("ai_futures.exchange.paper")
        self._state = self._load_state(initial_balance)

    # ---- reads ----

    def get_market_price(self, symbol: str) -> float:
        try:
            return float(self._price_source(symbol))
        except Exception as exc:
            raise ExchangeError(f"price unavailable for {symbol}: {exc}") from exc

    def get_balance(self) -> Balance:
        with self._lock:
            self._refresh_marks()
            unrealized = sum(self._unrealized(p) for p in self._state.positions.values())
            margin = sum(
                p.quantity * p.entry_price / p.leverage for p in self._state.positions.values()
            )
            return Balance(
                wallet_balance=self._state.wallet_balance,
                unrealized_profit=unrealized,
                available_balance=self._state.wallet_balance + unrealized - margin,
            )

    def get_positions(self) -> list[Position]:
        with self._lock:
            self._refresh_marks()
            return [
                Position(
                    symbol=p.symbol,
                    side=p.side,
                    entry_price=p.entry_price,
                    mark_price=p.mark_price,
                    quantity=p.quantity,
                    leverage=p.leverage,
                    liquidation_price=self._liquidation_price(p),
                    unrealized_pnl=self._unrealized(p),
                    margin_used=p.quantity * p.mark_price / p.leverage,
                )
                for p in self._state.positions.values()
            ]

    def get_account_trades(self, symbol: str, limit: int = 20) -> list[AccountTrade]:
        with self._lock:
            rows = [row for row in self._state.fills if row["symbol"] == symbol][-limit:]
        return [
            AccountTrade(**{**row, "time": datetime.fromisoformat(row["time"])}) for row in rows
        ]

    # ---- orders ----

    def open_long(self, symbol: str, quantity: float, leverage: int) -> str:
        return self._open(symbol, "long", quantity, leverage)

    def open_short(self, symbol: str, quantity: float, leverage: int) -> str:
        return self._open(symbol, "short", quantity, leverage)

    def close_long(self, symbol: str, quantity: float = 0.0) -> str:
        return self._close(symbol, "long", quantity)

    def close_short(self, symbol: str, quantity: float = 0.0) -> str:
        return self._close(symbol, "short", quantity)

    def set_stop_loss(self, symbol: str, side: PositionSide, quantity: float, price: float) -> None:
        with self._lock:
            self._require(symbol, side).stop_loss = float(price)
            self._persist()

    def set_take_profit(
        self, symbol: str, side: PositionSide, quantity: float, price: float
    ) -> None:
        with self._lock:
            self._require(symbol, side).take_profit = float(price)
            self._persist()

    def _open(self, symbol: str, side: PositionSide, quantity: float, leverage: int) -> str:
        if quantity <= 0:
            raise ExchangeError("qty_must_be_positive")
        if leverage < 1:
            raise ExchangeError("leverage_must_be_positive")
        price = self.get_market_price(symbol)
        with self._lock:
            key = position_key(symbol, side)
            if key in self._state.positions:
                raise ExchangeError(f"position_already_open: {key}")
            fill_price = self._slip(price, buying=side == "long")
            self._state.positions[key] = _PaperPosition(
                symbol=symbol,
                side=side,
                quantity=float(quantity),
                entry_price=fill_price,
                leverage=int(leverage),
                opened_at=datetime.now(timezone.utc).isoformat(),
                mark_price=fill_price,
            )
            order_id = self._record_fill(
                symbol, side, opening=True, price=fill_price, quantity=quantity, pnl=0.0
            )
            self._persist()
        return order_id

    def _close(self, symbol: str, side: PositionSide, quantity: float) -> str:
        price = self.get_market_price(symbol)
        with self._lock:
            position = self._require(symbol, side)
            fill_price = self._slip(price, buying=side == "short")
            order_id = self._realize(position, fill_price, quantity)
            self._persist()
        return order_id

    # ---- internals ----

    def _require(self, symbol: str, side: PositionSide) -> _PaperPosition:
        position = self._state.positions.get(position_key(symbol, side))
        if position is None:
            raise ExchangeError(f"no_open_position: {symbol} {side}")
        return position

    def _realize(self, position: _PaperPosition, price: float, quantity: float) -> str:
        qty = position.quantity if quantity <= 0 else min(quantity, position.quantity)
        if position.side == "long":
            pnl = (price - position.entry_price) * qty
        else:
            pnl = (position.entry_price - price) * qty
        self._state.wallet_balance += pnl
        position.quantity -= qty
        if position.quantity <= 1e-12:
            del self._state.positions[position_key(position.symbol, position.side)]
        return self._record_fill(
            position.symbol, position.side, opening=False, price=price, quantity=qty, pnl=pnl
        )

    def _refresh_marks(self) -> None:
        changed = False
        for position in list(self._state.positions.values()):
            try:
                mark = float(self._price_source(position.symbol))
            except Exception as exc:  # noqa: BLE001 - keep the last mark.
                self._logger.warning("mark_refresh_failed", symbol=position.symbol, error=str(exc))
                continue
            position.mark_price = mark
            changed = True
            trigger = self._triggered_level(position, mark)
            if trigger is not None:
                self._logger.info(
                    "paper_protective_order_triggered",
                    symbol=position.symbol,
                    side=position.side,
                    trigger_price=trigger,
                )
                self._realize(position, trigger, 0.0)
        if changed:
            self._persist()

    @staticmethod
    def _triggered_level(position: _PaperPosition, mark: float) -> float | None:
        stop, take = position.stop_loss, position.take_profit
        if position.side == "long":
            if stop is not None and mark <= stop:
                return stop
            if take is not None and mark >= take:
                return take
        else:
            if stop is not None and mark >= stop:
                return stop
            if take is not None and mark <= take:
                return take
        return None

    @staticmethod
    def _unrealized(position: _PaperPosition) -> float:
        if position.side == "long":
            return (position.mark_price - position.entry_price) * position.quantity
        return (position.entry_price - position.mark_price) * position.quantity

    @staticmethod
    def _liquidation_price(position: _PaperPosition) -> float:
        move = position.entry_price / position.leverage
        if position.side == "long":
            return max(0.0, position.entry_price - move)
        return position.entry_price + move

    def _slip(self, price: float, *, buying: bool) -> float:
        factor = self._slippage_bps / 10_000.0
        return price * (1.0 + factor) if buying else price * (1.0 - factor)

    def _record_fill(
        self,
        symbol: str,
        side: PositionSide,
        *,
        opening: bool,
        price: float,
        quantity: float,
        pnl: float,
    ) -> str:
        buying = (side == "long") == opening
        self._state.order_seq += 1
        self._state.fills.append(
            {
                "symbol": symbol,
                "side": "BUY" if buying else "SELL",
                "position_side": "LONG" if side == "long" else "SHORT",
                "price": float(price),
                "quantity": float(quantity),
                "realized_pnl": float(pnl),
                "time": datetime.now(timezone.utc).isoformat(),
            }
        )
        del self._state.fills[:-_MAX_FILLS]
        return f"paper-{self._state.order_seq}"

    def _load_state(self, initial_balance: float) -> _PaperState:
        if not self._state_file.exists():
            return _PaperState(wallet_balance=initial_balance)

        raw = json.loads(self._state_file.read_text(encoding="utf-8"))
        positions = {
            key: _PaperPosition(**payload) for key, payload in (raw.get("positions") or {}).items()
        }
        return _PaperState(
            wallet_balance=float(raw.get("wallet_balance", initial_balance)),
            order_seq=int(raw.get("order_seq", 0)),
            positions=positions,
            fills=list(raw.get("fills") or []),
        )

    def _persist(self) -> None:
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        serialized = json.dumps(asdict(self._state), ensure_ascii=True, indent=2)
        self._state_file.write_text(serialized, encoding="utf-8")
