"""Binance USDT-M futures adapter built on python-binance."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

from binance.client import Client  # type: ignore[import-untyped]
from binance.exceptions import (  # type: ignore[import-untyped]
    BinanceAPIException,
    BinanceRequestException,
)

from ai_futures.config import Settings
from ai_futures.errors import ExchangeError
from ai_futures.exchange.base import AccountTrade, Balance
from ai_futures.types import Position, PositionSide
from ai_futures.utils.logging import get_logger, log_order_execution

_DEFAULT_LEVERAGE = 10
_BINANCE_ERRORS = (BinanceAPIException, BinanceRequestException)
_POSITION_SIDE = {"long": "LONG", "short": "SHORT"}
_ENTRY_SIDE = {"long": "BUY", "short": "SELL"}
_EXIT_SIDE = {"long": "SELL", "short": "BUY"}


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


def _row_side(row: dict[str, Any], amount: float) -> PositionSide:
    position_side = row.get("positionSide", "BOTH")
    if position_side == "LONG":
        return "long"
    if position_side == "SHORT":
        return "short"
    return "long" if amount > 0 else "short"


class BinanceFuturesExchange:
    """Live order routing in hedge (dual-side) position mode.

    Every order carries ``positionSide`` so a long and a short on the same
    symbol are separate positions, matching the (symbol, side) identity key.
    """

    def __init__(self, settings: Settings, client: Client | None = None) -> None:
        self._logger = get_logger("ai_futures.exchange.binance_futures")
        self._client = client or Client(
            api_key=settings.binance_api_key or None,
            api_secret=settings.binance_api_secret or None,
            testnet=settings.binance_testnet,
            requests_params={"timeout": settings.exchange_timeout_sec},
        )
        self._step_sizes: dict[str, float] = {}
        self._hedge_mode = False

    def _call(self, method: str, **kwargs: Any) -> Any:
        try:
            return getattr(self._client, method)(**kwargs)
        except _BINANCE_ERRORS as exc:
            raise ExchangeError(f"{method} failed: {exc}") from exc

    # ---- reads ----

    def get_balance(self) -> Balance:
        payload = self._call("futures_account")
        return Balance(
            wallet_balance=float(payload.get("totalWalletBalance", 0.0)),
            unrealized_profit=float(payload.get("totalUnrealizedProfit", 0.0)),
            available_balance=float(payload.get("availableBalance", 0.0)),
        )

    def get_positions(self) -> list[Position]:
        rows = self._call("futures_position_information")
        positions: list[Position] = []
        for row in rows:
            amount = float(row.get("positionAmt", 0.0))
            if amount == 0:
                continue
            leverage = int(float(row.get("leverage") or _DEFAULT_LEVERAGE))
            mark_price = float(row.get("markPrice", 0.0))
            quantity = abs(amount)
            positions.append(
                Position(
                    symbol=row["symbol"],
                    side=_row_side(row, amount),
                    entry_price=float(row.get("entryPrice", 0.0)),
                    mark_price=mark_price,
                    quantity=quantity,
                    leverage=leverage,
                    liquidation_price=float(row.get("liquidationPrice", 0.0)),
                    unrealized_pnl=float(row.get("unRealizedProfit", 0.0)),
                    margin_used=quantity * mark_price / leverage,
                )
            )
        return positions

    def get_market_price(self, symbol: str) -> float:
        payload = self._call("futures_mark_price", symbol=symbol)
        return float(payload["markPrice"])

    def get_account_trades(self, symbol: str, limit: int = 20) -> list[AccountTrade]:
        rows = self._call("futures_account_trades", symbol=symbol, limit=limit)
        return [
            AccountTrade(
                symbol=row.get("symbol", symbol),
                side=row["side"],
                position_side=row.get("positionSide", "BOTH"),
                price=float(row["price"]),
                quantity=float(row["qty"]),
                realized_pnl=float(row.get("realizedPnl", 0.0)),
                time=datetime.fromtimestamp(int(row["time"]) / 1000, tz=timezone.utc),
            )
            for row in rows
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
        self._protective_order(symbol, side, "STOP_MARKET", price)

    def set_take_profit(
        self, symbol: str, side: PositionSide, quantity: float, price: float
    ) -> None:
        self._protective_order(symbol, side, "TAKE_PROFIT_MARKET", price)

    def _ensure_hedge_mode(self) -> None:
        """Switch the account to dual-side positions once per process.

        Binance refuses the switch while one-way positions are open; the
        resulting ExchangeError blocks the order instead of netting sides.
        """
        if self._hedge_mode:
            return
        mode = self._call("futures_get_position_mode")
        if not _truthy(mode.get("dualSidePosition")):
            self._call("futures_change_position_mode", dualSidePosition="true")
            self._logger.info("position_mode_changed", dual_side=True)
        self._hedge_mode = True

    def _open(self, symbol: str, side: PositionSide, quantity: float, leverage: int) -> str:
        self._ensure_hedge_mode()
        self._cancel_orders(symbol, side)
        self._call("futures_change_leverage", symbol=symbol, leverage=leverage)
        qty = self._format_quantity(symbol, quantity)
        order = self._call(
            "futures_create_order",
            symbol=symbol,
            side=_ENTRY_SIDE[side],
            positionSide=_POSITION_SIDE[side],
            type="MARKET",
            quantity=qty,
        )
        order_id = str(order.get("orderId", ""))
        log_order_execution(
            self._logger,
            symbol=symbol,
            action=f"open_{side}",
            quantity=float(qty),
            order_id=order_id,
            leverage=leverage,
        )
        return order_id

    def _close(self, symbol: str, side: PositionSide, quantity: float) -> str:
        self._ensure_hedge_mode()
        if quantity <= 0:
            quantity = self._live_quantity(symbol, side)
        qty = self._format_quantity(symbol, quantity)
        # reduceOnly is rejected in hedge mode; positionSide already scopes the order.
        order = self._call(
            "futures_create_order",
            symbol=symbol,
            side=_EXIT_SIDE[side],
            positionSide=_POSITION_SIDE[side],
            type="MARKET",
            quantity=qty,
        )
        self._cancel_orders(symbol, side)
        order_id = str(order.get("orderId", ""))
        log_order_execution(
            self._logger,
            symbol=symbol,
            action=f"close_{side}",
            quantity=float(qty),
            order_id=order_id,
        )
        return order_id

    def _protective_order(
        self, symbol: str, side: PositionSide, order_type: str, price: float
    ) -> None:
        self._ensure_hedge_mode()
        self._call(
            "futures_create_order",
            symbol=symbol,
            side=_EXIT_SIDE[side],
            positionSide=_POSITION_SIDE[side],
            type=order_type,
            stopPrice=self._format_price(price),
            closePosition="true",
            workingType="MARK_PRICE",
        )

    def _cancel_orders(self, symbol: str, side: PositionSide) -> None:
        """Cancel resting orders of one position side, leaving the other side's SL/TP."""
        wanted = _POSITION_SIDE[side]
        for order in self._call("futures_get_open_orders", symbol=symbol):
            if order.get("positionSide") == wanted:
                self._call("futures_cancel_order", symbol=symbol, orderId=order["orderId"])

    def _live_quantity(self, symbol: str, side: PositionSide) -> float:
        for position in self.get_positions():
            if position.symbol == symbol and position.side == side:
                return position.quantity
        raise ExchangeError(f"no_open_position: {symbol} {side}")

    def _format_quantity(self, symbol: str, quantity: float) -> str:
        step = self._step_size(symbol)
        if step <= 0:
            return f"{quantity:.3f}"
        precision = max(0, int(round(-math.log10(step))))
        rounded = math.floor(quantity / step) * step
        if rounded <= 0:
            raise ExchangeError(f"quantity {quantity} below step size {step} for {symbol}")
        return f"{rounded:.{precision}f}"

    @staticmethod
    def _format_price(price: float) -> str:
        return f"{price:.8f}".rstrip("0").rstrip(".")

    def _step_size(self, symbol: str) -> float:
        if symbol not in self._step_sizes:
            info = self._call("futures_exchange_info")
            for item in info.get("symbols", []):
                for flt in item.get("filters", []):
                    if flt.get("filterType") == "LOT_SIZE":
                        self._step_sizes[item["symbol"]] = float(flt.get("stepSize", 0.0))
        return self._step_sizes.get(symbol, 0.0)
