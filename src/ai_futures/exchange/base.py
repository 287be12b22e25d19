"""Exchange capability the decision cycle depends on."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Protocol

from ai_futures.types import Position, PositionSide


@dataclass(slots=True)
class Balance:
    wallet_balance: float
    unrealized_profit: float
    available_balance: float


@dataclass(slots=True)
class AccountTrade:
    """One fill from the account trade history."""

    symbol: str
    side: Literal["BUY", "SELL"]
    position_side: Literal["BOTH", "LONG", "SHORT"]
    price: float
    quantity: float
    realized_pnl: float
    time: datetime


class Exchange(Protocol):
    """Per-venue adapter. Quantity 0 on a close means the whole position."""

    def get_balance(self) -> Balance: ...

    def get_positions(self) -> list[Position]: ...

    def get_market_price(self, symbol: str) -> float:
        """Current mark price; opens size their quantity from it."""
        ...

    def open_long(self, symbol: str, quantity: float, leverage: int) -> str: ...

    def open_short(self, symbol: str, quantity: float, leverage: int) -> str: ...

    def close_long(self, symbol: str, quantity: float = 0.0) -> str: ...

    def close_short(self, symbol: str, quantity: float = 0.0) -> str: ...

    def set_stop_loss(
        self, symbol: str, side: PositionSide, quantity: float, price: float
    ) -> None: ...

    def set_take_profit(
        self, symbol: str, side: PositionSide, quantity: float, price: float
    ) -> None: ...

    def get_account_trades(self, symbol: str, limit: int = 20) -> list[AccountTrade]:
        """Recent fills, oldest first."""
        ...
