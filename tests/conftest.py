from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pandas as pd
import pytest

from ai_futures.ai.schemas import Decision, FullDecision, TradingContext
from ai_futures.config import Settings
from ai_futures.errors import ExchangeError
from ai_futures.exchange.base import AccountTrade, Balance
from ai_futures.store.sqlite import SQLiteStore
from ai_futures.types import Position, position_key

START = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def build_ohlcv(rows: int, step_minutes: int, start_price: float, drift: float) -> pd.DataFrame:
    times = [START + timedelta(minutes=i * step_minutes) for i in range(rows)]
    closes = [start_price + i * drift for i in range(rows)]
    return pd.DataFrame(
        {
            "open_time": times,
            "open": [c - drift / 2 for c in closes],
            "high": [c + 1.5 for c in closes],
            "low": [c - 0.5 for c in closes],
            "close": closes,
            "volume": [1000.0 for _ in range(rows)],
            "close_time": [t + timedelta(minutes=step_minutes) for t in times],
        }
    )


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeExchange:
    """In-memory venue that records every call in order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[object, ...]]] = []
        self.positions: dict[str, Position] = {}
        self.prices: dict[str, float] = {"BTCUSDT": 50_000.0, "ETHUSDT": 2_000.0}
        self.balance = Balance(
            wallet_balance=1000.0, unrealized_profit=0.0, available_balance=900.0
        )
        self.trades: dict[str, list[AccountTrade]] = {}
        self.fail_orders = False
        self._seq = 0

    @property
    def order_calls(self) -> list[tuple[str, tuple[object, ...]]]:
        names = ("open_long", "open_short", "close_long", "close_short")
        return [call for call in self.calls if call[0] in names]

    def add_position(
        self, symbol: str, side: str, quantity: float, entry: float, leverage: int = 5
    ) -> Position:
        position = Position(
            symbol=symbol,
            side=side,  # type: ignore[arg-type]
            entry_price=entry,
            mark_price=self.prices.get(symbol, entry),
            quantity=quantity,
            leverage=leverage,
        )
        self.positions[position.key] = position
        return position

    def get_balance(self) -> Balance:
        self.calls.append(("get_balance", ()))
        return self.balance

    def get_positions(self) -> list[Position]:
        self.calls.append(("get_positions", ()))
        return [
            Position(
                symbol=p.symbol,
                side=p.side,
                entry_price=p.entry_price,
                mark_price=p.mark_price,
                quantity=p.quantity,
                leverage=p.leverage,
            )
            for p in self.positions.values()
        ]

    def get_market_price(self, symbol: str) -> float:
        self.calls.append(("get_market_price", (symbol,)))
        if symbol not in self.prices:
            raise ExchangeError(f"no price for {symbol}")
        return self.prices[symbol]

    def _order(self, name: str, *args: object) -> str:
        self.calls.append((name, args))
        if self.fail_orders:
            raise ExchangeError(f"{name} rejected")
        self._seq += 1
        return f"order-{self._seq}"

    def open_long(self, symbol: str, quantity: float, leverage: int) -> str:
        order_id = self._order("open_long", symbol, quantity, leverage)
        self.add_position(symbol, "long", quantity, self.prices[symbol], leverage)
        return order_id

    def open_short(self, symbol: str, quantity: float, leverage: int) -> str:
        order_id = self._order("open_short", symbol, quantity, leverage)
        self.add_position(symbol, "short", quantity, self.prices[symbol], leverage)
        return order_id

    def close_long(self, symbol: str, quantity: float = 0.0) -> str:
        order_id = self._order("close_long", symbol, quantity)
        self.positions.pop(position_key(symbol, "long"), None)
        return order_id

    def close_short(self, symbol: str, quantity: float = 0.0) -> str:
        order_id = self._order("close_short", symbol, quantity)
        self.positions.pop(position_key(symbol, "short"), None)
        return order_id

    def set_stop_loss(self, symbol: str, side: str, quantity: float, price: float) -> None:
        self.calls.append(("set_stop_loss", (symbol, side, quantity, price)))

    def set_take_profit(self, symbol: str, side: str, quantity: float, price: float) -> None:
        self.calls.append(("set_take_profit", (symbol, side, quantity, price)))

    def get_account_trades(self, symbol: str, limit: int = 20) -> list[AccountTrade]:
        self.calls.append(("get_account_trades", (symbol, limit)))
        return self.trades.get(symbol, [])[-limit:]


class FakeProvider:
    """Returns a scripted decision list and remembers every context."""

    def __init__(self) -> None:
        self.decisions: list[dict[str, object]] = []
        self.error: Exception | None = None
        self.contexts: list[TradingContext] = []
        self.summary_text = "Cut losers faster."
        self.summary_calls = 0

    def decide(self, context: TradingContext) -> FullDecision:
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return FullDecision(
            system_prompt="system",
            user_prompt="user",
            raw_response="trace [...]",
            cot_trace="trace",
            decisions=[Decision.model_validate(item) for item in self.decisions],
        )

    def summarize(self, system_prompt: str, user_prompt: str) -> str:
        self.summary_calls += 1
        return self.summary_text


class FakeMarketData:
    def __init__(self) -> None:
        self.open_interest: dict[str, float | None] = {}
        self.broken: set[str] = set()

    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        if symbol in self.broken:
            raise RuntimeError("empty_ohlcv_response")
        step = 3 if interval == "3m" else 240
        return build_ohlcv(rows=60, step_minutes=step, start_price=100.0, drift=1.0)

    def fetch_funding_rate(self, symbol: str) -> float | None:
        return 0.0001

    def fetch_open_interest(self, symbol: str) -> float | None:
        return self.open_interest.get(symbol, 1_000_000_000.0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def market_data() -> FakeMarketData:
    return FakeMarketData()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        order_pause_sec=0.0,
        coin_pool=["BTCUSDT", "ETHUSDT"],
        enable_ai_learning=False,
        initial_balance=1000.0,
    )


@pytest.fixture
def store(tmp_path: Path):
    db = SQLiteStore(tmp_path / "trader.db", "test")
    yield db
    db.close()
