"""USDT-M futures market data: klines, mark price, funding and open interest."""

from __future__ import annotations

from typing import Any

import pandas as pd  # type: ignore[import-untyped]
from binance.client import Client  # type: ignore[import-untyped]
from binance.exceptions import BinanceRequestException  # type: ignore[import-untyped]
from requests.exceptions import RequestException  # type: ignore[import-untyped]
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ai_futures.config import Settings
from ai_futures.errors import ExchangeError
from ai_futures.utils.logging import get_logger

KLINE_COLUMNS = (
    "open_time",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "close_time",
    "quote_volume",
    "trades",
    "taker_buy_base",
    "taker_buy_quote",
    "ignore",
)
OHLCV_COLUMNS = ["open_time", "open", "high", "low", "close", "volume", "close_time"]
_PRICE_COLUMNS = ["open", "high", "low", "close", "volume"]
_SUPPORTED_INTERVALS = frozenset(
    {"1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "6h", "8h", "12h", "1d"}
)

_transient_retry = retry(
    retry=retry_if_exception_type((BinanceRequestException, RequestException)),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    stop=stop_after_attempt(3),
    reraise=True,
)


def klines_to_frame(rows: list[list[Any]]) -> pd.DataFrame:
    """Normalize raw kline rows into an ascending OHLCV frame with UTC timestamps."""
    df = pd.DataFrame(rows, columns=list(KLINE_COLUMNS))
    if df.empty:
        raise ExchangeError("empty_ohlcv_response")
    for col in _PRICE_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df["open_time"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)
    df["close_time"] = pd.to_datetime(df["close_time"], unit="ms", utc=True)
    df = df.dropna(subset=_PRICE_COLUMNS).sort_values("open_time").reset_index(drop=True)
    return df[OHLCV_COLUMNS]


class BinanceDataClient:
    """Public market data for the decision cycle.

    Kline and price failures raise ``ExchangeError`` after retries; funding
    and open interest are optional context and degrade to ``None``.
    """

    def __init__(self, settings: Settings, client: Client | None = None) -> None:
        self._logger = get_logger("ai_futures.data.binance")
        self._client = client or Client(
            api_key=settings.binance_api_key or None,
            api_secret=settings.binance_api_secret or None,
            testnet=settings.binance_testnet,
            requests_params={"timeout": settings.exchange_timeout_sec},
        )

    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        if interval not in _SUPPORTED_INTERVALS:
            raise ValueError(f"unsupported_interval: {interval}")
        try:
            rows = self._klines(symbol, interval, limit)
        except (BinanceRequestException, RequestException) as exc:
            raise ExchangeError(f"klines unavailable for {symbol} {interval}: {exc}") from exc
        return klines_to_frame(rows)

    def fetch_price(self, symbol: str) -> float:
        try:
            payload: dict[str, Any] = self._mark_price(symbol)
        except (BinanceRequestException, RequestException) as exc:
            raise ExchangeError(f"price unavailable for {symbol}: {exc}") from exc
        price = float(payload["markPrice"])
        if price <= 0:
            raise ExchangeError(f"invalid mark price {price} for {symbol}")
        return price

    def fetch_funding_rate(self, symbol: str) -> float | None:
        try:
            rows = self._client.futures_funding_rate(symbol=symbol, limit=1)
        except Exception as exc:  # noqa: BLE001 - funding is optional context.
            self._logger.warning("funding_fetch_failed", symbol=symbol, error=str(exc))
            return None
        if not rows:
            return None
        value = rows[-1].get("fundingRate")
        return float(value) if value is not None else None

    def fetch_open_interest(self, symbol: str) -> float | None:
        """Open interest in contracts; None disables the liquidity filter."""
        try:
            payload: dict[str, Any] = self._client.futures_open_interest(symbol=symbol)
        except Exception as exc:  # noqa: BLE001 - open interest is optional context.
            self._logger.warning("oi_fetch_failed", symbol=symbol, error=str(exc))
            return None
        value = payload.get("openInterest")
        return float(value) if value is not None else None

    @_transient_retry
    def _klines(self, symbol: str, interval: str, limit: int) -> list[list[Any]]:
        return self._client.futures_klines(symbol=symbol, interval=interval, limit=limit)

    @_transient_retry
    def _mark_price(self, symbol: str) -> dict[str, Any]:
        return self._client.futures_mark_price(symbol=symbol)
