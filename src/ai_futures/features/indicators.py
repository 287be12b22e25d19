"""Technical indicators over ascending OHLCV frames.

Every function takes a dataframe with ``open/high/low/close/volume`` columns
ordered oldest to newest. When history is shorter than the window an
indicator returns 0.0 (or ``None`` for composite results); nothing here raises
for short input.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Literal

import numpy as np
import pandas as pd  # type: ignore[import-untyped]

from ai_futures.features.patterns import identify_patterns

_TRADING_DAYS = 252
_SR_MIN_BARS = 20


@dataclass(slots=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float
    position: float
    width_pct: float


@dataclass(slots=True)
class Stochastic:
    k: float
    d: float
    signal: Literal["oversold", "overbought", "neutral"]


@dataclass(slots=True)
class PivotPoints:
    pivot: float
    r1: float
    r2: float
    r3: float
    s1: float
    s2: float
    s3: float


def _closes(df: pd.DataFrame) -> np.ndarray:
    return df["close"].astype(float).to_numpy()


def ema(df: pd.DataFrame, period: int) -> float:
    """EMA seeded with the SMA of the first ``period`` closes."""
    closes = _closes(df)
    if period <= 0 or len(closes) < period:
        return 0.0
    value = float(closes[:period].mean())
    multiplier = 2.0 / (period + 1)
    for price in closes[period:]:
        value = (float(price) - value) * multiplier + value
    return value


def macd(df: pd.DataFrame) -> float:
    """EMA(12) - EMA(26)."""
    if len(df) < 26:
        return 0.0
    return ema(df, 12) - ema(df, 26)


def rsi(df: pd.DataFrame, period: int = 14) -> float:
    """Wilder RSI; 100 when there are no losses in the window."""
    closes = _closes(df)
    if period <= 0 or len(closes) <= period:
        return 0.0
    deltas = np.diff(closes)
    gains = np.clip(deltas, 0.0, None)
    losses = np.clip(-deltas, 0.0, None)
    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + float(gain)) / period
        avg_loss = (avg_loss * (period - 1) + float(loss)) / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def true_range(df: pd.DataFrame) -> pd.Series:
    high = df["high"].astype(float)
    low = df["low"].astype(float)
    prev_close = df["close"].astype(float).shift(1)
    components = pd.concat(
        [
            (high - low).abs(),
            (high - prev_close).abs(),
            (low - prev_close).abs(),
        ],
        axis=1,
    )
    return components.max(axis=1)


def atr(df: pd.DataFrame, period: int = 14) -> float:
    """Average true range with Wilder smoothing."""
    if period <= 0 or len(df) <= period:
        return 0.0
    tr = true_range(df).to_numpy()
    value = float(tr[1 : period + 1].mean())
    for item in tr[period + 1 :]:
        value = (value * (period - 1) + float(item)) / period
    return value


def bollinger_bands(df: pd.DataFrame, period: int = 20, k: float = 2.0) -> BollingerBands | None:
    closes = _closes(df)
    if len(closes) < period:
        return None
    window = closes[-period:]
    middle = float(window.mean())
    std = float(window.std())
    upper = middle + k * std
    lower = middle - k * std
    last = float(closes[-1])
    position = (last - lower) / (upper - lower) if upper > lower else 0.5
    width_pct = (upper - lower) / middle * 100 if middle else 0.0
    return BollingerBands(
        upper=upper,
        middle=middle,
        lower=lower,
        position=position,
        width_pct=width_pct,
    )


def _stochastic_k(high: np.ndarray, low: np.ndarray, close: float) -> float:
    highest = float(high.max())
    lowest = float(low.min())
    if highest == lowest:
        return 50.0
    return 100.0 * (close - lowest) / (highest - lowest)


def stochastic(df: pd.DataFrame, k_period: int = 14, d_period: int = 3) -> Stochastic | None:
    """%K over ``k_period`` and %D as the SMA of the last ``d_period`` %K values."""
    if len(df) < k_period + d_period - 1:
        return None
    highs = df["high"].astype(float).to_numpy()
    lows = df["low"].astype(float).to_numpy()
    closes = _closes(df)
    k_values = []
    for end in range(len(df) - d_period + 1, len(df) + 1):
        start = end - k_period
        k_values.append(_stochastic_k(highs[start:end], lows[start:end], float(closes[end - 1])))
    k = k_values[-1]
    d = sum(k_values) / len(k_values)
    if k < 20:
        signal: Literal["oversold", "overbought", "neutral"] = "oversold"
    elif k > 80:
        signal = "overbought"
    else:
        signal = "neutral"
    return Stochastic(k=k, d=d, signal=signal)


def williams_r(df: pd.DataFrame, period: int = 14) -> float:
    if len(df) < period:
        return 0.0
    window = df.iloc[-period:]
    highest = float(window["high"].max())
    lowest = float(window["low"].min())
    if highest == lowest:
        return -50.0
    return -100.0 * (highest - float(window["close"].iloc[-1])) / (highest - lowest)


def cci(df: pd.DataFrame, period: int = 20) -> float:
    if len(df) < period:
        return 0.0
    window = df.iloc[-period:]
    typical = ((window["high"] + window["low"] + window["close"]) / 3.0).astype(float).to_numpy()
    sma = float(typical.mean())
    mean_dev = float(np.abs(typical - sma).mean())
    if mean_dev == 0:
        return 0.0
    return (float(typical[-1]) - sma) / (0.015 * mean_dev)


def obv(df: pd.DataFrame) -> float:
    closes = _closes(df)
    volumes = df["volume"].astype(float).to_numpy()
    value = 0.0
    for idx in range(1, len(closes)):
        if closes[idx] > closes[idx - 1]:
            value += float(volumes[idx])
        elif closes[idx] < closes[idx - 1]:
            value -= float(volumes[idx])
    return value


def vwma(df: pd.DataFrame, period: int = 20) -> float:
    if len(df) < period:
        return 0.0
    window = df.iloc[-period:]
    volume = float(window["volume"].sum())
    if volume == 0:
        return 0.0
    return float((window["close"] * window["volume"]).sum()) / volume


def vwap(df: pd.DataFrame) -> float:
    if df.empty:
        return 0.0
    typical = (df["high"] + df["low"] + df["close"]) / 3.0
    volume = float(df["volume"].sum())
    if volume == 0:
        return 0.0
    return float((typical * df["volume"]).sum()) / volume


def historical_volatility(df: pd.DataFrame, period: int = 20) -> float:
    """Annualized stdev of log returns, in percent."""
    closes = _closes(df)
    if len(closes) <= period:
        return 0.0
    window = closes[-(period + 1) :]
    if (window <= 0).any():
        return 0.0
    returns = np.diff(np.log(window))
    variance = float(returns.var(ddof=1))
    return math.sqrt(variance * _TRADING_DAYS) * 100


def support_resistance(df: pd.DataFrame) -> tuple[list[float], list[float]]:
    """Strict 5-bar local lows/highs, each sorted ascending."""
    if len(df) < _SR_MIN_BARS:
        return [], []
    lows = df["low"].astype(float).to_numpy()
    highs = df["high"].astype(float).to_numpy()
    supports: list[float] = []
    resistances: list[float] = []
    for idx in range(2, len(df) - 2):
        neighbours = (idx - 2, idx - 1, idx + 1, idx + 2)
        if all(lows[idx] < lows[n] for n in neighbours):
            supports.append(float(lows[idx]))
        if all(highs[idx] > highs[n] for n in neighbours):
            resistances.append(float(highs[idx]))
    return sorted(supports), sorted(resistances)


def pivot_points(df: pd.DataFrame) -> PivotPoints | None:
    """Classic floor pivots from the latest bar."""
    if df.empty:
        return None
    last = df.iloc[-1]
    high = float(last["high"])
    low = float(last["low"])
    close = float(last["close"])
    pivot = (high + low + close) / 3.0
    return PivotPoints(
        pivot=pivot,
        r1=2 * pivot - low,
        r2=pivot + (high - low),
        r3=high + 2 * (pivot - low),
        s1=2 * pivot - high,
        s2=pivot - (high - low),
        s3=low - 2 * (high - pivot),
    )


def price_change_pct(df: pd.DataFrame, bars_back: int, current_price: float) -> float:
    """Percent change of ``current_price`` versus the close ``bars_back`` bars ago."""
    closes = _closes(df)
    if len(closes) < bars_back + 1:
        return 0.0
    reference = float(closes[-(bars_back + 1)])
    if reference <= 0:
        return 0.0
    return (current_price - reference) / reference * 100


def compute_indicators(df_intraday: pd.DataFrame, df_trend: pd.DataFrame) -> dict[str, Any]:
    """Compute the full indicator snapshot for one symbol."""
    if df_intraday.empty or df_trend.empty:
        raise ValueError("input_ohlcv_empty")

    if not _is_time_ascending(df_intraday) or not _is_time_ascending(df_trend):
        raise ValueError("ohlcv_timestamp_not_ascending")

    price = float(df_intraday["close"].iloc[-1])
    supports, resistances = support_resistance(df_trend)
    bands = bollinger_bands(df_intraday)
    stoch = stochastic(df_intraday)
    pivots = pivot_points(df_trend)
    recent = df_intraday.iloc[-20:]

    return {
        "price": price,
        "price_change_1h": price_change_pct(df_intraday, 20, price),
        "price_change_4h": price_change_pct(df_trend, 1, price),
        "ema20": ema(df_intraday, 20),
        "macd": macd(df_intraday),
        "rsi7": rsi(df_intraday, 7),
        "rsi14": rsi(df_intraday, 14),
        "bollinger": asdict(bands) if bands else None,
        "stochastic": asdict(stoch) if stoch else None,
        "williams_r": williams_r(df_intraday),
        "cci": cci(df_intraday),
        "obv": obv(df_intraday),
        "vwap": vwap(df_intraday),
        "vwma20": vwma(df_intraday),
        "historical_volatility": historical_volatility(df_trend),
        "intraday_high": float(recent["high"].max()),
        "intraday_low": float(recent["low"].min()),
        "patterns": identify_patterns(recent),
        "trend": {
            "ema20": ema(df_trend, 20),
            "ema50": ema(df_trend, 50),
            "atr3": atr(df_trend, 3),
            "atr14": atr(df_trend, 14),
            "macd": macd(df_trend),
            "rsi14": rsi(df_trend, 14),
            "current_volume": float(df_trend["volume"].iloc[-1]),
            "average_volume": float(df_trend["volume"].mean()),
        },
        "supports": supports,
        "resistances": resistances,
        "pivots": asdict(pivots) if pivots else None,
    }


def _is_time_ascending(df: pd.DataFrame) -> bool:
    open_time = df.get("open_time")
    if open_time is None:
        return True
    return bool(pd.Series(open_time).is_monotonic_increasing)
