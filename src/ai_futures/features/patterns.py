"""Candlestick pattern tests on body/shadow geometry."""

from __future__ import annotations

from typing import NamedTuple

import pandas as pd  # type: ignore[import-untyped]


class Candle(NamedTuple):
    open: float
    high: float
    low: float
    close: float

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def upper_shadow(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_shadow(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def is_green(self) -> bool:
        return self.close > self.open

    @property
    def is_red(self) -> bool:
        return self.close < self.open


def is_hammer(c: Candle) -> bool:
    if c.range == 0:
        return False
    return c.lower_shadow > c.body * 2 and c.upper_shadow < c.body * 0.5 and c.body / c.range < 0.3


def is_inverted_hammer(c: Candle) -> bool:
    if c.range == 0:
        return False
    return c.upper_shadow > c.body * 2 and c.lower_shadow < c.body * 0.5 and c.body / c.range < 0.3


def is_shooting_star(c: Candle) -> bool:
    if c.range == 0:
        return False
    return (
        c.upper_shadow > c.body * 2
        and c.lower_shadow < c.body * 0.3
        and c.body / c.range < 0.3
        and c.is_red
    )


def is_doji(c: Candle) -> bool:
    if c.range == 0:
        return False
    return c.body / c.range < 0.1


def is_bullish_engulfing(prev: Candle, curr: Candle) -> bool:
    return prev.is_red and curr.is_green and curr.open < prev.close and curr.close > prev.open


def is_bearish_engulfing(prev: Candle, curr: Candle) -> bool:
    return prev.is_green and curr.is_red and curr.open > prev.close and curr.close < prev.open


def _consistent(moves: list[float]) -> bool:
    avg = sum(moves) / len(moves)
    return all(abs(move - avg) < avg * 0.5 for move in moves)


def is_three_white_soldiers(k1: Candle, k2: Candle, k3: Candle) -> bool:
    if not (k1.is_green and k2.is_green and k3.is_green):
        return False
    if not (k2.close > k1.close and k3.close > k2.close):
        return False
    return _consistent([(k.close - k.open) / k.open for k in (k1, k2, k3)])


def is_three_black_crows(k1: Candle, k2: Candle, k3: Candle) -> bool:
    if not (k1.is_red and k2.is_red and k3.is_red):
        return False
    if not (k2.close < k1.close and k3.close < k2.close):
        return False
    return _consistent([(k.open - k.close) / k.open for k in (k1, k2, k3)])


def identify_patterns(df: pd.DataFrame) -> list[str]:
    """Label the latest bar. Several patterns can fire on the same bar."""
    if len(df) < 3:
        return []
    k1, k2, k3 = (
        Candle(float(row.open), float(row.high), float(row.low), float(row.close))
        for row in df.iloc[-3:].itertuples(index=False)
    )
    patterns: list[str] = []
    if is_hammer(k3):
        patterns.append("hammer")
    if is_inverted_hammer(k3):
        patterns.append("inverted_hammer")
    if is_bullish_engulfing(k2, k3):
        patterns.append("bullish_engulfing")
    if is_bearish_engulfing(k2, k3):
        patterns.append("bearish_engulfing")
    if is_doji(k3):
        patterns.append("doji")
    if is_shooting_star(k3):
        patterns.append("shooting_star")
    if is_three_white_soldiers(k1, k2, k3):
        patterns.append("three_white_soldiers")
    if is_three_black_crows(k1, k2, k3):
        patterns.append("three_black_crows")
    return patterns
