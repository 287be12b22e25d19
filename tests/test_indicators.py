from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

import pandas as pd
import pytest

from ai_futures.features.indicators import (
    atr,
    bollinger_bands,
    cci,
    compute_indicators,
    ema,
    historical_volatility,
    macd,
    obv,
    pivot_points,
    rsi,
    stochastic,
    support_resistance,
    vwap,
    vwma,
    williams_r,
)


def _frame(closes: list[float], *, up: float = 1.5, down: float = 0.5) -> pd.DataFrame:
    start = datetime(2025, 1, 1, tzinfo=UTC)
    return pd.DataFrame(
        {
            "open_time": [start + timedelta(minutes=3 * i) for i in range(len(closes))],
            "open": closes,
            "high": [c + up for c in closes],
            "low": [c - down for c in closes],
            "close": closes,
            "volume": [10.0 for _ in closes],
        }
    )


@pytest.fixture
def linear() -> pd.DataFrame:
    return _frame([100.0 + i for i in range(30)])


def test_ema_macd_atr_match_reference_values(linear: pd.DataFrame) -> None:
    assert ema(linear, 20) == pytest.approx(119.5, rel=1e-6)
    assert macd(linear) == pytest.approx(7.0, rel=1e-6)
    assert atr(linear, 14) == pytest.approx(2.5, rel=1e-6)


def test_rsi_matches_wilder_reference() -> None:
    closes = [100, 102, 101, 103, 102, 104, 103, 105, 104, 106, 105, 107, 106, 108, 107]
    closes += [107] * 15
    assert rsi(_frame([float(c) for c in closes]), 14) == pytest.approx(200 / 3, rel=1e-6)


def test_rsi_is_100_without_losses(linear: pd.DataFrame) -> None:
    assert rsi(linear, 14) == 100.0


def test_oscillators_on_linear_series(linear: pd.DataFrame) -> None:
    assert williams_r(linear) == pytest.approx(-10.0)
    stoch = stochastic(linear)
    assert stoch is not None
    assert stoch.k == pytest.approx(90.0)
    assert stoch.d == pytest.approx(90.0)
    assert stoch.signal == "overbought"
    assert cci(linear) == pytest.approx(126.6666667, rel=1e-6)
    assert obv(linear) == pytest.approx(290.0)


def test_bollinger_uses_population_stdev(linear: pd.DataFrame) -> None:
    bands = bollinger_bands(linear)
    assert bands is not None
    std = math.sqrt(33.25)
    assert bands.middle == pytest.approx(119.5)
    assert bands.upper == pytest.approx(119.5 + 2 * std)
    assert bands.lower == pytest.approx(119.5 - 2 * std)
    assert 0.5 < bands.position < 1.0
    assert bands.width_pct == pytest.approx(4 * std / 119.5 * 100)


def test_volume_weighted_averages_with_constant_volume(linear: pd.DataFrame) -> None:
    assert vwma(linear) == pytest.approx(119.5)
    assert vwap(linear) == pytest.approx(114.5 + 1 / 3)


def test_short_history_returns_zero_instead_of_failing() -> None:
    short = _frame([100.0, 101.0, 102.0])
    assert ema(short, 20) == 0.0
    assert macd(short) == 0.0
    assert rsi(short, 14) == 0.0
    assert atr(short, 14) == 0.0
    assert cci(short) == 0.0
    assert historical_volatility(short) == 0.0
    assert bollinger_bands(short) is None
    assert stochastic(short) is None
    assert support_resistance(short) == ([], [])


def test_historical_volatility_of_constant_growth_is_zero() -> None:
    closes = [100.0 * 1.01**i for i in range(30)]
    assert historical_volatility(_frame(closes)) == pytest.approx(0.0, abs=1e-6)


def test_support_resistance_finds_strict_local_extrema() -> None:
    closes = [100.0, 101.0, 102.0, 101.0] * 6 + [100.0]
    supports, resistances = support_resistance(_frame(closes, up=1.0, down=1.0))
    assert resistances and all(level == 103.0 for level in resistances)
    assert supports and all(level == 99.0 for level in supports)
    assert supports == sorted(supports)


def test_pivot_points_from_latest_bar() -> None:
    df = pd.DataFrame(
        {"open": [9.0], "high": [12.0], "low": [6.0], "close": [9.0], "volume": [1.0]}
    )
    pivots = pivot_points(df)
    assert pivots is not None
    assert pivots.pivot == pytest.approx(9.0)
    assert pivots.r1 == pytest.approx(12.0)
    assert pivots.s1 == pytest.approx(6.0)
    assert pivots.r2 == pytest.approx(15.0)
    assert pivots.s2 == pytest.approx(3.0)
    assert pivots.r3 == pytest.approx(18.0)
    assert pivots.s3 == pytest.approx(0.0)


def test_compute_indicators_snapshot(linear: pd.DataFrame) -> None:
    snapshot = compute_indicators(linear, linear)
    assert snapshot["price"] == 129.0
    assert snapshot["ema20"] == pytest.approx(119.5)
    assert snapshot["trend"]["atr14"] == pytest.approx(2.5)
    assert snapshot["stochastic"]["k"] == pytest.approx(90.0)
    assert isinstance(snapshot["patterns"], list)


def test_compute_indicators_rejects_bad_input(linear: pd.DataFrame) -> None:
    with pytest.raises(ValueError, match="input_ohlcv_empty"):
        compute_indicators(linear.iloc[0:0], linear)
    with pytest.raises(ValueError, match="not_ascending"):
        compute_indicators(linear.iloc[::-1].reset_index(drop=True), linear)
