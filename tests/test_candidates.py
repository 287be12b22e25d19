from __future__ import annotations

from ai_futures.config import Settings
from ai_futures.strategy.candidates import build_candidates, candidate_symbols
from ai_futures.types import Position


def _held(symbol: str) -> Position:
    return Position(
        symbol=symbol, side="long", entry_price=100.0, mark_price=100.0, quantity=1.0, leverage=3
    )


def test_candidate_symbols_put_held_first_without_duplicates() -> None:
    assert candidate_symbols(["SOLUSDT", "BTCUSDT"], ["BTCUSDT", "ETHUSDT"]) == [
        "SOLUSDT",
        "BTCUSDT",
        "ETHUSDT",
    ]


def test_build_candidates_marks_held_symbols(settings: Settings, market_data) -> None:
    candidates = build_candidates([_held("SOLUSDT")], settings, market_data)
    assert [c.symbol for c in candidates] == ["SOLUSDT", "BTCUSDT", "ETHUSDT"]
    assert candidates[0].is_position
    assert not candidates[1].is_position
    assert candidates[1].funding_rate == 0.0001
    assert candidates[1].indicators["price"] == 159.0


def test_low_open_interest_skips_only_unheld_symbols(settings: Settings, market_data) -> None:
    market_data.open_interest = {"ETHUSDT": 1.0, "SOLUSDT": 1.0}
    candidates = build_candidates([_held("SOLUSDT")], settings, market_data)
    assert [c.symbol for c in candidates] == ["SOLUSDT", "BTCUSDT"]


def test_unknown_open_interest_is_not_filtered(settings: Settings, market_data) -> None:
    market_data.open_interest = {"BTCUSDT": None}
    candidates = build_candidates([], settings, market_data)
    assert [c.symbol for c in candidates] == ["BTCUSDT", "ETHUSDT"]
    assert candidates[0].open_interest is None


def test_failing_symbol_is_skipped(settings: Settings, market_data) -> None:
    market_data.broken = {"BTCUSDT"}
    candidates = build_candidates([], settings, market_data)
    assert [c.symbol for c in candidates] == ["ETHUSDT"]
