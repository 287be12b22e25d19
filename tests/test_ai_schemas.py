import pytest
from pydantic import ValidationError

from ai_futures.ai.schemas import Decision, parse_decisions


def test_parse_decisions_splits_cot_and_array() -> None:
    raw = """
    BTC is extended [see 4h RSI], ETH looks weak.
    ```json
    [
      {"symbol": "btcusdt", "action": "close_long", "reasoning": "take profit"},
      {"symbol": "ETHUSDT", "action": "open_short", "leverage": 5,
       "position_size_usd": 200, "stop_loss": 2100, "take_profit": 1800,
       "confidence": 80, "note": "ignored"}
    ]
    ```
    """
    cot, decisions = parse_decisions(raw)
    assert cot.startswith("BTC is extended [see 4h RSI]")
    assert "```" not in cot
    assert [d.action for d in decisions] == ["close_long", "open_short"]
    assert decisions[0].symbol == "BTCUSDT"
    assert decisions[1].side == "short"
    assert decisions[1].is_open


def test_parse_decisions_accepts_empty_array() -> None:
    cot, decisions = parse_decisions("Nothing to do today. []")
    assert cot == "Nothing to do today."
    assert decisions == []


def test_brackets_inside_strings_do_not_end_the_array() -> None:
    raw = '[{"symbol": "SOLUSDT", "action": "hold", "reasoning": "range ] bound"}]'
    _, decisions = parse_decisions(raw)
    assert decisions[0].reasoning == "range ] bound"


@pytest.mark.parametrize(
    "raw",
    [
        "no structured output at all",
        '[{"symbol": "BTCUSDT", "action": "buy"}]',
        '[{"symbol": "BTCUSDT", "action": "open_long", "leverage": 3}]',
        '[{"symbol": "BTCUSDT", "action": "hold"}',
        '["BTCUSDT"]',
    ],
)
def test_invalid_responses_raise(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_decisions(raw)


def test_open_long_requires_stop_below_take_profit() -> None:
    with pytest.raises(ValidationError):
        Decision(
            symbol="BTCUSDT",
            action="open_long",
            leverage=3,
            position_size_usd=100,
            stop_loss=52_000,
            take_profit=50_000,
        )


def test_hold_needs_no_sizing() -> None:
    decision = Decision(symbol="BTCUSDT", action="hold")
    assert not decision.is_open
    assert not decision.is_close
    assert decision.side is None
