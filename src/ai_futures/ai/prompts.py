"""Prompt text for the decision and learning-summary calls."""

from __future__ import annotations

from ai_futures.ai.schemas import TradingContext

DECISION_SYSTEM_PROMPT = """\
You are an autonomous USDT-margined futures trader.

Rules:
- At most {max_positions} concurrent positions; never open a (symbol, side) that is already open.
- Leverage caps: BTC/ETH <= {btc_eth_leverage}x, other symbols <= {altcoin_leverage}x.
- Every open must carry a stop_loss and a take_profit on the correct side of the price.
- Close losing or invalidated positions before proposing new ones.

Output format:
First write your reasoning in plain text. Then output ONE JSON array of decisions:
[{{"symbol": "BTCUSDT", "action": "open_long|open_short|close_long|close_short|hold|wait",
  "leverage": 5, "position_size_usd": 200, "stop_loss": 0, "take_profit": 0,
  "confidence": 0-100, "risk_usd": 0, "reasoning": "..."}}]
Output nothing after the array.
"""

LEARNING_SYSTEM_PROMPT = """\
You review a futures trader's recent closed trades. Summarize in under 300 words
what worked, what failed (premature exits, wrong direction, poor stops) and
three concrete rules to apply in the next cycles. Plain text only.
"""


def build_decision_system_prompt(context: TradingContext) -> str:
    return DECISION_SYSTEM_PROMPT.format(
        max_positions=context.max_positions,
        btc_eth_leverage=context.btc_eth_leverage,
        altcoin_leverage=context.altcoin_leverage,
    )


def build_decision_user_prompt(context: TradingContext) -> str:
    parts = [
        f"Time: {context.current_time} | runtime {context.runtime_minutes} min "
        f"| cycle #{context.call_count}",
        f"Account: {context.account.model_dump_json()}",
        "Positions: "
        + ("; ".join(p.model_dump_json() for p in context.positions) or "none"),
        "Candidates:",
        *(coin.model_dump_json() for coin in context.candidate_coins),
    ]
    if context.performance:
        parts.append(f"Recent performance: {context.performance}")
    if context.learning_summary:
        parts.append(f"Lessons from recent trades:\n{context.learning_summary}")
    return "\n".join(parts)


def build_learning_user_prompt(lines: list[str], win_rate: float, avg_pnl: float) -> str:
    header = f"{len(lines)} trades, win rate {win_rate:.1f}%, average P&L {avg_pnl:.2f} USDT"
    return "\n".join([header, *lines])
