"""Decision-provider input/output schemas and strict parsing helpers."""

from __future__ import annotations

import json
import re
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

ActionLiteral = Literal["open_long", "open_short", "close_long", "close_short", "hold", "wait"]

_ARRAY_START = re.compile(r"\[\s*[\{\]]")


class AccountInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_equity: float
    available_balance: float
    total_pnl: float
    total_pnl_pct: float
    margin_used: float
    margin_used_pct: float
    position_count: int


class PositionInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    symbol: str
    side: Literal["long", "short"]
    entry_price: float
    mark_price: float
    quantity: float
    leverage: int
    unrealized_pnl: float
    unrealized_pnl_pct: float
    liquidation_price: float
    margin_used: float
    holding_minutes: int | None = None


class CandidateCoin(BaseModel):
    model_config = ConfigDict(extra="forbid")

    symbol: str
    is_position: bool = False
    funding_rate: float | None = None
    open_interest: float | None = None
    indicators: dict[str, Any]


class TradingContext(BaseModel):
    """Everything the provider sees for one cycle."""

    model_config = ConfigDict(extra="forbid")

    current_time: str
    runtime_minutes: int
    call_count: int
    account: AccountInfo
    positions: list[PositionInfo] = Field(default_factory=list)
    candidate_coins: list[CandidateCoin] = Field(default_factory=list)
    performance: dict[str, Any] | None = None
    learning_summary: str | None = None
    btc_eth_leverage: int
    altcoin_leverage: int
    max_positions: int


class Decision(BaseModel):
    """One structured trading decision."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    symbol: str = Field(pattern=r"^[A-Z0-9]+$")
    action: ActionLiteral
    leverage: int = 0
    position_size_usd: float = 0.0
    stop_loss: float = 0.0
    take_profit: float = 0.0
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    risk_usd: float = 0.0
    reasoning: str = ""

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, v: object) -> object:
        return v.strip().upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def validate_open(self) -> "Decision":
        if not self.is_open:
            return self
        if self.leverage < 1:
            raise ValueError("open decision needs leverage >= 1")
        if self.position_size_usd <= 0:
            raise ValueError("open decision needs a positive position_size_usd")
        if self.stop_loss < 0 or self.take_profit < 0:
            raise ValueError("stop_loss/take_profit must not be negative")
        if self.stop_loss > 0 and self.take_profit > 0:
            if self.action == "open_long" and self.stop_loss >= self.take_profit:
                raise ValueError("long stop_loss must be below take_profit")
            if self.action == "open_short" and self.stop_loss <= self.take_profit:
                raise ValueError("short stop_loss must be above take_profit")
        return self

    @property
    def is_open(self) -> bool:
        return self.action in ("open_long", "open_short")

    @property
    def is_close(self) -> bool:
        return self.action in ("close_long", "close_short")

    @property
    def side(self) -> Literal["long", "short"] | None:
        if self.action.endswith("_long"):
            return "long"
        if self.action.endswith("_short"):
            return "short"
        return None


class FullDecision(BaseModel):
    """Provider output plus the prompts that produced it."""

    system_prompt: str = ""
    user_prompt: str = ""
    raw_response: str = ""
    cot_trace: str = ""
    decisions: list[Decision] = Field(default_factory=list)


def split_response(text: str) -> tuple[str, str]:
    """Split provider text into (CoT trace, JSON array text)."""
    match = _ARRAY_START.search(text)
    if match is None:
        raise ValueError("model_response_has_no_decision_array")
    start = match.start()
    cot = text[:start].strip()
    if cot.endswith("```json"):
        cot = cot[: -len("```json")].rstrip()
    elif cot.endswith("```"):
        cot = cot[:-3].rstrip()

    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return cot, text[start : idx + 1]
    raise ValueError("model_response_array_unterminated")


def parse_decisions(text: str) -> tuple[str, list[Decision]]:
    """Parse provider text. Any malformed decision rejects the whole response."""
    cot, array_text = split_response(text)
    try:
        decoded = json.loads(array_text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"model_response_invalid_json: {exc.msg}") from exc
    if not isinstance(decoded, list):
        raise ValueError("model_response_json_not_array")

    decisions: list[Decision] = []
    for idx, item in enumerate(decoded):
        if not isinstance(item, dict):
            raise ValueError(f"decision_{idx}_not_object")
        try:
            decisions.append(Decision.model_validate(item))
        except ValidationError as exc:
            raise ValueError(f"decision_{idx}_invalid: {exc.errors()[0]['msg']}") from exc
    return cot, decisions
