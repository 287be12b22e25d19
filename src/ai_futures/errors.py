"""Error taxonomy for the decision cycle."""

from __future__ import annotations

from typing import Any


class TradingError(Exception):
    """Base error for the trading agent."""


class ExchangeError(TradingError):
    """Raised when a venue call fails."""


class StoreError(TradingError):
    """Raised when the durable store cannot be read or written."""


class DecisionRejectedError(TradingError):
    """A single decision was refused before reaching the exchange."""


class DuplicatePositionError(DecisionRejectedError):
    """An open was requested for a (symbol, side) that is already live."""

    def __init__(self, symbol: str, side: str) -> None:
        super().__init__(f"duplicate position: {symbol} {side} is already open")
        self.symbol = symbol
        self.side = side


class PositionNotFoundError(DecisionRejectedError):
    """A close was requested for a position that is not live."""

    def __init__(self, symbol: str, side: str) -> None:
        super().__init__(f"position not found (possibly auto-closed): {symbol} {side}")
        self.symbol = symbol
        self.side = side


class DecisionProviderError(TradingError):
    """The reasoning provider call failed.

    ``partial`` keeps whatever the provider produced (prompts, raw text, trace)
    so the cycle record can still be persisted for postmortem.
    """

    def __init__(self, message: str, partial: Any | None = None) -> None:
        super().__init__(message)
        self.partial = partial
