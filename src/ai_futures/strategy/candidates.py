"""Candidate symbol selection and per-symbol indicator snapshots."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

import pandas as pd  # type: ignore[import-untyped]

from ai_futures.ai.schemas import CandidateCoin
from ai_futures.config import Settings
from ai_futures.features.indicators import compute_indicators
from ai_futures.types import Position
from ai_futures.utils.logging import get_logger


class MarketDataSource(Protocol):
    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame: ...

    def fetch_funding_rate(self, symbol: str) -> float | None: ...

    def fetch_open_interest(self, symbol: str) -> float | None: ...


def candidate_symbols(position_symbols: Iterable[str], coin_pool: Iterable[str]) -> list[str]:
    """Held symbols first, then the pool, without duplicates."""
    return list(dict.fromkeys([*position_symbols, *coin_pool]))


def build_candidates(
    positions: Sequence[Position],
    settings: Settings,
    data: MarketDataSource,
) -> list[CandidateCoin]:
    """Compute indicators per candidate. A failing symbol is skipped, not fatal."""
    logger = get_logger("ai_futures.strategy.candidates")
    held = {position.symbol for position in positions}
    candidates: list[CandidateCoin] = []

    for symbol in candidate_symbols([p.symbol for p in positions], settings.coin_pool):
        is_position = symbol in held
        try:
            df_intraday = data.fetch_ohlcv(
                symbol, settings.intraday_interval, settings.intraday_limit
            )
            df_trend = data.fetch_ohlcv(symbol, settings.trend_interval, settings.trend_limit)
            indicators = compute_indicators(df_intraday, df_trend)
        except Exception as exc:  # noqa: BLE001 - one bad symbol must not abort the cycle.
            logger.warning("candidate_indicators_failed", symbol=symbol, error=str(exc))
            continue

        open_interest = data.fetch_open_interest(symbol)
        if not is_position and open_interest is not None:
            oi_value = open_interest * float(indicators["price"])
            if oi_value < settings.min_open_interest_usd:
                logger.info(
                    "candidate_skipped_low_liquidity",
                    symbol=symbol,
                    open_interest_usd=round(oi_value, 2),
                    minimum=settings.min_open_interest_usd,
                )
                continue

        candidates.append(
            CandidateCoin(
                symbol=symbol,
                is_position=is_position,
                funding_rate=data.fetch_funding_rate(symbol),
                open_interest=open_interest,
                indicators=indicators,
            )
        )
    return candidates
