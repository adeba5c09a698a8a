"""
Price merge resolver.

Sources are partial price maps keyed by provider lookup keys (a coin id, a
wallet-provider key, a lowercase ticker). They are merged left to right:

- price: the last source that has the key wins;
- 24h change: taken from the last source that reported a non-zero change
  for the key, even if a later source replaced the price.

Typical order is [market_data, wallet_provider]: the wallet provider prices
the tokens it holds more accurately, market data carries the 24h change and
prices everything else. Keys are never renamed here.
"""
from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from schemas.price import PriceMap, PriceQuote

logger = logging.getLogger(__name__)


def merge_prices(sources: Iterable[Optional[Mapping[str, PriceQuote]]]) -> PriceMap:
    merged: PriceMap = {}
    for source in sources:
        if not source:
            # unavailable provider contributes nothing
            continue
        for key, quote in source.items():
            prev = merged.get(key)
            if prev is None or quote.has_change or not prev.has_change:
                merged[key] = quote.model_copy()
                continue
            merged[key] = quote.model_copy(
                update={
                    "change_24h": prev.change_24h,
                    "change_percent_24h": prev.change_percent_24h,
                }
            )
    return merged


def backfill_changes(
    merged: Mapping[str, PriceQuote],
    market: Mapping[str, PriceQuote],
    key_aliases: Mapping[str, str],
) -> PriceMap:
    """
    Copy 24h change onto quotes that have none, from the market quote stored
    under an alias key (e.g. a wallet key "arb:0x912c..." -> coin id "arbitrum").
    Prices are left alone.
    """
    out: PriceMap = dict(merged)
    filled = 0
    for key, quote in merged.items():
        if quote.has_change:
            continue
        alias = key_aliases.get(key)
        ref = market.get(alias) if alias else None
        if ref is None or not ref.has_change:
            continue
        out[key] = quote.model_copy(
            update={
                "change_24h": ref.change_24h,
                "change_percent_24h": ref.change_percent_24h,
            }
        )
        filled += 1
    if filled:
        logger.debug("price_change_backfill filled=%d", filled)
    return out
