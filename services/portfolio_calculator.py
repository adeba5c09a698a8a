"""
Read-time enrichment of stored positions with prices.

Value rules, in order:
  1. cash:          amount * FX rate of the position's currency, no 24h change
  2. custom price:  user override keyed by lowercase symbol, no 24h change
  3. quote:         merged quote under the position's price key
  4. stablecoin:    $1 when no quote exists
  5. otherwise:     0
Debt positions negate both value and 24h change.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from schemas.position import EnrichedPosition, PositionOut
from schemas.price import PriceQuote
from services.classifier import PositionClassifier, default_classifier
from utils.common_helpers import to_float

logger = logging.getLogger(__name__)

# USD value of one unit; used when no live rate is stored.
FALLBACK_FX_RATES: Dict[str, float] = {
    "USD": 1.0,
    "EUR": 1.19,
    "GBP": 1.37,
    "CHF": 1.30,
    "JPY": 0.0065,
    "CAD": 0.73,
    "AUD": 0.69,
    "NZD": 0.60,
    "SEK": 0.11,
    "NOK": 0.10,
    "DKK": 0.16,
    "PLN": 0.28,
    "CZK": 0.048,
    "HKD": 0.13,
    "SGD": 0.78,
    "CNY": 0.14,
}

# symbol -> market-data coin id for positions without an explicit price key
DEFAULT_COIN_IDS: Dict[str, str] = {
    "btc": "bitcoin",
    "eth": "ethereum",
    "sol": "solana",
    "usdc": "usd-coin",
    "usdt": "tether",
    "dai": "dai",
    "bnb": "binancecoin",
    "arb": "arbitrum",
    "op": "optimism",
    "avax": "avalanche-2",
    "matic": "matic-network",
    "link": "chainlink",
    "uni": "uniswap",
    "aave": "aave",
    "syrup": "maple-finance",
    "hype": "hyperliquid",
    "ena": "ethena",
    "usde": "ethena-usde",
    "pendle": "pendle",
    "doge": "dogecoin",
}

_CASH_CODE_RE = re.compile(r"^CASH_([A-Z]{3})(?:_|$)")
_CODE_ID_RE = re.compile(r"^([A-Z]{3})_\w+$")


def extract_currency_code(symbol: str) -> str:
    """CASH_CHF_1769 -> CHF, PLN_1234 -> PLN, usd -> USD; unmatched symbols come back uppercased."""
    upper = (symbol or "").strip().upper()
    m = _CASH_CODE_RE.match(upper)
    if m:
        return m.group(1)
    m = _CODE_ID_RE.match(upper)
    if m:
        return m.group(1)
    return upper


def get_price_key(position: Any, coin_ids: Mapping[str, str] = DEFAULT_COIN_IDS,
                  classifier: PositionClassifier = default_classifier) -> str:
    if getattr(position, "price_key", None):
        return position.price_key
    symbol = (position.symbol or "").lower()
    if classifier.effective_asset_class(position) == "crypto":
        return coin_ids.get(symbol, symbol)
    return symbol


def fx_rate_for(currency: str, fx_rates: Optional[Mapping[str, float]] = None) -> float:
    code = currency.upper()
    if fx_rates and fx_rates.get(code):
        return float(fx_rates[code])
    return FALLBACK_FX_RATES.get(code, 1.0)


def calculate_position_value(
    position: Any,
    prices: Mapping[str, PriceQuote],
    *,
    custom_prices: Optional[Mapping[str, float]] = None,
    fx_rates: Optional[Mapping[str, float]] = None,
    coin_ids: Mapping[str, str] = DEFAULT_COIN_IDS,
    classifier: PositionClassifier = default_classifier,
) -> EnrichedPosition:
    base = PositionOut.model_validate(position)
    classification = classifier.classify(position)
    amount = to_float(position.amount)
    is_debt = classification.is_debt
    sign = -1.0 if is_debt else 1.0

    key_used: Optional[str] = None
    has_custom = False
    change_per_unit = 0.0
    change_pct = 0.0

    if classification.asset_class == "cash":
        currency = extract_currency_code(position.symbol)
        price = fx_rate_for(currency, fx_rates)
    else:
        custom = (custom_prices or {}).get((position.symbol or "").lower())
        if custom is not None:
            price = float(custom)
            has_custom = True
        else:
            key_used = get_price_key(position, coin_ids, classifier)
            quote = prices.get(key_used)
            if quote is not None and quote.price:
                price = quote.price
                change_per_unit = quote.change_24h
                change_pct = quote.change_percent_24h
            elif classifier.is_stablecoin(position.symbol):
                price = 1.0
            else:
                price = 0.0

    return EnrichedPosition(
        **base.model_dump(exclude={"is_debt"}),
        is_debt=is_debt,
        effective_asset_class=classification.asset_class,
        sub_category=classification.sub_category,
        current_price=price,
        value=sign * amount * price,
        change_24h=sign * amount * change_per_unit,
        change_percent_24h=change_pct,
        has_custom_price=has_custom,
        price_key_used=key_used,
    )


def _sort_key(p: EnrichedPosition):
    return (p.is_debt, -abs(p.value))


def calculate_all_positions_with_prices(
    positions: Iterable[Any],
    prices: Mapping[str, PriceQuote],
    *,
    custom_prices: Optional[Mapping[str, float]] = None,
    fx_rates: Optional[Mapping[str, float]] = None,
    coin_ids: Mapping[str, str] = DEFAULT_COIN_IDS,
    classifier: PositionClassifier = default_classifier,
) -> List[EnrichedPosition]:
    """Enrich, set allocation against gross positive assets, sort assets first by size."""
    enriched = [
        calculate_position_value(
            p, prices,
            custom_prices=custom_prices, fx_rates=fx_rates,
            coin_ids=coin_ids, classifier=classifier,
        )
        for p in positions
    ]
    gross = sum(p.value for p in enriched if p.value > 0)
    for p in enriched:
        p.allocation = (p.value / gross * 100.0) if gross > 0 else 0.0
    enriched.sort(key=_sort_key)
    missing = sum(1 for p in enriched if p.current_price == 0 and p.amount)
    if missing:
        logger.debug("positions_without_price count=%d", missing)
    return enriched


def filter_dust_positions(positions: Sequence[Any], hide_dust: bool, threshold: float = 100.0) -> List[Any]:
    """Drop positions whose absolute value is under the threshold; big debts stay."""
    if not hide_dust:
        return list(positions)
    return [p for p in positions if abs(p.value) >= threshold]
