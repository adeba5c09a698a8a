"""
Persistence for per-source price quotes, user price overrides and FX rates.

Quotes stay split by source on disk; `resolve_prices` merges them at read
time in `SOURCE_PRIORITY` order (later sources win on price).
"""
from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from models.custom_price import CustomPrice
from models.fx_rate import FxRate
from models.price_quote import PriceQuote as PriceQuoteRow
from schemas.price import PriceMap, PriceQuote
from services.portfolio_store import atomic
from services.price_merge import merge_prices
from utils.common_helpers import utcnow

logger = logging.getLogger(__name__)

# Lowest priority first: market data prices everything and carries the 24h
# change, wallet providers price their own tokens more accurately, perp
# venues quote their own contracts.
SOURCE_PRIORITY: Sequence[str] = ("market", "wallet", "perps")


def write_quotes(db: Session, source: str, quotes: Mapping[str, PriceQuote]) -> int:
    """Upsert a source's quotes without committing. Keys the source did not report keep their last quote."""
    if not quotes:
        return 0
    now = utcnow()
    existing = {
        row.key: row
        for row in db.query(PriceQuoteRow)
        .filter(PriceQuoteRow.source == source, PriceQuoteRow.key.in_(list(quotes)))
        .all()
    }
    for key, quote in quotes.items():
        row = existing.get(key)
        if row is None:
            row = PriceQuoteRow(source=source, key=key)
            db.add(row)
        row.symbol = quote.symbol
        row.price = quote.price
        row.change_24h = quote.change_24h
        row.change_percent_24h = quote.change_percent_24h
        row.last_updated = quote.last_updated or now
    # later writers in the same transaction must see these rows
    db.flush()
    logger.info("quotes_staged source=%s count=%d", source, len(quotes))
    return len(quotes)


def load_quotes_by_source(db: Session) -> Dict[str, PriceMap]:
    out: Dict[str, PriceMap] = {}
    for row in db.query(PriceQuoteRow).all():
        out.setdefault(row.source, {})[row.key] = PriceQuote.model_validate(row)
    return out


def ordered_sources(by_source: Mapping[str, PriceMap]) -> List[PriceMap]:
    """Known sources in priority order, then any others alphabetically."""
    known = [by_source.get(name) or {} for name in SOURCE_PRIORITY]
    extra = [by_source[name] for name in sorted(by_source) if name not in SOURCE_PRIORITY]
    return [*extra, *known]


def resolve_prices(db: Session) -> PriceMap:
    return merge_prices(ordered_sources(load_quotes_by_source(db)))


# ---------- custom prices ----------
def list_custom_prices(db: Session) -> List[CustomPrice]:
    return db.query(CustomPrice).order_by(CustomPrice.symbol.asc()).all()


def custom_price_map(db: Session) -> Dict[str, float]:
    return {row.symbol: row.price for row in list_custom_prices(db)}


def set_custom_price(db: Session, symbol: str, price: float, note: Optional[str] = None) -> CustomPrice:
    key = (symbol or "").strip().lower()
    if not key:
        raise ValueError("symbol is required")
    with atomic(db):
        row = db.get(CustomPrice, key)
        if row is None:
            row = CustomPrice(symbol=key, price=price)
            db.add(row)
        row.price = price
        row.note = note
        row.set_at = utcnow()
    logger.info("custom_price_set symbol=%s", key)
    return row


def remove_custom_price(db: Session, symbol: str) -> bool:
    row = db.get(CustomPrice, (symbol or "").strip().lower())
    if row is None:
        return False
    with atomic(db):
        db.delete(row)
    return True


# ---------- FX ----------
def write_fx_rates(db: Session, rates: Mapping[str, float]) -> int:
    now = utcnow()
    for code, rate in rates.items():
        if not rate or rate <= 0:
            continue
        row = db.get(FxRate, code.upper())
        if row is None:
            row = FxRate(currency=code.upper(), rate_to_usd=rate)
            db.add(row)
        row.rate_to_usd = rate
        row.fetched_at = now
    return len(rates)


def load_fx_rates(db: Session) -> Dict[str, float]:
    return {row.currency: row.rate_to_usd for row in db.query(FxRate).all()}
