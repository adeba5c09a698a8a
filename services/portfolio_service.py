# services/portfolio_service.py
from __future__ import annotations

from typing import Dict, List, Sequence

from sqlalchemy.orm import Session

from config import settings
from models.position import Position
from schemas.position import EnrichedPosition
from schemas.price import PriceMap
from services.portfolio_calculator import (
    DEFAULT_COIN_IDS,
    calculate_all_positions_with_prices,
    filter_dust_positions,
)
from services.portfolio_store import load_positions
from services.price_merge import backfill_changes, merge_prices
from services.quote_service import custom_price_map, load_fx_rates, load_quotes_by_source, ordered_sources


def _change_aliases(positions: Sequence[Position]) -> Dict[str, str]:
    # wallet price key -> market coin id of the same symbol
    aliases: Dict[str, str] = {}
    for p in positions:
        if not p.price_key:
            continue
        coin_id = DEFAULT_COIN_IDS.get((p.symbol or "").lower())
        if coin_id and coin_id != p.price_key:
            aliases[p.price_key] = coin_id
    return aliases


def resolve_position_prices(db: Session, positions: Sequence[Position]) -> PriceMap:
    by_source = load_quotes_by_source(db)
    merged = merge_prices(ordered_sources(by_source))
    return backfill_changes(merged, by_source.get("market") or {}, _change_aliases(positions))


def get_enriched_positions(db: Session, hide_dust: bool = False) -> List[EnrichedPosition]:
    positions = load_positions(db)
    enriched = calculate_all_positions_with_prices(
        positions,
        resolve_position_prices(db, positions),
        custom_prices=custom_price_map(db),
        fx_rates=load_fx_rates(db),
    )
    return filter_dust_positions(enriched, hide_dust, settings.DUST_THRESHOLD)
