"""
Folds enriched positions into the read models served by the portfolio routes.

Perp trades carry notional exposure, not owned value: they are left out of
net worth and asset-class totals but counted in exposure and perps metrics.
Margin deposits on perp venues are owned value and stay in net worth.
"""
from __future__ import annotations

import heapq
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Sequence, Tuple

from config import settings
from schemas.portfolio import (
    AssetClassValue,
    CashBreakdown,
    CashBucket,
    ChartSlice,
    ConcentrationMetrics,
    ExchangeStats,
    ExposureMetrics,
    ExposureOverview,
    InstitutionCash,
    PerpsMetrics,
    PerpsOverview,
    PortfolioSummary,
    SpotDerivatives,
)
from schemas.position import EnrichedPosition
from services.account_service import extract_cash_account_name
from services.classifier import PositionClassifier, default_classifier
from services.portfolio_calculator import extract_currency_code
from utils.common_helpers import pct, safe_div

logger = logging.getLogger(__name__)

CASH_LIKE_SUBCATEGORIES = ("stablecoins", "perp_margin")


def _is_notional(p: EnrichedPosition) -> bool:
    return p.sub_category == "perp_trade"


def _owned(positions: Iterable[EnrichedPosition]) -> List[EnrichedPosition]:
    return [p for p in positions if not _is_notional(p)]


def _gross_and_debts(positions: Iterable[EnrichedPosition]) -> Tuple[float, float]:
    gross = 0.0
    debts = 0.0
    for p in positions:
        if p.value > 0:
            gross += p.value
        elif p.value < 0:
            debts += -p.value
    return gross, debts


def calculate_net_worth(positions: Sequence[EnrichedPosition]) -> float:
    return sum(p.value for p in _owned(positions))


def calculate_portfolio_summary(
    positions: Sequence[EnrichedPosition],
    top_n: int = settings.TOP_HOLDINGS_LIMIT,
) -> PortfolioSummary:
    owned = _owned(positions)
    gross, debts = _gross_and_debts(owned)
    total = gross - debts

    change = sum(p.change_24h for p in owned)
    previous = total - change
    change_pct = pct(change, previous) if previous > 0 else 0.0

    by_class: Dict[str, float] = defaultdict(float)
    for p in owned:
        by_class[p.effective_asset_class] += p.value
    classes = [
        AssetClassValue(asset_class=k, value=v, percentage=pct(v, total) if total > 0 else 0.0)
        for k, v in by_class.items()
        if v > 0
    ]
    classes.sort(key=lambda c: c.value, reverse=True)

    top = heapq.nlargest(top_n, (p for p in owned if p.value > 0), key=lambda p: p.value)

    return PortfolioSummary(
        total_value=total,
        gross_assets=gross,
        total_debts=debts,
        change_24h=change,
        change_percent_24h=change_pct,
        position_count=len(positions),
        asset_count=len({p.symbol.lower() for p in positions}),
        by_asset_class=classes,
        top_holdings=top,
    )


# ---------- cash ----------
def calculate_cash_breakdown(
    positions: Sequence[EnrichedPosition],
    include_stablecoins: bool = True,
    classifier: PositionClassifier = default_classifier,
) -> CashBreakdown:
    fiat = CashBucket()
    stable = CashBucket()
    by_currency: Dict[str, float] = defaultdict(float)
    by_institution: Dict[Tuple[str, str], List[float]] = {}

    for p in positions:
        if p.effective_asset_class == "cash":
            currency = extract_currency_code(p.symbol)
            fiat.value += p.value
            fiat.count += 1
            by_currency[currency] += p.value
            institution = extract_cash_account_name(p.name)
            slot = by_institution.setdefault((institution, currency), [0.0, 0.0])
            slot[0] += -p.amount if p.is_debt else p.amount
            slot[1] += p.value
        elif p.sub_category in CASH_LIKE_SUBCATEGORIES:
            stable.value += p.value
            stable.count += 1
            if include_stablecoins:
                currency = classifier.get_underlying_fiat(p.symbol) or p.symbol.upper()
                by_currency[currency] += p.value

    chart = [ChartSlice(label=k, value=v) for k, v in by_currency.items() if v > 0]
    chart.sort(key=lambda s: s.value, reverse=True)
    institutions = [
        InstitutionCash(name=name, currency=currency, amount=amount, value=value)
        for (name, currency), (amount, value) in by_institution.items()
    ]
    institutions.sort(key=lambda i: i.value, reverse=True)

    return CashBreakdown(
        fiat=fiat,
        stablecoins=stable,
        total=fiat.value + (stable.value if include_stablecoins else 0.0),
        include_stablecoins=include_stablecoins,
        chart_data=chart,
        institution_breakdown=institutions,
    )


# ---------- perps ----------
def calculate_perps_metrics(
    positions: Sequence[EnrichedPosition],
    assumed_leverage: float = settings.PERP_ASSUMED_LEVERAGE,
    classifier: PositionClassifier = default_classifier,
) -> PerpsMetrics:
    collateral = 0.0
    longs = 0.0
    shorts = 0.0
    for p in positions:
        bucket = classifier.classify_exposure(p, p.value)
        if bucket == "perp-margin":
            collateral += p.value
        elif bucket == "perp-long":
            longs += abs(p.value)
        elif bucket == "perp-short":
            shorts += abs(p.value)

    gross = longs + shorts
    # venues do not report margin per position; estimate from notional
    margin_used = safe_div(gross, assumed_leverage)
    return PerpsMetrics(
        collateral=collateral,
        long_notional=longs,
        short_notional=shorts,
        net_notional=longs - shorts,
        gross_notional=gross,
        margin_used=margin_used,
        utilization_rate=pct(margin_used, collateral) if collateral > 0 else 0.0,
    )


def _exchange_sort_value(stats: ExchangeStats, sort_key: str) -> float:
    if sort_key == "net_value":
        return stats.account_value
    return float(getattr(stats, sort_key))


def calculate_exchange_breakdown(
    positions: Sequence[EnrichedPosition],
    sort_key: str = "net_value",
    classifier: PositionClassifier = default_classifier,
) -> List[ExchangeStats]:
    """Per-venue margin/spot/long/short totals, sorted descending by `sort_key`."""
    venues: Dict[str, ExchangeStats] = {}
    for p in positions:
        bucket = classifier.classify_exposure(p, p.value)
        if not bucket.startswith("perp-"):
            continue
        # perp contracts off a known venue group by protocol, or "Unknown"
        venue = classifier.perp_venue(p.protocol)
        stats = venues.setdefault(venue.lower(), ExchangeStats(exchange=venue))
        if bucket == "perp-margin":
            stats.margin += p.value
        elif bucket == "perp-spot":
            stats.spot += p.value
        elif bucket == "perp-long":
            stats.longs += abs(p.value)
        elif bucket == "perp-short":
            stats.shorts += abs(p.value)
        stats.position_count += 1

    out = list(venues.values())
    for stats in out:
        stats.account_value = stats.margin + stats.spot
        stats.net_exposure = stats.longs - stats.shorts
    out.sort(key=lambda s: s.exchange)
    out.sort(key=lambda s: _exchange_sort_value(s, sort_key), reverse=True)
    return out


def calculate_perps_overview(
    positions: Sequence[EnrichedPosition],
    sort_key: str = "net_value",
    classifier: PositionClassifier = default_classifier,
) -> PerpsOverview:
    margin: List[EnrichedPosition] = []
    trading: List[EnrichedPosition] = []
    spot: List[EnrichedPosition] = []
    for p in positions:
        bucket = classifier.classify_exposure(p, p.value)
        if bucket == "perp-margin":
            margin.append(p)
        elif bucket in ("perp-long", "perp-short"):
            trading.append(p)
        elif bucket == "perp-spot":
            spot.append(p)

    return PerpsOverview(
        has_perps=bool(margin or trading or spot),
        metrics=calculate_perps_metrics(positions, classifier=classifier),
        exchanges=calculate_exchange_breakdown(positions, sort_key, classifier),
        margin_positions=margin,
        trading_positions=trading,
        spot_holdings=spot,
    )


# ---------- concentration / exposure ----------
def calculate_concentration(positions: Sequence[EnrichedPosition]) -> ConcentrationMetrics:
    """Shares of the largest 1/5/10 positions by absolute value, and the HHI."""
    sizes = sorted((abs(p.value) for p in positions), reverse=True)
    total = sum(sizes)
    metrics = ConcentrationMetrics(
        position_count=len(positions),
        asset_count=len({p.symbol.lower() for p in positions}),
    )
    if total <= 0:
        return metrics

    metrics.top1_percentage = pct(sum(sizes[:1]), total)
    metrics.top5_percentage = pct(sum(sizes[:5]), total)
    metrics.top10_percentage = pct(sum(sizes[:10]), total)
    metrics.herfindahl_index = sum(pct(s, total) ** 2 for s in sizes)
    return metrics


def calculate_exposure(
    positions: Sequence[EnrichedPosition],
    classifier: PositionClassifier = default_classifier,
) -> ExposureOverview:
    owned = _owned(positions)
    gross, debts = _gross_and_debts(owned)
    net_worth = gross - debts

    split = SpotDerivatives()
    cash = 0.0
    for p in positions:
        bucket = classifier.classify_exposure(p, p.value)
        size = abs(p.value)
        if bucket in ("spot-long", "perp-spot"):
            split.spot_long += size
        elif bucket == "spot-short":
            split.spot_short += size
        elif bucket == "perp-long":
            split.derivatives_long += size
        elif bucket == "perp-short":
            split.derivatives_short += size
        elif bucket in ("cash", "perp-margin") and p.value > 0:
            cash += p.value
    split.derivatives_net = split.derivatives_long - split.derivatives_short

    long_exposure = split.spot_long + split.derivatives_long
    short_exposure = split.spot_short + split.derivatives_short
    gross_exposure = long_exposure + short_exposure

    return ExposureOverview(
        total_value=net_worth,
        gross_assets=gross,
        total_debts=debts,
        exposure=ExposureMetrics(
            long_exposure=long_exposure,
            short_exposure=short_exposure,
            gross_exposure=gross_exposure,
            net_exposure=long_exposure - short_exposure,
            leverage=safe_div(gross_exposure, net_worth) if net_worth > 0 else 0.0,
            cash_percentage=pct(cash, gross) if gross > 0 else 0.0,
            debt_ratio=pct(debts, gross) if gross > 0 else 0.0,
        ),
        concentration=calculate_concentration(positions),
        spot_derivatives=split,
        perps=calculate_perps_metrics(positions, classifier=classifier),
    )
