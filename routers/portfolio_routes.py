# routers/portfolio_routes.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from schemas.portfolio import CashBreakdown, ExchangeSortKey, ExposureOverview, PerpsOverview, PortfolioSummary
from services.portfolio_aggregator import (
    calculate_cash_breakdown,
    calculate_exposure,
    calculate_perps_overview,
    calculate_portfolio_summary,
)
from services.portfolio_service import get_enriched_positions

router = APIRouter()


@router.get("/summary", response_model=PortfolioSummary)
def portfolio_summary(
    top_n: int = Query(settings.TOP_HOLDINGS_LIMIT, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return calculate_portfolio_summary(get_enriched_positions(db), top_n=top_n)


@router.get("/cash", response_model=CashBreakdown)
def cash_breakdown(
    include_stablecoins: bool = Query(True),
    db: Session = Depends(get_db),
):
    return calculate_cash_breakdown(get_enriched_positions(db), include_stablecoins=include_stablecoins)


@router.get("/perps", response_model=PerpsOverview)
def perps_overview(
    sort_key: ExchangeSortKey = Query("net_value"),
    db: Session = Depends(get_db),
):
    return calculate_perps_overview(get_enriched_positions(db), sort_key=sort_key)


@router.get("/exposure", response_model=ExposureOverview)
def exposure_overview(db: Session = Depends(get_db)):
    return calculate_exposure(get_enriched_positions(db))
