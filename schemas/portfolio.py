from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, Field

from schemas.position import EnrichedPosition


class AssetClassValue(BaseModel):
    asset_class: str
    value: float
    percentage: float


class PortfolioSummary(BaseModel):
    total_value: float = 0.0
    gross_assets: float = 0.0
    total_debts: float = 0.0
    change_24h: float = 0.0
    change_percent_24h: float = 0.0
    position_count: int = 0
    asset_count: int = 0
    by_asset_class: List[AssetClassValue] = Field(default_factory=list)
    top_holdings: List[EnrichedPosition] = Field(default_factory=list)


class CashBucket(BaseModel):
    value: float = 0.0
    count: int = 0


class ChartSlice(BaseModel):
    label: str
    value: float


class InstitutionCash(BaseModel):
    name: str
    currency: str
    amount: float
    value: float


class CashBreakdown(BaseModel):
    fiat: CashBucket = Field(default_factory=CashBucket)
    stablecoins: CashBucket = Field(default_factory=CashBucket)
    total: float = 0.0
    include_stablecoins: bool = True
    chart_data: List[ChartSlice] = Field(default_factory=list)
    institution_breakdown: List[InstitutionCash] = Field(default_factory=list)


class PerpsMetrics(BaseModel):
    collateral: float = 0.0
    long_notional: float = 0.0
    short_notional: float = 0.0
    net_notional: float = 0.0
    gross_notional: float = 0.0
    margin_used: float = 0.0
    utilization_rate: float = 0.0


class ExchangeStats(BaseModel):
    exchange: str
    margin: float = 0.0
    spot: float = 0.0
    longs: float = 0.0
    shorts: float = 0.0
    position_count: int = 0
    account_value: float = 0.0
    net_exposure: float = 0.0


ExchangeSortKey = Literal["net_value", "margin", "longs", "shorts", "net_exposure", "position_count"]


class PerpsOverview(BaseModel):
    has_perps: bool = False
    metrics: PerpsMetrics = Field(default_factory=PerpsMetrics)
    exchanges: List[ExchangeStats] = Field(default_factory=list)
    margin_positions: List[EnrichedPosition] = Field(default_factory=list)
    trading_positions: List[EnrichedPosition] = Field(default_factory=list)
    spot_holdings: List[EnrichedPosition] = Field(default_factory=list)


class ConcentrationMetrics(BaseModel):
    top1_percentage: float = 0.0
    top5_percentage: float = 0.0
    top10_percentage: float = 0.0
    herfindahl_index: float = 0.0
    position_count: int = 0
    asset_count: int = 0


class SpotDerivatives(BaseModel):
    spot_long: float = 0.0
    spot_short: float = 0.0
    derivatives_long: float = 0.0
    derivatives_short: float = 0.0
    derivatives_net: float = 0.0


class ExposureMetrics(BaseModel):
    long_exposure: float = 0.0
    short_exposure: float = 0.0
    gross_exposure: float = 0.0
    net_exposure: float = 0.0
    leverage: float = 0.0
    cash_percentage: float = 0.0
    debt_ratio: float = 0.0


class ExposureOverview(BaseModel):
    total_value: float = 0.0
    gross_assets: float = 0.0
    total_debts: float = 0.0
    exposure: ExposureMetrics = Field(default_factory=ExposureMetrics)
    concentration: ConcentrationMetrics = Field(default_factory=ConcentrationMetrics)
    spot_derivatives: SpotDerivatives = Field(default_factory=SpotDerivatives)
    perps: PerpsMetrics = Field(default_factory=PerpsMetrics)
