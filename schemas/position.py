from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

AssetClass = Literal["crypto", "equity", "metals", "cash", "other"]
# What fetchers and older clients declare; mapped onto AssetClass by the classifier.
DeclaredType = Literal["crypto", "stock", "etf", "equity", "metals", "cash", "manual", "other"]
SubCategory = Literal["stablecoins", "perp_margin", "perp_trade", "spot", "cash", "none"]


def _normalize_symbol(value: str) -> str:
    symbol = (value or "").strip()
    if not symbol or len(symbol) > 64:
        raise ValueError("symbol must be 1-64 characters")
    return symbol


class PositionIn(BaseModel):
    """A position as entered by the user or returned by a fetcher."""

    id: Optional[str] = Field(default=None, max_length=128)
    symbol: str
    name: str = ""
    amount: float
    asset_class: Optional[DeclaredType] = None
    asset_class_override: Optional[AssetClass] = None
    cost_basis: Optional[float] = None
    purchase_date: Optional[datetime] = None
    account_id: Optional[str] = None
    chain: Optional[str] = None
    protocol: Optional[str] = None
    detail: Optional[str] = None
    price_key: Optional[str] = None
    is_debt: bool = False
    unlock_at: Optional[datetime] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, value: str) -> str:
        return _normalize_symbol(value)


class PositionUpdate(BaseModel):
    symbol: Optional[str] = None
    name: Optional[str] = None
    amount: Optional[float] = None
    asset_class: Optional[DeclaredType] = None
    cost_basis: Optional[float] = None
    purchase_date: Optional[datetime] = None
    account_id: Optional[str] = None
    chain: Optional[str] = None
    protocol: Optional[str] = None
    detail: Optional[str] = None
    price_key: Optional[str] = None
    is_debt: Optional[bool] = None
    unlock_at: Optional[datetime] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _normalize_symbol(value)


class AssetClassOverrideIn(BaseModel):
    asset_class: Optional[AssetClass] = None


class PositionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    asset_class: AssetClass
    asset_class_override: Optional[AssetClass] = None
    symbol: str
    name: str = ""
    amount: float
    cost_basis: Optional[float] = None
    purchase_date: Optional[datetime] = None
    account_id: Optional[str] = None
    chain: Optional[str] = None
    protocol: Optional[str] = None
    detail: Optional[str] = None
    price_key: Optional[str] = None
    is_debt: bool = False
    unlock_at: Optional[datetime] = None


class EnrichedPosition(PositionOut):
    """A stored position joined with its resolved price. Computed per read, never stored."""

    effective_asset_class: AssetClass
    sub_category: SubCategory = "none"
    current_price: float = 0.0
    value: float = 0.0
    change_24h: float = 0.0
    change_percent_24h: float = 0.0
    allocation: float = 0.0
    has_custom_price: bool = False
    price_key_used: Optional[str] = None
