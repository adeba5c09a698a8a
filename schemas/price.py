from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PriceQuote(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str = ""
    price: float = 0.0
    change_24h: float = 0.0
    change_percent_24h: float = 0.0
    last_updated: Optional[datetime] = None

    @property
    def has_change(self) -> bool:
        return bool(self.change_24h or self.change_percent_24h)


# provider-specific lookup key -> quote
PriceMap = Dict[str, PriceQuote]


class CustomPriceIn(BaseModel):
    price: float = Field(gt=0)
    note: Optional[str] = Field(default=None, max_length=500)


class CustomPriceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    price: float
    note: Optional[str] = None
    set_at: datetime

    @field_validator("symbol")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.lower()
