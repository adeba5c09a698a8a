from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from schemas.position import PositionIn
from schemas.price import PriceQuote


class SyncRequest(BaseModel):
    """
    Fresh holdings for a set of accounts, pushed by an external fetcher.

    `positions` is the complete holding list of `account_ids`; an empty list
    clears them. `prices` is keyed by quote source, then by price key.
    """

    account_ids: List[str] = Field(min_length=1)
    positions: List[PositionIn] = Field(default_factory=list)
    prices: Dict[str, Dict[str, PriceQuote]] = Field(default_factory=dict)

    @field_validator("account_ids")
    @classmethod
    def dedupe_ids(cls, v: List[str]) -> List[str]:
        ids = list(dict.fromkeys(i.strip() for i in v if i and i.strip()))
        if not ids:
            raise ValueError("account_ids must name at least one account")
        return ids

    @model_validator(mode="after")
    def assign_owners(self) -> "SyncRequest":
        """
        A single-account sync owns every position it carries. With several
        accounts each position must name one of them.
        """
        if len(self.account_ids) == 1:
            owner = self.account_ids[0]
            self.positions = [
                p if p.account_id else p.model_copy(update={"account_id": owner}) for p in self.positions
            ]
        scope = set(self.account_ids)
        stray = [p.symbol for p in self.positions if p.account_id not in scope]
        if stray:
            raise ValueError(f"positions must belong to one of account_ids: {', '.join(stray)}")
        return self


class SyncResult(BaseModel):
    synced_accounts: int
    removed: int
    added: int
    preserved: int
    quotes_stored: int = 0


class RefreshOut(BaseModel):
    status: str
    synced_accounts: List[str] = Field(default_factory=list)
    positions_written: int = 0
    quotes_written: int = 0
    fx_rates_written: int = 0
    skipped_providers: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    detail: Optional[str] = None
