"""
Collaborator interfaces for the refresh pipeline.

Balance fetchers and price sources live outside this service; anything that
matches these protocols can be registered with the refresh orchestrator.
Every call is wrapped into a `ProviderResult` so a failure is a value the
orchestrator decides on, never a stray exception.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from models.account import Account
from schemas.position import PositionIn
from schemas.price import PriceMap, PriceQuote

logger = logging.getLogger(__name__)


class FetchResult(BaseModel):
    positions: List[PositionIn] = Field(default_factory=list)
    prices: Dict[str, PriceQuote] = Field(default_factory=dict)


class ProviderResult(BaseModel):
    ok: bool
    provider: str
    data: Any = None
    error: Optional[str] = None


class ProviderError(Exception):
    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class PositionFetcher(Protocol):
    name: str
    # quote source the fetcher's own prices are stored under
    price_source: str

    async def fetch(self, account: Account) -> FetchResult: ...


class PriceSource(Protocol):
    name: str

    async def fetch_prices(self, keys: Sequence[str]) -> PriceMap: ...


class FxProvider(Protocol):
    name: str

    async def fetch_rates(self) -> Dict[str, float]: ...


async def call_provider(provider: str, call: Awaitable[Any]) -> ProviderResult:
    try:
        data = await call
    except Exception as e:
        logger.warning("provider_failed provider=%s error=%s", provider, e)
        return ProviderResult(ok=False, provider=provider, error=str(e) or type(e).__name__)
    return ProviderResult(ok=True, provider=provider, data=data)
