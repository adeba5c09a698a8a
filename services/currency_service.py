from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, Iterable, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import settings
from services.portfolio_calculator import FALLBACK_FX_RATES

logger = logging.getLogger(__name__)


class FxProviderError(RuntimeError):
    pass


class FrankfurterFxProvider:
    """
    USD value of one unit of each currency, from frankfurter (ECB rates).
    Frankfurter quotes "units per 1 USD", so every rate is inverted.
    """

    name = "fx"

    def __init__(self, base_url: str = settings.FX_API_URL, timeout: float = settings.FX_TIMEOUT_SEC,
                 currencies: Optional[Iterable[str]] = None):
        self.base_url = base_url
        self.timeout = timeout
        self.currencies = sorted({c.upper() for c in (currencies or FALLBACK_FX_RATES)} - {"USD"})

    @asynccontextmanager
    async def _client(self, client: Optional[httpx.AsyncClient] = None):
        if client is not None:
            yield client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as c:
            yield c

    # connection-level failures only; an HTTP error status is final
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _get(self, c: httpx.AsyncClient) -> httpx.Response:
        r = await c.get(self.base_url, params={"from": "USD", "to": ",".join(self.currencies)})
        r.raise_for_status()
        return r

    async def fetch_rates(self, client: Optional[httpx.AsyncClient] = None) -> Dict[str, float]:
        async with self._client(client) as c:
            try:
                data = (await self._get(c)).json()
            except (httpx.HTTPError, ValueError) as e:
                raise FxProviderError(f"fx fetch failed: {e}") from e

        raw = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(raw, dict) or not raw:
            raise FxProviderError("fx fetch failed: rates missing")

        rates: Dict[str, float] = {"USD": 1.0}
        for code, per_usd in raw.items():
            try:
                per_usd = float(per_usd)
            except (TypeError, ValueError):
                continue
            if per_usd > 0:
                rates[code.upper()] = 1.0 / per_usd
        logger.info("fx_rates_fetched count=%d", len(rates))
        return rates

