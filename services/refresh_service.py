"""
Refresh orchestration: fan out to every balance fetcher, price source and
the FX provider at once, then commit what succeeded.

Failure handling is a lookup in a `provider name -> FailurePolicy` table:

    SKIP   the provider contributes nothing; everything else is committed.
           A skipped balance fetch leaves that account out of the sync
           scope, so its stored positions stay untouched.
    ABORT  the refresh stops before any write and the store is unchanged.

Quotes, FX rates and positions are written in one transaction; if that
transaction fails the refresh reports `failed` and nothing is kept.
Database work runs in a worker thread, off the event loop.

The `positions` entry covers the balance-fetch layer as a whole and is
consulted when every balance fetch of a refresh failed.

Only one refresh runs per process. A request that arrives while one is in
flight is dropped, not queued.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from prometheus_client import Counter, Histogram
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.account import Account
from models.position import Position
from schemas.position import PositionIn
from services.classifier import default_classifier
from services.portfolio_calculator import get_price_key
from services.portfolio_store import atomic, load_accounts, load_positions
from services.providers import (
    FetchResult,
    FxProvider,
    PositionFetcher,
    PriceSource,
    ProviderResult,
    call_provider,
)
from services.quote_service import write_fx_rates, write_quotes
from services.reconciler import apply_synced_positions

logger = logging.getLogger(__name__)

POSITIONS_LAYER = "positions"
STORE_LAYER = "store"

# Metrics
REFRESH_DURATION = Histogram(
    "portfolio_refresh_duration_seconds",
    "Time spent in a portfolio refresh",
)
REFRESH_OUTCOMES = Counter(
    "portfolio_refresh_total",
    "Refresh requests by outcome",
    ["status"],
)
PROVIDER_FAILURES = Counter(
    "portfolio_provider_failures_total",
    "Failed provider calls",
    ["provider", "policy"],
)


class FailurePolicy(str, Enum):
    SKIP = "skip"
    ABORT = "abort"


DEFAULT_FAILURE_POLICY: Dict[str, FailurePolicy] = {
    POSITIONS_LAYER: FailurePolicy.ABORT,
    "market": FailurePolicy.SKIP,
    "wallet": FailurePolicy.SKIP,
    "perps": FailurePolicy.SKIP,
    "fx": FailurePolicy.SKIP,
}


class RefreshAbortedError(RuntimeError):
    def __init__(self, provider: str, errors: Sequence[str]):
        super().__init__(f"refresh aborted by {provider}")
        self.provider = provider
        self.errors = list(errors)


class RefreshOutcome(BaseModel):
    status: str  # ok | failed | dropped
    synced_accounts: List[str] = Field(default_factory=list)
    positions_written: int = 0
    quotes_written: int = 0
    fx_rates_written: int = 0
    skipped_providers: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class RefreshOrchestrator:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        fetchers: Optional[Mapping[str, PositionFetcher]] = None,
        price_sources: Sequence[PriceSource] = (),
        fx_provider: Optional[FxProvider] = None,
        failure_policy: Optional[Mapping[str, FailurePolicy]] = None,
    ):
        self._session_factory = session_factory
        # connection kind -> fetcher
        self._fetchers: Dict[str, PositionFetcher] = dict(fetchers or {})
        self._price_sources = list(price_sources)
        self._fx_provider = fx_provider
        self._policy: Dict[str, FailurePolicy] = {**DEFAULT_FAILURE_POLICY, **(failure_policy or {})}
        self._in_flight = False

    # ---------- single-flight ----------
    def try_start(self) -> bool:
        if self._in_flight:
            return False
        self._in_flight = True
        return True

    def finish(self) -> None:
        self._in_flight = False

    @property
    def is_running(self) -> bool:
        return self._in_flight

    def policy_for(self, provider: str) -> FailurePolicy:
        return self._policy.get(provider, FailurePolicy.SKIP)

    # ---------- entry point ----------
    async def refresh(self) -> RefreshOutcome:
        if not self.try_start():
            logger.info("refresh_dropped reason=in_flight")
            REFRESH_OUTCOMES.labels(status="dropped").inc()
            return RefreshOutcome(status="dropped")
        try:
            with REFRESH_DURATION.time():
                outcome = await self._run()
        except RefreshAbortedError as e:
            logger.warning("refresh_aborted provider=%s errors=%d", e.provider, len(e.errors))
            outcome = RefreshOutcome(status="failed", errors=e.errors)
        finally:
            self.finish()
        REFRESH_OUTCOMES.labels(status=outcome.status).inc()
        return outcome

    async def _run(self) -> RefreshOutcome:
        accounts, keys = await asyncio.to_thread(self._load_scope)

        fetch_results, source_results, fx_result = await self._fan_out(accounts, keys)
        fresh, synced, quotes, skipped, errors = self._decide(accounts, fetch_results, source_results, fx_result)

        outcome = RefreshOutcome(status="ok", skipped_providers=skipped, errors=errors)
        fx_rates = fx_result.data if fx_result is not None and fx_result.ok and fx_result.data else {}
        await asyncio.to_thread(self._write, outcome, synced, fresh, quotes, fx_rates)

        logger.info(
            "refresh_finished accounts=%d positions=%d quotes=%d skipped=%d",
            len(outcome.synced_accounts), outcome.positions_written,
            outcome.quotes_written, len(outcome.skipped_providers),
        )
        return outcome

    def _load_scope(self) -> Tuple[List[Account], List[str]]:
        db = self._session_factory()
        try:
            accounts = [a for a in load_accounts(db) if a.is_active and a.kind in self._fetchers]
            keys = self._price_keys(load_positions(db))
        finally:
            db.close()
        return accounts, keys

    def _write(
        self,
        outcome: RefreshOutcome,
        synced: List[str],
        fresh: List[PositionIn],
        quotes: Sequence[Tuple[str, dict]],
        fx_rates: Mapping[str, float],
    ) -> None:
        db = self._session_factory()
        try:
            with atomic(db):
                for source, prices in quotes:
                    outcome.quotes_written += write_quotes(db, source, prices)
                if fx_rates:
                    outcome.fx_rates_written = write_fx_rates(db, fx_rates)
                if synced:
                    apply_synced_positions(db, synced, fresh)
                    outcome.synced_accounts = synced
                    outcome.positions_written = len(fresh)
        except (SQLAlchemyError, ValueError) as e:
            raise RefreshAbortedError(STORE_LAYER, [*outcome.errors, f"{STORE_LAYER}: {e}"]) from e
        finally:
            db.close()

    def _price_keys(self, positions: Sequence[Position]) -> List[str]:
        return sorted({
            get_price_key(p) for p in positions if default_classifier.effective_asset_class(p) != "cash"
        })

    async def _fan_out(
        self,
        accounts: Sequence[Account],
        keys: Sequence[str],
    ) -> Tuple[List[ProviderResult], List[ProviderResult], Optional[ProviderResult]]:
        fetch_tasks = [
            call_provider(f"{self._fetchers[a.kind].name}:{a.id}", self._fetchers[a.kind].fetch(a))
            for a in accounts
        ]
        source_tasks = [call_provider(s.name, s.fetch_prices(keys)) for s in self._price_sources]
        fx_tasks = [call_provider(self._fx_provider.name, self._fx_provider.fetch_rates())] if self._fx_provider else []

        results = await asyncio.gather(*fetch_tasks, *source_tasks, *fx_tasks, return_exceptions=True)
        results = [
            r if isinstance(r, ProviderResult) else ProviderResult(ok=False, provider="unknown", error=str(r))
            for r in results
        ]
        n_fetch, n_source = len(fetch_tasks), len(source_tasks)
        fx_result = results[n_fetch + n_source] if fx_tasks else None
        return results[:n_fetch], results[n_fetch:n_fetch + n_source], fx_result

    def _decide(
        self,
        accounts: Sequence[Account],
        fetch_results: Sequence[ProviderResult],
        source_results: Sequence[ProviderResult],
        fx_result: Optional[ProviderResult],
    ):
        skipped: List[str] = []
        errors: List[str] = []

        def fail(result: ProviderResult, policy_name: str) -> None:
            policy = self.policy_for(policy_name)
            PROVIDER_FAILURES.labels(provider=policy_name, policy=policy.value).inc()
            if policy is FailurePolicy.ABORT:
                raise RefreshAbortedError(policy_name, [*errors, f"{result.provider}: {result.error}"])
            skipped.append(result.provider)
            errors.append(f"{result.provider}: {result.error}")

        fresh: List[PositionIn] = []
        synced: List[str] = []
        quotes: List[Tuple[str, dict]] = []

        for account, result in zip(accounts, fetch_results):
            fetcher = self._fetchers[account.kind]
            if not result.ok:
                fail(result, fetcher.name)
                continue
            data: FetchResult = result.data
            synced.append(account.id)
            fresh.extend(p.model_copy(update={"account_id": account.id}) for p in data.positions)
            if data.prices:
                quotes.append((getattr(fetcher, "price_source", "wallet"), data.prices))

        if fetch_results and not synced:
            # every balance fetch failed: the layer itself is down
            failed = fetch_results[-1]
            fail(ProviderResult(ok=False, provider=POSITIONS_LAYER, error=failed.error), POSITIONS_LAYER)

        for result in source_results:
            if not result.ok:
                fail(result, result.provider)
            elif result.data:
                quotes.append((result.provider, result.data))

        if fx_result is not None and not fx_result.ok:
            fail(fx_result, fx_result.provider)

        if skipped:
            logger.warning("refresh_providers_skipped count=%d providers=%s", len(skipped), ",".join(skipped))
        return fresh, synced, quotes, skipped, errors


_orchestrator: Optional[RefreshOrchestrator] = None


def configure_refresh_orchestrator(orchestrator: RefreshOrchestrator) -> RefreshOrchestrator:
    global _orchestrator
    _orchestrator = orchestrator
    return orchestrator


def get_refresh_orchestrator() -> RefreshOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        from database import SessionLocal
        from services.currency_service import FrankfurterFxProvider

        _orchestrator = RefreshOrchestrator(SessionLocal, fx_provider=FrankfurterFxProvider())
    return _orchestrator
