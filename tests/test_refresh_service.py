import asyncio
import threading
import unittest
from unittest.mock import Mock

from tests.db_case import DbTestCase

from database import SessionLocal
from models.fx_rate import FxRate
from models.position import Position
from models.price_quote import PriceQuote as PriceQuoteRow
from schemas.position import PositionIn
from schemas.price import PriceQuote
from services.portfolio_store import load_positions
from services.providers import FetchResult, ProviderError
from services.refresh_service import FailurePolicy, RefreshOrchestrator


class FakeFetcher:
    name = "debank"
    price_source = "wallet"

    def __init__(self, by_account=None, prices=None, fail_for=(), gate=None):
        self.by_account = by_account or {}
        self.prices = prices or {}
        self.fail_for = set(fail_for)
        self.gate = gate
        self.calls = []

    async def fetch(self, account):
        self.calls.append(account.id)
        if self.gate is not None:
            await self.gate.wait()
        if account.id in self.fail_for:
            raise ProviderError(self.name, "upstream timeout")
        return FetchResult(positions=self.by_account.get(account.id, []), prices=self.prices)


class FakeSource:
    def __init__(self, name, quotes=None, error=None):
        self.name = name
        self.quotes = quotes or {}
        self.error = error
        self.keys = None

    async def fetch_prices(self, keys):
        self.keys = list(keys)
        if self.error:
            raise self.error
        return self.quotes


class FakeFx:
    name = "fx"

    def __init__(self, rates=None, error=None):
        self.rates = rates or {}
        self.error = error

    async def fetch_rates(self):
        if self.error:
            raise self.error
        return self.rates


def _snapshot(db):
    db.expire_all()
    return [(p.id, p.symbol, p.amount, p.account_id) for p in load_positions(db)]


class TestSingleFlight(DbTestCase):
    def test_second_refresh_is_dropped_while_first_runs(self):
        async def scenario():
            gate = asyncio.Event()
            wallet = self.make_wallet()
            orchestrator = RefreshOrchestrator(SessionLocal, fetchers={"wallet": FakeFetcher({wallet: []}, gate=gate)})
            first = asyncio.create_task(orchestrator.refresh())
            await asyncio.sleep(0)
            self.assertTrue(orchestrator.is_running)
            second = await orchestrator.refresh()
            gate.set()
            return await first, second, orchestrator

        first, second, orchestrator = asyncio.run(scenario())

        self.assertEqual(second.status, "dropped")
        self.assertEqual(first.status, "ok")
        self.assertFalse(orchestrator.is_running)

    def test_try_start_and_finish(self):
        orchestrator = RefreshOrchestrator(SessionLocal)
        self.assertTrue(orchestrator.try_start())
        self.assertFalse(orchestrator.try_start())
        orchestrator.finish()
        self.assertTrue(orchestrator.try_start())

    def test_flag_cleared_after_unexpected_error(self):
        orchestrator = RefreshOrchestrator(Mock(side_effect=RuntimeError("db down")))

        with self.assertRaises(RuntimeError):
            asyncio.run(orchestrator.refresh())

        self.assertFalse(orchestrator.is_running)
        self.assertTrue(orchestrator.try_start())


class TestRefresh(DbTestCase):
    def setUp(self):
        super().setUp()
        self.wallet = self.make_wallet("Main", address="0x1")
        self.other = self.make_wallet("Cold", address="0x2")
        self.bank = self.make_manual("Revolut")
        self.make_position("ETH", 1.0, self.wallet, asset_class="crypto", id="w-eth")
        self.make_position("BTC", 0.5, self.other, asset_class="crypto", id="o-btc")
        self.make_position("CASH_EUR_1", 100, self.bank, asset_class="cash", name="Revolut (EUR)", id="bank-eur")

    def _fresh(self, symbol, amount):
        return PositionIn(symbol=symbol, amount=amount, asset_class="crypto")

    def test_failed_price_source_is_skipped_and_positions_commit(self):
        fetcher = FakeFetcher(
            {self.wallet: [self._fresh("ETH", 2.0)], self.other: [self._fresh("BTC", 0.75)]},
            prices={"eth:0xeee": PriceQuote(symbol="eth", price=3100)},
        )
        market = FakeSource("market", error=ProviderError("market", "rate limited"))
        orchestrator = RefreshOrchestrator(SessionLocal, fetchers={"wallet": fetcher}, price_sources=[market])

        outcome = asyncio.run(orchestrator.refresh())

        self.assertEqual(outcome.status, "ok")
        self.assertEqual(outcome.skipped_providers, ["market"])
        self.assertEqual(set(outcome.synced_accounts), {self.wallet, self.other})
        amounts = {(p.account_id, p.symbol): p.amount for p in load_positions(self.db)}
        self.assertEqual(amounts[(self.wallet, "ETH")], 2.0)
        self.assertEqual(amounts[(self.other, "BTC")], 0.75)
        self.assertEqual(amounts[(self.bank, "CASH_EUR_1")], 100)
        stored = self.db.query(PriceQuoteRow).one()
        self.assertEqual((stored.source, stored.key), ("wallet", "eth:0xeee"))
        self.assertEqual(sorted(market.keys), ["bitcoin", "ethereum"])

    def test_every_fetch_failing_aborts_with_store_unchanged(self):
        before = _snapshot(self.db)
        fetcher = FakeFetcher(fail_for={self.wallet, self.other})
        market = FakeSource("market", quotes={"ethereum": PriceQuote(price=3000)})
        orchestrator = RefreshOrchestrator(
            SessionLocal, fetchers={"wallet": fetcher}, price_sources=[market], fx_provider=FakeFx({"EUR": 1.1})
        )

        outcome = asyncio.run(orchestrator.refresh())

        self.assertEqual(outcome.status, "failed")
        self.assertTrue(outcome.errors)
        self.assertEqual(_snapshot(self.db), before)
        self.assertEqual(self.db.query(PriceQuoteRow).count(), 0)
        self.assertEqual(self.db.query(FxRate).count(), 0)
        self.assertFalse(orchestrator.is_running)

    def test_one_failed_fetch_keeps_that_account_untouched(self):
        fetcher = FakeFetcher({self.other: [self._fresh("BTC", 0.9)]}, fail_for={self.wallet})
        orchestrator = RefreshOrchestrator(SessionLocal, fetchers={"wallet": fetcher})

        outcome = asyncio.run(orchestrator.refresh())

        self.assertEqual(outcome.status, "ok")
        self.assertEqual(outcome.synced_accounts, [self.other])
        self.assertEqual(outcome.skipped_providers, [f"debank:{self.wallet}"])
        self.assertEqual(self.db.get(Position, "w-eth").amount, 1.0)
        btc = self.db.query(Position).filter(Position.account_id == self.other).one()
        self.assertEqual(btc.amount, 0.9)

    def test_abort_policy_on_a_single_fetcher(self):
        before = _snapshot(self.db)
        fetcher = FakeFetcher({self.other: [self._fresh("BTC", 0.9)]}, fail_for={self.wallet})
        orchestrator = RefreshOrchestrator(
            SessionLocal, fetchers={"wallet": fetcher}, failure_policy={"debank": FailurePolicy.ABORT}
        )

        outcome = asyncio.run(orchestrator.refresh())

        self.assertEqual(outcome.status, "failed")
        self.assertEqual(_snapshot(self.db), before)

    def test_fx_rates_are_stored_and_failure_skipped(self):
        orchestrator = RefreshOrchestrator(SessionLocal, fx_provider=FakeFx({"USD": 1.0, "EUR": 1.1}))
        outcome = asyncio.run(orchestrator.refresh())
        self.assertEqual(outcome.fx_rates_written, 2)
        self.assertAlmostEqual(self.db.get(FxRate, "EUR").rate_to_usd, 1.1)

        failing = RefreshOrchestrator(SessionLocal, fx_provider=FakeFx(error=ProviderError("fx", "down")))
        outcome = asyncio.run(failing.refresh())
        self.assertEqual(outcome.status, "ok")
        self.assertEqual(outcome.skipped_providers, ["fx"])

    def test_store_failure_keeps_quotes_fx_and_positions_unchanged(self):
        before = _snapshot(self.db)
        clashing = [
            PositionIn(id="dup", symbol="ETH", amount=2.0, asset_class="crypto"),
            PositionIn(id="dup", symbol="WETH", amount=1.0, asset_class="crypto"),
        ]
        fetcher = FakeFetcher({self.wallet: clashing}, prices={"eth:0xeee": PriceQuote(symbol="eth", price=3100)})
        market = FakeSource("market", quotes={"ethereum": PriceQuote(price=3000)})
        orchestrator = RefreshOrchestrator(
            SessionLocal, fetchers={"wallet": fetcher}, price_sources=[market], fx_provider=FakeFx({"EUR": 1.1})
        )

        outcome = asyncio.run(orchestrator.refresh())

        self.assertEqual(outcome.status, "failed")
        self.assertTrue(any(e.startswith("store:") for e in outcome.errors))
        self.assertEqual(_snapshot(self.db), before)
        self.assertEqual(self.db.query(PriceQuoteRow).count(), 0)
        self.assertEqual(self.db.query(FxRate).count(), 0)
        self.assertFalse(orchestrator.is_running)

    def test_positions_overridden_to_cash_are_not_priced(self):
        self.make_position("MYTOK", 10, self.wallet, asset_class="crypto", asset_class_override="cash")
        market = FakeSource("market")

        asyncio.run(RefreshOrchestrator(SessionLocal, price_sources=[market]).refresh())

        self.assertEqual(sorted(market.keys), ["bitcoin", "ethereum"])

    def test_database_work_runs_off_the_event_loop_thread(self):
        session_threads = []

        def session_factory():
            session_threads.append(threading.get_ident())
            return SessionLocal()

        async def scenario():
            fetcher = FakeFetcher({self.wallet: [], self.other: []})
            await RefreshOrchestrator(session_factory, fetchers={"wallet": fetcher}).refresh()
            return threading.get_ident()

        loop_thread = asyncio.run(scenario())

        self.assertEqual(len(session_threads), 2)
        self.assertNotIn(loop_thread, session_threads)

    def test_inactive_and_manual_accounts_are_not_fetched(self):
        from services.account_service import update_account

        update_account(self.db, self.other, {"is_active": False})
        fetcher = FakeFetcher({self.wallet: []})
        orchestrator = RefreshOrchestrator(SessionLocal, fetchers={"wallet": fetcher})

        asyncio.run(orchestrator.refresh())

        self.assertEqual(fetcher.calls, [self.wallet])
        self.assertIsNotNone(self.db.get(Position, "o-btc"))
        self.assertIsNotNone(self.db.get(Position, "bank-eur"))


if __name__ == "__main__":
    unittest.main()
