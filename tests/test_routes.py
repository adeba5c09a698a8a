import unittest

from tests.db_case import DbTestCase

from fastapi.testclient import TestClient

from database import SessionLocal
from main import app
from models.price_quote import PriceQuote as PriceQuoteRow
from middleware.rate_limit import limiter
from services.refresh_service import RefreshOrchestrator, get_refresh_orchestrator

API = "/api/portfolio"


class RouteTestCase(DbTestCase):
    def setUp(self):
        super().setUp()
        limiter.reset()
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        super().tearDown()

    def create_account(self, **body):
        r = self.client.post(f"{API}/accounts", json=body)
        self.assertEqual(r.status_code, 201, r.text)
        return r.json()["id"]


class TestAccountRoutes(RouteTestCase):
    def test_create_is_deduplicated_for_manual_accounts(self):
        first = self.create_account(name="Revolut", slug=True)
        second = self.create_account(name="revolut", slug=True)
        self.assertEqual(first, second)
        self.assertEqual(len(self.client.get(f"{API}/accounts").json()), 1)

    def test_exchange_credentials_are_masked(self):
        self.create_account(
            name="Binance",
            connection={"kind": "exchange", "exchange": "binance", "api_key": "abcd1234", "api_secret": "s3cret"},
        )
        body = self.client.get(f"{API}/accounts").json()[0]
        self.assertEqual(body["connection"]["api_key"], "***1234")
        self.assertEqual(body["connection"]["api_secret"], "***")

    def test_unknown_connection_kind_is_rejected(self):
        r = self.client.post(f"{API}/accounts", json={"name": "X", "connection": {"kind": "bank"}})
        self.assertEqual(r.status_code, 422)

    def test_patch_and_delete_unknown_ids_are_noops(self):
        self.assertEqual(self.client.patch(f"{API}/accounts/missing", json={"name": "x"}).status_code, 204)
        self.assertEqual(self.client.delete(f"{API}/accounts/missing").status_code, 204)

    def test_delete_removes_owned_positions(self):
        account_id = self.create_account(name="Bank")
        self.client.post(f"{API}/positions", json={"symbol": "CASH_EUR_1", "amount": 10, "asset_class": "cash",
                                                   "account_id": account_id})
        self.client.delete(f"{API}/accounts/{account_id}")
        self.assertEqual(self.client.get(f"{API}/positions").json(), [])

    def test_partition_filter(self):
        self.create_account(name="Main", connection={"kind": "wallet", "address": "0x1"})
        self.create_account(name="Bank")
        wallets = self.client.get(f"{API}/accounts", params={"partition": "wallet"}).json()
        self.assertEqual([a["name"] for a in wallets], ["Main"])
        self.assertEqual(self.client.get(f"{API}/accounts", params={"partition": "savings"}).status_code, 422)

    def test_get_single_account(self):
        self.assertEqual(self.client.get(f"{API}/accounts/missing").status_code, 404)


class TestPositionRoutes(RouteTestCase):
    def test_create_and_list_enriched(self):
        r = self.client.post(f"{API}/positions", json={"symbol": "USDC", "amount": 250, "asset_class": "crypto"})
        self.assertEqual(r.status_code, 201, r.text)

        positions = self.client.get(f"{API}/positions").json()

        self.assertEqual(len(positions), 1)
        self.assertEqual(positions[0]["value"], 250.0)
        self.assertEqual(positions[0]["sub_category"], "stablecoins")

    def test_errors(self):
        r = self.client.post(f"{API}/positions", json={"symbol": "ETH", "amount": 1, "account_id": "missing"})
        self.assertEqual(r.status_code, 404)
        self.client.post(f"{API}/positions", json={"id": "p1", "symbol": "ETH", "amount": 1})
        r = self.client.post(f"{API}/positions", json={"id": "p1", "symbol": "ETH", "amount": 1})
        self.assertEqual(r.status_code, 409)
        r = self.client.put(f"{API}/positions/missing/asset-class", json={"asset_class": "metals"})
        self.assertEqual(r.status_code, 404)

    def test_hide_dust_and_custom_price(self):
        self.client.post(f"{API}/positions", json={"id": "tiny", "symbol": "USDC", "amount": 5, "asset_class": "crypto"})
        self.client.post(f"{API}/positions", json={"id": "tok", "symbol": "MYTOK", "amount": 10})
        r = self.client.put(f"{API}/prices/custom/MYTOK", json={"price": 20})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["symbol"], "mytok")

        visible = self.client.get(f"{API}/positions", params={"hide_dust": True}).json()

        self.assertEqual([p["id"] for p in visible], ["tok"])
        self.assertTrue(visible[0]["has_custom_price"])
        self.assertEqual(visible[0]["value"], 200.0)

    def test_override_and_patch(self):
        self.client.post(f"{API}/positions", json={"id": "gld", "symbol": "GLD", "amount": 2, "asset_class": "etf"})
        r = self.client.put(f"{API}/positions/gld/asset-class", json={"asset_class": "metals"})
        self.assertEqual(r.json()["asset_class_override"], "metals")
        self.assertEqual(self.client.patch(f"{API}/positions/gld", json={"amount": 3}).status_code, 204)
        self.assertEqual(self.client.patch(f"{API}/positions/nope", json={"amount": 3}).status_code, 204)
        positions = self.client.get(f"{API}/positions").json()
        self.assertEqual(positions[0]["amount"], 3)
        self.assertEqual(positions[0]["effective_asset_class"], "metals")


class TestSyncRoutes(RouteTestCase):
    def test_sync_replaces_only_the_named_accounts(self):
        a = self.create_account(name="A", connection={"kind": "wallet", "address": "0xa"})
        b = self.create_account(name="B", connection={"kind": "wallet", "address": "0xb"})
        self.client.post(f"{API}/positions", json={"id": "a1", "symbol": "ETH", "amount": 1, "account_id": a})
        self.client.post(f"{API}/positions", json={"id": "b1", "symbol": "BTC", "amount": 1, "account_id": b})
        self.client.post(f"{API}/positions", json={"id": "loose", "symbol": "AAPL", "amount": 1, "asset_class": "stock"})

        r = self.client.post(f"{API}/sync", json={
            "account_ids": [a],
            "positions": [{"id": "a2", "symbol": "SOL", "amount": 4, "account_id": a, "asset_class": "crypto"}],
            "prices": {"wallet": {"solana": {"symbol": "sol", "price": 150}}},
        })

        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json(), {"synced_accounts": 1, "removed": 1, "added": 1, "preserved": 2,
                                    "quotes_stored": 1})
        by_id = {p["id"]: p for p in self.client.get(f"{API}/positions").json()}
        self.assertEqual(set(by_id), {"a2", "b1", "loose"})
        self.assertEqual(by_id["a2"]["value"], 600.0)

    def test_single_account_sync_owns_its_positions(self):
        a = self.create_account(name="A", connection={"kind": "wallet", "address": "0xa"})
        body = {"account_ids": [a], "positions": [{"symbol": "ETH", "amount": 1, "asset_class": "crypto"}]}

        results = [self.client.post(f"{API}/sync", json=body).json() for _ in range(3)]

        self.assertEqual([r["removed"] for r in results], [0, 1, 1])
        positions = self.client.get(f"{API}/positions").json()
        self.assertEqual([(p["symbol"], p["account_id"]) for p in positions], [("ETH", a)])

    def test_repeated_sync_with_fixed_ids_replaces_the_row(self):
        a = self.create_account(name="A", connection={"kind": "wallet", "address": "0xa"})
        body = {"account_ids": [a], "positions": [{"id": "fixed", "symbol": "ETH", "amount": 1}]}
        for _ in range(2):
            self.assertEqual(self.client.post(f"{API}/sync", json=body).status_code, 200)
        self.assertEqual([p["id"] for p in self.client.get(f"{API}/positions").json()], ["fixed"])

    def test_positions_outside_the_scope_are_rejected(self):
        a = self.create_account(name="A", connection={"kind": "wallet", "address": "0xa"})
        b = self.create_account(name="B", connection={"kind": "wallet", "address": "0xb"})
        unowned = {"account_ids": [a, b], "positions": [{"symbol": "ETH", "amount": 1}]}
        foreign = {"account_ids": [a], "positions": [{"symbol": "ETH", "amount": 1, "account_id": b}]}
        self.assertEqual(self.client.post(f"{API}/sync", json=unowned).status_code, 422)
        self.assertEqual(self.client.post(f"{API}/sync", json=foreign).status_code, 422)
        self.assertEqual(self.client.get(f"{API}/positions").json(), [])

    def test_clashing_position_id_is_a_conflict_and_stores_nothing(self):
        a = self.create_account(name="A", connection={"kind": "wallet", "address": "0xa"})
        self.client.post(f"{API}/positions", json={"id": "taken", "symbol": "AAPL", "amount": 1, "asset_class": "stock"})

        r = self.client.post(f"{API}/sync", json={
            "account_ids": [a],
            "positions": [{"id": "taken", "symbol": "ETH", "amount": 1}],
            "prices": {"wallet": {"eth": {"symbol": "eth", "price": 3000}}},
        })

        self.assertEqual(r.status_code, 409)
        positions = self.client.get(f"{API}/positions").json()
        self.assertEqual([(p["symbol"], p["account_id"]) for p in positions], [("AAPL", None)])
        with SessionLocal() as db:
            self.assertEqual(db.query(PriceQuoteRow).count(), 0)

    def test_sync_unknown_account(self):
        r = self.client.post(f"{API}/sync", json={"account_ids": ["missing"], "positions": []})
        self.assertEqual(r.status_code, 404)

    def test_sync_needs_a_scope(self):
        self.assertEqual(self.client.post(f"{API}/sync", json={"account_ids": []}).status_code, 422)

    def test_refresh_reports_outcome(self):
        orchestrator = RefreshOrchestrator(SessionLocal)
        app.dependency_overrides[get_refresh_orchestrator] = lambda: orchestrator

        r = self.client.post(f"{API}/refresh")
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["status"], "ok")

        orchestrator.try_start()
        r = self.client.post(f"{API}/refresh")
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()["status"], "dropped")
        orchestrator.finish()


class TestPortfolioRoutes(RouteTestCase):
    def setUp(self):
        super().setUp()
        for body in (
            {"symbol": "USDC", "amount": 1000, "asset_class": "crypto"},
            {"symbol": "CASH_EUR_1", "amount": 100, "asset_class": "cash", "name": "Revolut (EUR)"},
            {"symbol": "USDC", "amount": 500, "asset_class": "crypto", "protocol": "Hyperliquid"},
            {"symbol": "BTC-PERP", "amount": 0.05, "name": "BTC-PERP Long", "asset_class": "crypto",
             "protocol": "Hyperliquid", "price_key": "bitcoin"},
        ):
            self.client.post(f"{API}/positions", json=body)
        self.client.post(f"{API}/prices/custom/BTC-PERP", json={"price": 60000})

    def test_summary(self):
        body = self.client.get(f"{API}/summary").json()
        self.assertAlmostEqual(body["total_value"], 1000 + 119 + 500)
        self.assertEqual(body["position_count"], 4)

    def test_cash(self):
        body = self.client.get(f"{API}/cash", params={"include_stablecoins": False}).json()
        self.assertAlmostEqual(body["total"], 119.0)
        self.assertEqual(body["institution_breakdown"][0]["name"], "Revolut")

    def test_perps(self):
        body = self.client.get(f"{API}/perps").json()
        self.assertTrue(body["has_perps"])
        self.assertAlmostEqual(body["metrics"]["long_notional"], 3000.0)
        self.assertAlmostEqual(body["metrics"]["collateral"], 500.0)
        self.assertEqual(self.client.get(f"{API}/perps", params={"sort_key": "bogus"}).status_code, 422)

    def test_exposure(self):
        body = self.client.get(f"{API}/exposure").json()
        self.assertAlmostEqual(body["exposure"]["long_exposure"], 3000.0)
        self.assertGreater(body["concentration"]["top1_percentage"], 0)


class TestCustomPriceRoutes(RouteTestCase):
    def test_lifecycle(self):
        self.client.put(f"{API}/prices/custom/ABC", json={"price": 2.5, "note": "OTC"})
        self.assertEqual([p["symbol"] for p in self.client.get(f"{API}/prices/custom").json()], ["abc"])
        self.assertEqual(self.client.delete(f"{API}/prices/custom/abc").status_code, 204)
        self.assertEqual(self.client.delete(f"{API}/prices/custom/abc").status_code, 404)

    def test_price_must_be_positive(self):
        self.assertEqual(self.client.put(f"{API}/prices/custom/ABC", json={"price": 0}).status_code, 422)


if __name__ == "__main__":
    unittest.main()
