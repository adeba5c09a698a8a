import unittest
from types import SimpleNamespace

from services.classifier import (
    ClassifierTables,
    PositionClassifier,
    classify,
    detect_perp_trade,
    get_asset_class,
    is_perp_protocol,
    is_stablecoin,
)


def _pos(symbol, name="", protocol=None, asset_class=None, is_debt=False, override=None):
    return SimpleNamespace(
        symbol=symbol,
        name=name,
        protocol=protocol,
        asset_class=asset_class,
        asset_class_override=override,
        is_debt=is_debt,
    )


class TestStablecoins(unittest.TestCase):
    def test_numeric_suffixed_family(self):
        self.assertTrue(is_stablecoin("USD0"))
        self.assertTrue(is_stablecoin("USD0++"))

    def test_usd0pp_position_is_stablecoins_subcategory(self):
        result = classify(_pos("USD0++", name="USD0++"))
        self.assertEqual(result.sub_category, "stablecoins")
        self.assertEqual(result.asset_class, "crypto")
        self.assertFalse(result.is_debt)

    def test_staked_variant_and_plain_usd(self):
        self.assertTrue(is_stablecoin("sUSDe"))
        self.assertTrue(is_stablecoin("usd"))

    def test_pendle_principal_tokens(self):
        self.assertTrue(is_stablecoin("PT-sUSDe-27MAR2025"))
        self.assertFalse(is_stablecoin("PT-weETH-26JUN2025"))

    def test_extra_table_entries(self):
        classifier = PositionClassifier(ClassifierTables().with_stablecoins("MYUSD"))
        self.assertTrue(classifier.is_stablecoin("myusd"))
        self.assertFalse(is_stablecoin("myusd"))

    def test_underlying_fiat(self):
        classifier = PositionClassifier()
        self.assertEqual(classifier.get_underlying_fiat("USDC"), "USD")
        self.assertEqual(classifier.get_underlying_fiat("EURC"), "EUR")
        self.assertIsNone(classifier.get_underlying_fiat("ETH"))


class TestPerpTrades(unittest.TestCase):
    def test_short_eth_perp_is_debt(self):
        result = classify(_pos("ETH-PERP", name="ETH-PERP Short"))
        self.assertEqual(result.sub_category, "perp_trade")
        self.assertTrue(result.is_debt)

    def test_long_on_perp_venue(self):
        result = classify(_pos("BTC", name="BTC Long (Hyperliquid)", protocol="Hyperliquid"))
        self.assertEqual(result.sub_category, "perp_trade")
        self.assertFalse(result.is_debt)

    def test_long_keeps_upstream_debt_flag(self):
        result = classify(_pos("BTC", name="BTC Long", protocol="Hyperliquid", is_debt=True))
        self.assertTrue(result.is_debt)

    def test_marker_inside_word_is_not_a_trade(self):
        self.assertFalse(detect_perp_trade("Longhorn Token").is_perp_trade)
        result = classify(_pos("HORN", name="Longhorn Token", protocol="Hyperliquid"))
        self.assertNotEqual(result.sub_category, "perp_trade")

    def test_marker_off_venue_is_spot(self):
        result = classify(_pos("ETH", name="ETH Long", protocol="Uniswap V3", asset_class="crypto"))
        self.assertEqual(result.sub_category, "spot")

    def test_margin_on_perp_venue(self):
        result = classify(_pos("USDC", name="USDC", protocol="Hyperliquid Spot Margin"))
        self.assertEqual(result.sub_category, "perp_margin")

    def test_perp_protocol_aliases(self):
        self.assertTrue(is_perp_protocol("Drift Protocol"))
        self.assertTrue(is_perp_protocol("hyperliquid"))
        self.assertFalse(is_perp_protocol("Aave V3"))
        self.assertFalse(is_perp_protocol(None))


class TestAssetClass(unittest.TestCase):
    def test_unknown_symbol_is_other(self):
        self.assertEqual(get_asset_class("ZZZQ"), "other")

    def test_declared_types(self):
        self.assertEqual(get_asset_class("AAPL", "stock"), "equity")
        self.assertEqual(get_asset_class("SPY", "etf"), "equity")
        self.assertEqual(get_asset_class("CASH_EUR_1", "manual"), "cash")
        self.assertEqual(get_asset_class("PAXG"), "metals")

    def test_symbol_fallback(self):
        self.assertEqual(get_asset_class("wstETH"), "crypto")
        self.assertEqual(get_asset_class("chf"), "cash")
        self.assertEqual(get_asset_class("VOO"), "equity")

    def test_override_wins(self):
        result = classify(_pos("GLD", asset_class="equity", override="metals"))
        self.assertEqual(result.asset_class, "metals")

    def test_exposure_buckets(self):
        classifier = PositionClassifier()
        self.assertEqual(classifier.classify_exposure(_pos("ETH", asset_class="crypto"), 100.0), "spot-long")
        self.assertEqual(classifier.classify_exposure(_pos("ETH", asset_class="crypto"), -100.0), "spot-short")
        self.assertEqual(classifier.classify_exposure(_pos("USDC"), -50.0), "borrowed-cash")
        self.assertEqual(
            classifier.classify_exposure(_pos("ETH-PERP", name="ETH Short", protocol="Hyperliquid"), -10.0),
            "perp-short",
        )
        self.assertEqual(classifier.classify_exposure(_pos("HYPE", protocol="Hyperliquid"), 10.0), "perp-spot")

    def test_perp_contract_without_venue_is_still_a_perp(self):
        classifier = PositionClassifier()
        short = _pos("ETH-PERP", name="ETH-PERP Short", asset_class="crypto")
        self.assertEqual(classifier.classify_exposure(short, -6000.0), "perp-short")
        self.assertEqual(classifier.classify_exposure(_pos("BTC-PERP", asset_class="crypto"), 500.0), "perp-long")
        self.assertEqual(classifier.perp_venue(None), "Unknown")


if __name__ == "__main__":
    unittest.main()
