import unittest

from kraken_gateway.integrations.kraken_pairs import (
    base_asset,
    display_name,
    normalize_symbol,
    resolve_result_key,
)


class TestPairResolution(unittest.TestCase):
    def test_direct_key_resolves(self):
        self.assertEqual(resolve_result_key("ADAUSD", ["XXBTZUSD", "ADAUSD"]), "ADAUSD")

    def test_alias_table_preferred_over_fuzzy_match(self):
        # XBTUSD would also fuzzy-match XBTUSDC-like keys; the alias must win
        keys = ["XBTUSDC", "XXBTZUSD"]
        self.assertEqual(resolve_result_key("XBTUSD", keys), "XXBTZUSD")

    def test_alias_order_is_priority_order(self):
        self.assertEqual(resolve_result_key("ETHUSD", ["ETHUSD", "XETHZUSD"]), "XETHZUSD")

    def test_fuzzy_fallback_for_unlisted_pair(self):
        self.assertEqual(resolve_result_key("XLMUSD", ["XXLMZUSD"]), "XXLMZUSD")

    def test_unresolved_pair_returns_none(self):
        self.assertIsNone(resolve_result_key("DOGEUSD", ["XXBTZUSD", "ADAUSD"]))

    def test_normalize_symbol_strips_class_prefixes_and_punctuation(self):
        self.assertEqual(normalize_symbol("XETHZUSD"), normalize_symbol("ETH/USD"))


class TestDisplayNames(unittest.TestCase):
    def test_known_pairs_have_names(self):
        self.assertEqual(display_name("XBTUSD"), "Bitcoin")
        self.assertEqual(display_name("ETH/USD"), "Ethereum")

    def test_unknown_pair_falls_back_to_base_asset(self):
        self.assertEqual(display_name("AVAX/USD"), "AVAX")
        self.assertEqual(display_name("AVAXUSD"), "AVAX")
        self.assertEqual(base_asset("DOGEEUR"), "DOGE")

    def test_bare_symbol_without_quote_is_returned_as_is(self):
        self.assertEqual(base_asset("FOO"), "FOO")


if __name__ == "__main__":
    unittest.main()
