import os
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from kraken_gateway.config.settings import POPULAR_PAIRS, Settings


class TestKrakenSettings(unittest.TestCase):
    def test_defaults_without_env(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.KRAKEN_BASE_URL, "https://api.kraken.com/0")
        self.assertIsNone(settings.KRAKEN_API_KEY)
        self.assertEqual(settings.MARKET_PAIRS, POPULAR_PAIRS)
        self.assertEqual(settings.MARKET_REFRESH_INTERVAL_MS, 15000)
        self.assertEqual(settings.WS_HEARTBEAT_INTERVAL_MS, 30000)
        self.assertFalse(settings.MARKET_BATCH_ALLOW_PARTIAL)
        self.assertEqual(settings.rate_limit_sec, 1.0)

    def test_api_key_shortens_rate_limit(self):
        with patch.dict(os.environ, {"KRAKEN_API_KEY": "key"}, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.rate_limit_sec, 0.5)

    def test_explicit_rate_limit_wins(self):
        with patch.dict(os.environ, {"KRAKEN_API_KEY": "key", "KRAKEN_RATE_LIMIT_MS": "2000"}, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.rate_limit_sec, 2.0)

    def test_pairs_parse_comma_separated_values(self):
        env = {"MARKET_PAIRS": " xbtusd, ETHUSD , ", "MARKET_BATCH_ALLOW_PARTIAL": "true"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.MARKET_PAIRS, ["XBTUSD", "ETHUSD"])
        self.assertTrue(settings.MARKET_BATCH_ALLOW_PARTIAL)

    def test_invalid_interval_fails_validation(self):
        with patch.dict(os.environ, {"MARKET_REFRESH_INTERVAL_MS": "0"}, clear=True):
            with self.assertRaises(ValidationError):
                Settings.from_env()


if __name__ == "__main__":
    unittest.main()
