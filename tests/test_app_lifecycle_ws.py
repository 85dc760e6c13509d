import importlib.util
import os
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi.testclient import TestClient

from kraken_gateway.config.settings import Settings, get_settings
from kraken_gateway.integrations.kraken_rest import KrakenRestClient
from kraken_gateway.main import app, build_pipeline, install_pipeline
from market_fixtures import StubKrakenClient

COMPONENTS = ("kraken_client", "snapshot_store", "fanout_hub", "market_refresh_service")
MAIN_PATH = Path(__file__).resolve().parents[1] / "kraken_gateway" / "main.py"


class AppLifecycleWsTest(unittest.TestCase):
    def setUp(self):
        self._original = {name: getattr(app.state, name, None) for name in COMPONENTS}
        self._original_get_settings = app.state.get_settings
        self.stub = StubKrakenClient()
        install_pipeline(app, build_pipeline(Settings(MARKET_PAIRS=["XBTUSD", "ETHUSD"]), client=self.stub))

    def tearDown(self):
        install_pipeline(app, self._original)
        app.state.get_settings = self._original_get_settings

    def test_refresh_loop_starts_on_startup_and_stops_on_shutdown(self):
        refresh = app.state.market_refresh_service

        with TestClient(app):
            self.assertTrue(refresh.running)

        self.assertFalse(refresh.running)

    def test_subscribe_yields_three_messages_for_pair(self):
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "subscribe", "pairs": ["XBTUSD"]})
                messages = [ws.receive_json() for _ in range(3)]

        self.assertEqual([m["type"] for m in messages], ["ticker", "orderBook", "trades"])
        self.assertEqual({m["pair"] for m in messages}, {"XBTUSD"})
        self.assertEqual(messages[0]["data"]["pair"], "XBTUSD")
        self.assertIn(("orderbook", "XBTUSD", 5), self.stub.calls)
        self.assertIn(("trades", "XBTUSD", 20), self.stub.calls)

    def test_binary_subscribe_frame_is_processed(self):
        hub = app.state.fanout_hub
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_bytes(b'{"type":"subscribe","pairs":["XBTUSD"]}')
                messages = [ws.receive_json() for _ in range(3)]
                ws.send_bytes(b"\xff\xfe not utf-8")
                ws.send_json({"type": "subscribe", "pairs": ["ETHUSD"]})
                follow_up = ws.receive_json()
                self.assertEqual(hub.connection_count, 1)

        self.assertEqual([m["type"] for m in messages], ["ticker", "orderBook", "trades"])
        self.assertEqual({m["pair"] for m in messages}, {"XBTUSD"})
        self.assertEqual(follow_up["pair"], "ETHUSD")
        self.assertEqual(hub.metrics()["ignored_messages"], 1)

    def test_subscribe_reads_from_store_before_upstream(self):
        with TestClient(app) as client:
            client.get("/api/ticker/ETHUSD")
            self.stub.calls.clear()
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "subscribe", "pairs": ["ETHUSD"]})
                ticker = ws.receive_json()
                ws.receive_json()
                ws.receive_json()

        self.assertEqual(ticker["type"], "ticker")
        self.assertNotIn(("ticker", "ETHUSD"), self.stub.calls)

    def test_shutdown_drops_connections(self):
        hub = app.state.fanout_hub
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "subscribe", "pairs": ["XBTUSD"]})
                for _ in range(3):
                    ws.receive_json()
                self.assertEqual(hub.connection_count, 1)

        self.assertEqual(hub.connection_count, 0)

    def test_startup_builds_pipeline_from_settings_when_missing(self):
        install_pipeline(app, {name: None for name in COMPONENTS})
        app.state.get_settings = lambda: Settings(MARKET_PAIRS=["ADAUSD"], MARKET_REFRESH_INTERVAL_MS=3600000)

        with TestClient(app):
            refresh = app.state.market_refresh_service
            self.assertTrue(refresh.running)
            self.assertIsInstance(app.state.kraken_client, KrakenRestClient)
            self.assertEqual(refresh.pairs, ["ADAUSD"])
            self.assertEqual(refresh.interval_sec, 3600.0)

        self.assertFalse(refresh.running)


class AppImportTest(unittest.TestCase):
    def setUp(self):
        get_settings.cache_clear()

    def tearDown(self):
        get_settings.cache_clear()

    def test_import_does_not_read_settings(self):
        spec = importlib.util.spec_from_file_location("kraken_gateway_main_fresh", MAIN_PATH)
        module = importlib.util.module_from_spec(spec)

        with patch.dict(os.environ, {"MARKET_REFRESH_INTERVAL_MS": "0"}):
            spec.loader.exec_module(module)

        self.assertIsNone(getattr(module.app.state, "fanout_hub", None))
        self.assertIs(module.app.state.get_settings, get_settings)
        self.assertEqual(get_settings.cache_info().currsize, 0)


if __name__ == "__main__":
    unittest.main()
