from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from kraken_gateway.api.routes import router, ws_router
from kraken_gateway.config.settings import Settings, get_settings
from kraken_gateway.integrations.kraken_rest import KrakenRestClient
from kraken_gateway.services.fanout import FanoutHub
from kraken_gateway.services.market_refresh import MarketRefreshService
from kraken_gateway.services.snapshot_store import SnapshotStore


def build_pipeline(settings: Settings, *, client=None) -> dict:
    """Construct the client, store, hub and refresh loop wired together."""
    client = client or KrakenRestClient(
        settings.KRAKEN_BASE_URL,
        api_key=settings.KRAKEN_API_KEY,
        min_interval_sec=settings.rate_limit_sec,
        timeout_sec=settings.KRAKEN_REQUEST_TIMEOUT_SEC,
    )
    store = SnapshotStore()
    hub = FanoutHub(
        store=store,
        client=client,
        default_pairs=settings.MARKET_PAIRS,
        heartbeat_interval_sec=settings.WS_HEARTBEAT_INTERVAL_MS / 1000.0,
    )
    refresh = MarketRefreshService(
        client=client,
        store=store,
        hub=hub,
        pairs=settings.MARKET_PAIRS,
        interval_sec=settings.MARKET_REFRESH_INTERVAL_MS / 1000.0,
        allow_partial=settings.MARKET_BATCH_ALLOW_PARTIAL,
    )
    return {
        'kraken_client': client,
        'snapshot_store': store,
        'fanout_hub': hub,
        'market_refresh_service': refresh,
    }


def install_pipeline(target: FastAPI, components: dict) -> None:
    for name, component in components.items():
        setattr(target.state, name, component)


def ensure_pipeline(target: FastAPI) -> None:
    """Build the components from settings unless they are already installed."""
    if getattr(target.state, 'fanout_hub', None) is None:
        install_pipeline(target, build_pipeline(target.state.get_settings()))


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_pipeline(app)
    refresh = app.state.market_refresh_service
    refresh.start()
    try:
        yield
    finally:
        await refresh.stop()
        await app.state.fanout_hub.close()


app = FastAPI(title="Kraken Market Gateway", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/api")
app.include_router(ws_router)

# NOTE: lazy-loaded; settings are read from env on startup, not at import.
app.state.get_settings = get_settings


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
