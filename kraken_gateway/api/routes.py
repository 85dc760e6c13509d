from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect

from kraken_gateway.errors import PairNotFoundError, UpstreamError

router = APIRouter()
ws_router = APIRouter()

_CACHED_KINDS = {"ticker", "orderbook", "trades", "market-data"}


def _upstream_failure(summary: str, exc: UpstreamError) -> HTTPException:
    print(f"[API][upstream_error] op={summary!r} error={exc}", flush=True)
    status_code = 404 if isinstance(exc, PairNotFoundError) else 502
    return HTTPException(status_code=status_code, detail={"error": summary, "message": str(exc)})


@router.get('/ticker/{pair}')
async def get_ticker(pair: str, request: Request):
    state = request.app.state
    try:
        record = await state.kraken_client.fetch_ticker(pair)
    except UpstreamError as exc:
        raise _upstream_failure('Failed to fetch ticker data', exc) from exc
    state.snapshot_store.put('ticker', pair, record)
    return record.to_wire()


@router.get('/orderbook/{pair}')
async def get_order_book(pair: str, request: Request, count: int = Query(default=5, ge=1, le=500)):
    state = request.app.state
    try:
        record = await state.kraken_client.fetch_order_book(pair, count)
    except UpstreamError as exc:
        raise _upstream_failure('Failed to fetch order book', exc) from exc
    state.snapshot_store.put('orderbook', pair, record)
    return record.to_wire()


@router.get('/trades/{pair}')
async def get_trades(pair: str, request: Request, count: int = Query(default=100, ge=1, le=1000)):
    state = request.app.state
    try:
        record = await state.kraken_client.fetch_trade_history(pair, count)
    except UpstreamError as exc:
        raise _upstream_failure('Failed to fetch recent trades', exc) from exc
    state.snapshot_store.put('trades', pair, record)
    return record.to_wire()


@router.get('/market-data')
async def get_market_data(request: Request):
    service = request.app.state.market_refresh_service
    try:
        records = await service.load_market_data()
    except UpstreamError as exc:
        raise _upstream_failure('Failed to fetch market data', exc) from exc
    return [r.to_wire() for r in records]


@router.post('/refresh')
async def force_refresh(request: Request):
    service = request.app.state.market_refresh_service
    try:
        return await service.force_refresh()
    except UpstreamError as exc:
        raise _upstream_failure('Failed to refresh data', exc) from exc


def _read_cached(store, kind: str, pair: str | None):
    if kind not in _CACHED_KINDS:
        raise HTTPException(status_code=400, detail={'error': 'Invalid type'})

    if kind == 'market-data':
        last_updated = store.get_last_updated()
        return {
            'data': [r.to_wire() for r in store.get_market_list()],
            'lastUpdated': last_updated.isoformat() if last_updated else None,
        }

    if kind == 'ticker' and pair is None:
        return [r.to_wire() for r in store.list_kind('ticker')]

    if pair is None:
        label = 'order book' if kind == 'orderbook' else kind
        raise HTTPException(status_code=400, detail={'error': f'Pair required for {label}'})

    record = store.get(kind, pair)
    return record.to_wire() if record is not None else None


@router.get('/cached/{kind}')
def get_cached_kind(kind: str, request: Request):
    return _read_cached(request.app.state.snapshot_store, kind, None)


@router.get('/cached/{kind}/{pair}')
def get_cached_pair(kind: str, pair: str, request: Request):
    return _read_cached(request.app.state.snapshot_store, kind, pair)


@router.get('/status')
async def get_status(request: Request):
    client = request.app.state.kraken_client
    try:
        system_status = await client.fetch_system_status()
    except UpstreamError as exc:
        raise _upstream_failure('Failed to fetch exchange status', exc) from exc
    return {'upstream': client.status(), 'systemStatus': system_status}


@router.get('/metrics/pipeline')
def pipeline_metrics(request: Request):
    state = request.app.state
    return {
        'store': state.snapshot_store.stats(),
        'refresh': state.market_refresh_service.metrics(),
        'fanout': state.fanout_hub.metrics(),
        'upstream': state.kraken_client.status(),
    }


@ws_router.websocket('/ws')
async def market_stream(websocket: WebSocket):
    hub = websocket.app.state.fanout_hub
    await websocket.accept()
    conn = hub.register(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                # binary frames carry the same JSON payload
                raw = (message.get("bytes") or b"").decode("utf-8", "replace")
            await hub.handle_message(conn, raw)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(conn)
