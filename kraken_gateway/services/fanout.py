from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError
from fastapi.websockets import WebSocketState

from kraken_gateway.errors import UpstreamError
from kraken_gateway.schemas.market import OrderBookRecord, TickerRecord, TradeHistory
from kraken_gateway.schemas.stream import HeartbeatMessage, StreamMessage, SubscribeRequest
from kraken_gateway.services.snapshot_store import SnapshotStore


class SubscriberConnection:
    def __init__(self, websocket: Any, conn_id: int) -> None:
        self.websocket = websocket
        self.id = conn_id
        self.pairs: list[str] = []
        self.heartbeat_task: asyncio.Task | None = None
        self.closed = False
        self.messages_sent = 0

    @property
    def is_open(self) -> bool:
        if self.closed:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, payload: str) -> None:
        await self.websocket.send_text(payload)
        self.messages_sent += 1


class FanoutHub:
    """Push channel: subscription snapshots, periodic ticker broadcast, heartbeats."""

    def __init__(
        self,
        *,
        store: SnapshotStore,
        client: Any,
        default_pairs: list[str],
        heartbeat_interval_sec: float = 30.0,
        initial_depth: int = 5,
        initial_trade_count: int = 20,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.client = client
        self.default_pairs = list(default_pairs)
        self.heartbeat_interval_sec = heartbeat_interval_sec
        self.initial_depth = initial_depth
        self.initial_trade_count = initial_trade_count
        self._sleep = sleep
        self._clock = clock
        self._connections: dict[int, SubscriberConnection] = {}
        self._next_id = 0

        self.broadcasts_sent = 0
        self.heartbeats_sent = 0
        self.initial_pushes = 0
        self.initial_push_errors = 0
        self.ignored_messages = 0

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connections(self) -> list[SubscriberConnection]:
        return list(self._connections.values())

    def register(self, websocket: Any) -> SubscriberConnection:
        self._next_id += 1
        conn = SubscriberConnection(websocket, self._next_id)
        self._connections[conn.id] = conn
        conn.heartbeat_task = asyncio.create_task(self._heartbeat(conn), name=f"ws-heartbeat-{conn.id}")
        print(f"[FANOUT][connect] conn={conn.id} connections={self.connection_count}", flush=True)
        return conn

    def disconnect(self, conn: SubscriberConnection) -> None:
        conn.closed = True
        if conn.heartbeat_task is not None and not conn.heartbeat_task.done():
            conn.heartbeat_task.cancel()
        if self._connections.pop(conn.id, None) is not None:
            print(f"[FANOUT][disconnect] conn={conn.id} connections={self.connection_count}", flush=True)

    async def close(self) -> None:
        tasks = []
        for conn in self.connections():
            self.disconnect(conn)
            if conn.heartbeat_task is not None:
                tasks.append(conn.heartbeat_task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def handle_message(self, conn: SubscriberConnection, raw: str) -> int:
        """Process one inbound client message; returns the number of messages pushed back."""
        try:
            data = json.loads(raw)
        except ValueError:
            self.ignored_messages += 1
            print(f"[FANOUT][message_skip] conn={conn.id} reason=invalid_json", flush=True)
            return 0
        if not isinstance(data, dict) or data.get("type") != "subscribe":
            self.ignored_messages += 1
            return 0

        try:
            request = SubscribeRequest.model_validate(data)
        except PydanticValidationError as exc:
            self.ignored_messages += 1
            print(f"[FANOUT][message_skip] conn={conn.id} reason=invalid_subscribe errors={exc.error_count()}", flush=True)
            return 0

        conn.pairs = request.pairs or list(self.default_pairs)
        print(f"[FANOUT][subscribe] conn={conn.id} pairs={','.join(conn.pairs)}", flush=True)
        return await self.push_initial(conn, conn.pairs)

    async def push_initial(self, conn: SubscriberConnection, pairs: list[str]) -> int:
        sent = 0
        for pair in pairs:
            try:
                ticker, order_book, trades = await asyncio.gather(
                    self._ticker_for(pair),
                    self._order_book_for(pair),
                    self._trades_for(pair),
                )
            except UpstreamError as exc:
                self.initial_push_errors += 1
                print(f"[FANOUT][initial_push_error] conn={conn.id} pair={pair} error={exc}", flush=True)
                continue

            if not conn.is_open:
                continue
            messages = (
                StreamMessage(type="ticker", pair=pair, data=ticker.to_wire()),
                StreamMessage(type="orderBook", pair=pair, data=order_book.to_wire()),
                StreamMessage(type="trades", pair=pair, data=trades.to_wire()),
            )
            for message in messages:
                await conn.send(message.model_dump_json())
                sent += 1
        self.initial_pushes += 1
        return sent

    async def broadcast_tickers(self, records: list[TickerRecord]) -> int:
        """Send every ticker to every open connection, whatever it subscribed to."""
        sent = 0
        for record in records:
            payload = StreamMessage(type="ticker", pair=record.pair, data=record.to_wire()).model_dump_json()
            for conn in self.connections():
                if not conn.is_open:
                    continue
                try:
                    await conn.send(payload)
                    sent += 1
                except Exception as exc:
                    print(f"[FANOUT][broadcast_error] conn={conn.id} pair={record.pair} error={exc}", flush=True)
        self.broadcasts_sent += sent
        return sent

    async def _heartbeat(self, conn: SubscriberConnection) -> None:
        while True:
            await self._sleep(self.heartbeat_interval_sec)
            if not conn.is_open:
                return
            try:
                await conn.send(HeartbeatMessage(ts=int(self._clock())).model_dump_json())
            except Exception as exc:
                print(f"[FANOUT][heartbeat_error] conn={conn.id} error={exc}", flush=True)
                return
            self.heartbeats_sent += 1

    async def _ticker_for(self, pair: str) -> TickerRecord:
        cached = self.store.get("ticker", pair)
        if cached is not None:
            return cached
        record = await self.client.fetch_ticker(pair)
        self.store.put("ticker", pair, record)
        return record

    async def _order_book_for(self, pair: str) -> OrderBookRecord:
        cached = self.store.get("orderbook", pair)
        if cached is not None:
            return cached
        record = await self.client.fetch_order_book(pair, self.initial_depth)
        self.store.put("orderbook", pair, record)
        return record

    async def _trades_for(self, pair: str) -> TradeHistory:
        cached = self.store.get("trades", pair)
        if cached is not None:
            return cached
        record = await self.client.fetch_trade_history(pair, self.initial_trade_count)
        self.store.put("trades", pair, record)
        return record

    def metrics(self) -> dict[str, int]:
        return {
            "connections": self.connection_count,
            "broadcasts_sent": self.broadcasts_sent,
            "heartbeats_sent": self.heartbeats_sent,
            "initial_pushes": self.initial_pushes,
            "initial_push_errors": self.initial_push_errors,
            "ignored_messages": self.ignored_messages,
        }
