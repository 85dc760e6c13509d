from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from kraken_gateway.errors import PairNotFoundError, UpstreamError
from kraken_gateway.schemas.market import TickerRecord
from kraken_gateway.services.fanout import FanoutHub
from kraken_gateway.services.snapshot_store import SnapshotStore


class MarketRefreshService:
    """Timer-driven ticker refresh with on-demand full refresh.

    State: IDLE -> FETCHING -> STORING -> BROADCASTING -> IDLE.
    """

    def __init__(
        self,
        *,
        client: Any,
        store: SnapshotStore,
        hub: FanoutHub,
        pairs: list[str],
        interval_sec: float = 15.0,
        allow_partial: bool = False,
        refresh_depth: int = 10,
        refresh_trade_count: int = 50,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.store = store
        self.hub = hub
        self.pairs = list(pairs)
        self.interval_sec = interval_sec
        self.allow_partial = allow_partial
        self.refresh_depth = refresh_depth
        self.refresh_trade_count = refresh_trade_count
        self._sleep = sleep
        self._task: asyncio.Task | None = None

        self.state = "IDLE"
        self.cycles = 0
        self.skipped_idle = 0
        self.failed_cycles = 0
        self.last_error: str | None = None

    async def _fetch_batch(self) -> list[TickerRecord]:
        try:
            return await self.client.fetch_tickers_batch(self.pairs, allow_partial=self.allow_partial)
        except PairNotFoundError as exc:
            if not self.allow_partial or not exc.resolved:
                raise
            print(
                f"[REFRESH][partial_batch] missing={','.join(exc.pairs)} resolved={len(exc.resolved)}",
                flush=True,
            )
            return exc.resolved

    def _store_batch(self, records: list[TickerRecord]) -> None:
        for record in records:
            self.store.put("ticker", record.pair, record)
        self.store.put_market_list(records)

    async def load_market_data(self) -> list[TickerRecord]:
        """Batch-fetch the pair universe and store it; upstream errors propagate."""
        self.state = "FETCHING"
        try:
            records = await self._fetch_batch()
            self.state = "STORING"
            self._store_batch(records)
            return records
        finally:
            self.state = "IDLE"

    async def force_refresh(self) -> dict[str, Any]:
        records = await self.load_market_data()

        refreshed: list[str] = []
        failed: list[str] = []
        for pair in self.pairs:
            try:
                order_book, trades = await asyncio.gather(
                    self.client.fetch_order_book(pair, self.refresh_depth),
                    self.client.fetch_trade_history(pair, self.refresh_trade_count),
                )
            except UpstreamError as exc:
                failed.append(pair)
                print(f"[REFRESH][pair_error] pair={pair} error={exc}", flush=True)
                continue
            self.store.put("orderbook", pair, order_book)
            self.store.put("trades", pair, trades)
            refreshed.append(pair)

        print(
            f"[REFRESH][force_refresh] tickers={len(records)} refreshed={len(refreshed)} failed={len(failed)}",
            flush=True,
        )
        return {
            "success": True,
            "message": "Data refreshed successfully",
            "refreshed_pairs": refreshed,
            "failed_pairs": failed,
        }

    async def tick(self) -> bool:
        """Run one timer cycle. Returns True when a broadcast went out."""
        if self.hub.connection_count == 0:
            self.skipped_idle += 1
            return False

        self.cycles += 1
        try:
            records = await self.load_market_data()
        except UpstreamError as exc:
            self.failed_cycles += 1
            self.last_error = str(exc)
            print(f"[REFRESH][cycle_error] error={exc}", flush=True)
            return False

        self.state = "BROADCASTING"
        try:
            sent = await self.hub.broadcast_tickers(records)
        finally:
            self.state = "IDLE"
        self.last_error = None
        print(f"[REFRESH][cycle] pairs={len(records)} sent={sent} connections={self.hub.connection_count}", flush=True)
        return True

    async def run_forever(self) -> None:
        while True:
            await self._sleep(self.interval_sec)
            try:
                await self.tick()
            except Exception as exc:
                self.failed_cycles += 1
                self.last_error = str(exc)
                print(f"[REFRESH][cycle_crash] error={exc}", flush=True)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="market-refresh-loop")
            print(f"[REFRESH][loop_start] interval_sec={self.interval_sec} pairs={','.join(self.pairs)}", flush=True)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        print("[REFRESH][loop_stop]", flush=True)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def metrics(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "running": self.running,
            "cycles": self.cycles,
            "skipped_idle": self.skipped_idle,
            "failed_cycles": self.failed_cycles,
            "last_error": self.last_error,
        }
