from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Union

from kraken_gateway.schemas.market import OrderBookRecord, TickerRecord, TradeHistory

SnapshotKind = Literal["ticker", "orderbook", "trades"]
SnapshotRecord = Union[TickerRecord, OrderBookRecord, TradeHistory]

SNAPSHOT_KINDS: tuple[str, ...] = ("ticker", "orderbook", "trades")


class SnapshotStore:
    """Latest record per (kind, pair), plus the last market-data list.

    Last write wins; nothing is merged, versioned or evicted.
    """

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, SnapshotRecord]] = {kind: {} for kind in SNAPSHOT_KINDS}
        self._market_list: list[TickerRecord] = []
        self._last_updated: datetime | None = None
        self.writes = 0

    def _bucket(self, kind: str) -> dict[str, SnapshotRecord]:
        try:
            return self._rows[kind]
        except KeyError:
            raise ValueError(f"unknown snapshot kind: {kind}") from None

    def put(self, kind: SnapshotKind, pair: str, record: SnapshotRecord) -> None:
        self._bucket(kind)[pair] = record
        self.writes += 1

    def get(self, kind: SnapshotKind, pair: str) -> SnapshotRecord | None:
        return self._bucket(kind).get(pair)

    def list_kind(self, kind: SnapshotKind) -> list[SnapshotRecord]:
        return list(self._bucket(kind).values())

    def put_market_list(self, records: list[TickerRecord], updated_at: datetime | None = None) -> None:
        self._market_list = list(records)
        self._last_updated = updated_at or datetime.now(timezone.utc)
        self.writes += 1

    def get_market_list(self) -> list[TickerRecord]:
        return list(self._market_list)

    def get_last_updated(self) -> datetime | None:
        return self._last_updated

    def stats(self) -> dict:
        return {
            "cached_tickers": len(self._rows["ticker"]),
            "cached_orderbooks": len(self._rows["orderbook"]),
            "cached_trades": len(self._rows["trades"]),
            "market_list_size": len(self._market_list),
            "last_updated": self._last_updated.isoformat() if self._last_updated else None,
            "writes": self.writes,
        }
