from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

import requests
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from kraken_gateway.errors import (
    PairNotFoundError,
    UpstreamApiError,
    UpstreamError,
    UpstreamHttpError,
    ValidationError,
)
from kraken_gateway.integrations.kraken_pairs import display_name, resolve_result_key
from kraken_gateway.schemas.kraken import KrakenDepthPayload, KrakenTickerPayload, UpstreamEnvelope
from kraken_gateway.schemas.market import (
    OrderBookEntry,
    OrderBookRecord,
    TickerRecord,
    Trade,
    TradeHistory,
)

DEFAULT_BASE_URL = "https://api.kraken.com/0"


class RateLimiter:
    """Fixed minimum delay between consecutive upstream requests."""

    def __init__(
        self,
        min_interval_sec: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.min_interval_sec = float(min_interval_sec)
        self._clock = clock
        self._sleep = sleep
        self._last_request_at: float | None = None
        self._lock = asyncio.Lock()
        self.waits = 0

    async def acquire(self) -> float:
        """Wait out the remainder of the interval; returns the delay slept."""
        async with self._lock:
            delay = 0.0
            if self._last_request_at is not None:
                elapsed = self._clock() - self._last_request_at
                if elapsed < self.min_interval_sec:
                    delay = self.min_interval_sec - elapsed
                    self.waits += 1
                    await self._sleep(delay)
            self._last_request_at = self._clock()
            return delay


def _to_float(value: Any, *, field_name: str) -> float:
    try:
        if value is None or value == "":
            raise ValueError(f"missing value for {field_name}")
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"invalid numeric value for {field_name}: {value!r}") from exc


def _at(values: list, index: int, *, field_name: str) -> float:
    if len(values) <= index:
        raise ValidationError(f"missing {field_name}[{index}]")
    return _to_float(values[index], field_name=field_name)


def _pct(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return 0.0
    return numerator / denominator * 100


def _validate(model: type[BaseModel], payload: Any, *, what: str) -> Any:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(f"unexpected {what} payload: {exc.error_count()} error(s)") from exc


def decode_envelope(payload: Any) -> Any:
    """Check the `{error, result}` envelope and return `result`."""
    envelope = _validate(UpstreamEnvelope, payload, what="envelope")
    if envelope.error:
        raise UpstreamApiError(envelope.error)
    if envelope.result is None:
        raise ValidationError("response envelope has no result")
    return envelope.result


def _result_entry(result: Any) -> Any:
    if not isinstance(result, dict):
        raise ValidationError("result must be an object keyed by pair")
    # trades responses carry a `last` cursor next to the pair key
    keys = [k for k in result if k != "last"]
    if not keys:
        raise ValidationError("result holds no pair data")
    return result[keys[0]]


def build_ticker(pair: str, payload: KrakenTickerPayload) -> TickerRecord:
    last = _at(payload.c, 0, field_name="c")
    open_ = _to_float(payload.o, field_name="o")
    bid = _at(payload.b, 0, field_name="b")
    ask = _at(payload.a, 0, field_name="a")
    spread = ask - bid
    return TickerRecord(
        pair=pair,
        name=display_name(pair),
        last_price=last,
        change_24h=last - open_,
        change_percent_24h=_pct(last - open_, open_),
        volume_24h=_at(payload.v, 1, field_name="v"),
        high_24h=_at(payload.h, 1, field_name="h"),
        low_24h=_at(payload.l, 1, field_name="l"),
        bid=bid,
        ask=ask,
        spread=spread,
        spread_percent=_pct(spread, bid) if bid > 0 else 0.0,
    )


def _book_side(levels: list[list], *, field_name: str) -> list[OrderBookEntry]:
    out: list[OrderBookEntry] = []
    for level in levels:
        out.append(
            OrderBookEntry(
                price=_at(level, 0, field_name=field_name),
                volume=_at(level, 1, field_name=field_name),
                timestamp=_at(level, 2, field_name=field_name),
            )
        )
    return out


def build_order_book(pair: str, payload: KrakenDepthPayload, depth: int) -> OrderBookRecord:
    asks = sorted(_book_side(payload.asks, field_name="asks"), key=lambda e: e.price)[:depth]
    bids = sorted(_book_side(payload.bids, field_name="bids"), key=lambda e: e.price, reverse=True)[:depth]

    best_ask = asks[0].price if asks else 0.0
    best_bid = bids[0].price if bids else 0.0
    if not asks or not bids:
        spread = 0.0
    else:
        spread = best_ask - best_bid
    return OrderBookRecord(
        pair=pair,
        asks=tuple(asks),
        bids=tuple(bids),
        spread=spread,
        spread_percent=_pct(spread, best_bid) if best_bid > 0 else 0.0,
    )


def build_trade_history(pair: str, rows: Any) -> TradeHistory:
    if not isinstance(rows, list):
        raise ValidationError("trades payload must be a list")
    trades: list[Trade] = []
    for row in rows:
        if not isinstance(row, list) or len(row) < 4:
            raise ValidationError(f"malformed trade row: {row!r}")
        trades.append(
            Trade(
                price=_to_float(row[0], field_name="price"),
                volume=_to_float(row[1], field_name="volume"),
                time=_to_float(row[2], field_name="time"),
                side="buy" if row[3] == "b" else "sell",
            )
        )
    return TradeHistory(pair=pair, trades=tuple(trades))


class KrakenRestClient:
    """Kraken public REST client: rate-limited fetches normalized into market records."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        api_key: Optional[str] = None,
        session: Optional[Any] = None,
        rate_limiter: Optional[RateLimiter] = None,
        min_interval_sec: Optional[float] = None,
        timeout_sec: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.session = session or requests
        if rate_limiter is None:
            if min_interval_sec is None:
                min_interval_sec = 0.5 if api_key else 1.0
            rate_limiter = RateLimiter(min_interval_sec)
        self.rate_limiter = rate_limiter
        self.timeout_sec = timeout_sec
        self.requests_sent = 0
        self.request_errors = 0

    async def _request(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        await self.rate_limiter.acquire()
        url = f"{self.base_url}{path}"
        try:
            result = await asyncio.to_thread(self._get, url, params)
        except UpstreamError as exc:
            self.request_errors += 1
            print(f"[KRAKEN][request_error] path={path} error={exc}", flush=True)
            raise
        return result

    def _get(self, url: str, params: Optional[dict[str, Any]]) -> Any:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout_sec)
        except requests.RequestException as exc:
            raise UpstreamError(f"request failed: {exc}") from exc
        self.requests_sent += 1

        status_code = response.status_code
        if not 200 <= status_code < 300:
            raise UpstreamHttpError(status_code, str(getattr(response, "reason", "") or ""))

        try:
            payload = response.json()
        except ValueError as exc:
            raise ValidationError("response body is not valid JSON") from exc
        return decode_envelope(payload)

    async def fetch_ticker(self, pair: str) -> TickerRecord:
        result = await self._request("/public/Ticker", {"pair": pair})
        payload = _validate(KrakenTickerPayload, _result_entry(result), what="ticker")
        return build_ticker(pair, payload)

    async def fetch_order_book(self, pair: str, depth: int = 5) -> OrderBookRecord:
        result = await self._request("/public/Depth", {"pair": pair, "count": depth})
        payload = _validate(KrakenDepthPayload, _result_entry(result), what="depth")
        return build_order_book(pair, payload, depth)

    async def fetch_trade_history(self, pair: str, count: int = 100) -> TradeHistory:
        result = await self._request("/public/Trades", {"pair": pair, "count": count})
        return build_trade_history(pair, _result_entry(result))

    async def fetch_tickers_batch(self, pairs: list[str], *, allow_partial: bool = False) -> list[TickerRecord]:
        """One upstream call for every pair.

        Fails fast on the first pair with no matching result key. With
        `allow_partial`, every pair is tried and the error lists all missing
        pairs and carries the resolved records.
        """
        if not pairs:
            return []
        result = await self._request("/public/Ticker", {"pair": ",".join(pairs)})
        if not isinstance(result, dict):
            raise ValidationError("result must be an object keyed by pair")

        records: list[TickerRecord] = []
        missing: list[str] = []
        for pair in pairs:
            key = resolve_result_key(pair, result.keys())
            if key is None:
                print(
                    f"[KRAKEN][pair_not_found] pair={pair} available={','.join(result.keys())}",
                    flush=True,
                )
                if not allow_partial:
                    raise PairNotFoundError([pair])
                missing.append(pair)
                continue
            payload = _validate(KrakenTickerPayload, result[key], what="ticker")
            records.append(build_ticker(pair, payload))

        if missing:
            raise PairNotFoundError(missing, resolved=records)
        return records

    async def fetch_system_status(self) -> dict[str, Any]:
        result = await self._request("/public/SystemStatus")
        if not isinstance(result, dict):
            raise ValidationError("system status must be an object")
        return result

    def status(self) -> dict[str, Any]:
        return {
            "rate_limit_ms": int(self.rate_limiter.min_interval_sec * 1000),
            "api_key_configured": bool(self.api_key),
            "requests_sent": self.requests_sent,
            "request_errors": self.request_errors,
        }
