from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MarketRecord(BaseModel):
    """Frozen record; snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class TickerRecord(MarketRecord):
    pair: str
    name: str
    last_price: float
    change_24h: float = Field(alias="change24h")
    change_percent_24h: float = Field(alias="changePercent24h")
    volume_24h: float = Field(alias="volume24h")
    high_24h: float = Field(alias="high24h")
    low_24h: float = Field(alias="low24h")
    bid: float
    ask: float
    spread: float
    spread_percent: float


class OrderBookEntry(MarketRecord):
    price: float
    volume: float
    timestamp: float


class OrderBookRecord(MarketRecord):
    pair: str
    asks: tuple[OrderBookEntry, ...] = ()
    bids: tuple[OrderBookEntry, ...] = ()
    spread: float
    spread_percent: float


class Trade(MarketRecord):
    price: float
    volume: float
    time: float
    side: Literal["buy", "sell"]


class TradeHistory(MarketRecord):
    pair: str
    trades: tuple[Trade, ...] = ()
