"""Raw Kraken public REST shapes, validated before any field is read."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class UpstreamEnvelope(BaseModel):
    error: list[str]
    result: Any = None


class KrakenTickerPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    a: list[str | float]
    b: list[str | float]
    c: list[str | float]
    v: list[str | float]
    h: list[str | float]
    l: list[str | float]
    o: str | float


class KrakenDepthPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    asks: list[list[str | float]]
    bids: list[list[str | float]]
