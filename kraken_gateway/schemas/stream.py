from typing import Any, Literal

from pydantic import BaseModel, field_validator

MessageType = Literal["ticker", "orderBook", "trades"]


class StreamMessage(BaseModel):
    type: MessageType
    pair: str
    data: dict[str, Any]


class HeartbeatMessage(BaseModel):
    type: Literal["heartbeat"] = "heartbeat"
    ts: int


class SubscribeRequest(BaseModel):
    type: Literal["subscribe"]
    pairs: list[str] | None = None

    @field_validator("pairs")
    @classmethod
    def _normalize_pairs(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        out: list[str] = []
        for pair in value:
            pair = str(pair).strip()
            if pair and pair not in out:
                out.append(pair)
        return out or None
