import os
from functools import lru_cache

from pydantic import BaseModel, Field

POPULAR_PAIRS = ["XBTUSD", "ETHUSD", "ADAUSD", "DOTUSD", "SOLUSD", "MATICUSD", "LINKUSD", "UNIUSD"]

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _split_pairs(raw: str | None) -> list[str]:
    if raw is None:
        return list(POPULAR_PAIRS)
    pairs = [p.strip().upper() for p in raw.split(",") if p.strip()]
    return pairs or list(POPULAR_PAIRS)


class Settings(BaseModel):
    KRAKEN_BASE_URL: str = "https://api.kraken.com/0"
    KRAKEN_API_KEY: str | None = None
    KRAKEN_RATE_LIMIT_MS: int | None = Field(default=None, ge=0)
    KRAKEN_REQUEST_TIMEOUT_SEC: float = Field(default=10.0, gt=0)
    MARKET_PAIRS: list[str] = Field(default_factory=lambda: list(POPULAR_PAIRS))
    MARKET_REFRESH_INTERVAL_MS: int = Field(default=15000, gt=0)
    WS_HEARTBEAT_INTERVAL_MS: int = Field(default=30000, gt=0)
    MARKET_BATCH_ALLOW_PARTIAL: bool = False

    @property
    def rate_limit_sec(self) -> float:
        if self.KRAKEN_RATE_LIMIT_MS is not None:
            return self.KRAKEN_RATE_LIMIT_MS / 1000.0
        # keyed clients get the faster public budget
        return 0.5 if self.KRAKEN_API_KEY else 1.0

    @classmethod
    def from_env(cls) -> "Settings":
        raw: dict = {
            "KRAKEN_API_KEY": os.getenv("KRAKEN_API_KEY") or None,
            "MARKET_PAIRS": _split_pairs(os.getenv("MARKET_PAIRS")),
            "MARKET_BATCH_ALLOW_PARTIAL": os.getenv("MARKET_BATCH_ALLOW_PARTIAL", "").strip().lower()
            in _TRUE_VALUES,
        }
        for key in (
            "KRAKEN_BASE_URL",
            "KRAKEN_RATE_LIMIT_MS",
            "KRAKEN_REQUEST_TIMEOUT_SEC",
            "MARKET_REFRESH_INTERVAL_MS",
            "WS_HEARTBEAT_INTERVAL_MS",
        ):
            value = os.getenv(key)
            if value is not None and value.strip():
                raw[key] = value.strip()

        return cls.model_validate(raw)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
