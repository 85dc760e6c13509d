from __future__ import annotations


class UpstreamError(Exception):
    """Base error for anything that goes wrong talking to the exchange."""


class UpstreamHttpError(UpstreamError):
    def __init__(self, status_code: int, reason: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"HTTP {status_code}: {reason}".rstrip(": "))


class UpstreamApiError(UpstreamError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Kraken API Error: {', '.join(self.errors)}")


class ValidationError(UpstreamError):
    """Upstream response did not have the expected shape."""


class PairNotFoundError(UpstreamError):
    def __init__(self, pairs: list[str], resolved: list | None = None) -> None:
        self.pairs = list(pairs)
        self.resolved = list(resolved or [])
        super().__init__(f"No data found for pair {', '.join(self.pairs)}")

    @property
    def pair(self) -> str:
        return self.pairs[0]
