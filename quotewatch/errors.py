from __future__ import annotations


class QuoteFetchError(Exception):
    """Base class for single-attempt quote fetch failures."""

    kind = "TRANSIENT"


class RateLimitedError(QuoteFetchError):
    kind = "RATE_LIMITED"

    def __init__(self, retry_after_sec: int, message: str | None = None) -> None:
        self.retry_after_sec = int(retry_after_sec)
        super().__init__(message or f"rate limit exceeded, retry after {self.retry_after_sec}s")


class TransientFetchError(QuoteFetchError):
    kind = "TRANSIENT"


class FatalFetchError(QuoteFetchError):
    kind = "FATAL"


class InvalidSymbolError(ValueError):
    pass
