from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from quotewatch.schemas.quote import Quote

OutcomeStatus = Literal["SUCCESS", "NO_DATA", "FAILED"]
FailureKind = Literal["RATE_LIMITED", "TRANSIENT", "FATAL"]
CycleStatus = Literal["NOTHING_TO_REFRESH", "NOT_CONFIGURED", "COMPLETE", "PARTIAL", "CANCELLED"]


class FetchOutcome(BaseModel):
    symbol: str
    status: OutcomeStatus
    quote: Quote | None = None
    reason: str | None = None
    attempts: int = 0

    @classmethod
    def success(cls, quote: Quote, attempts: int) -> "FetchOutcome":
        return cls(symbol=quote.symbol, status="SUCCESS", quote=quote, attempts=attempts)

    @classmethod
    def no_data(cls, symbol: str, attempts: int) -> "FetchOutcome":
        return cls(symbol=symbol, status="NO_DATA", attempts=attempts)

    @classmethod
    def failed(cls, symbol: str, reason: str, attempts: int) -> "FetchOutcome":
        return cls(symbol=symbol, status="FAILED", reason=reason, attempts=attempts)


class RetryState(BaseModel):
    """One step of a symbol's fetch-retry loop."""

    symbol: str
    attempt: int
    failure: FailureKind | None = None
    delay_ms: int = 0


class RefreshSummary(BaseModel):
    status: CycleStatus
    requested: int = 0
    succeeded: int = 0
    no_data: int = 0
    failed: int = 0
    failed_symbols: list[str] = []
    pending_symbols: list[str] = []
    elapsed_sec: float = 0.0
    message: str = ""
