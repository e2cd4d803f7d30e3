from __future__ import annotations

import logging
import random
import threading
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from typing import Callable

from quotewatch.errors import FatalFetchError, RateLimitedError
from quotewatch.schemas.quote import Quote
from quotewatch.schemas.refresh import FetchOutcome, RetryState
from quotewatch.services.retry_timer import RetryTimer, TimerHandle

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 30000
BACKOFF_EXPONENT_CAP = 6
RATE_LIMIT_CAP_SEC = 300


def backoff_delay_ms(
    attempt: int,
    *,
    base_ms: int = BACKOFF_BASE_MS,
    cap_ms: int = BACKOFF_CAP_MS,
    exponent_cap: int = BACKOFF_EXPONENT_CAP,
    jitter_fn: Callable[[int], int] | None = None,
) -> int:
    """``base * 2**min(attempt, exponent_cap)`` plus jitter in ``[0, base)``, capped."""
    exponential = base_ms * (2 ** min(max(attempt, 0), exponent_cap))
    jitter = (jitter_fn or _default_jitter)(base_ms)
    return int(min(exponential + jitter, cap_ms))


def rate_limit_delay_sec(retry_after_sec: int, *, cap_sec: int = RATE_LIMIT_CAP_SEC) -> int:
    return max(0, min(int(retry_after_sec), cap_sec))


def _default_jitter(base_ms: int) -> int:
    return random.randrange(0, base_ms) if base_ms > 0 else 0


class _Job:
    __slots__ = ("symbol", "future", "timer_handle")

    def __init__(self, symbol: str, future: Future) -> None:
        self.symbol = symbol
        self.future = future
        self.timer_handle: TimerHandle | None = None


class RetryScheduler:
    """Drives a single-attempt fetch function through bounded retries.

    Attempts run on a worker pool. Waits between attempts are parked on a
    ``RetryTimer`` so no worker sleeps through a backoff. Every submitted symbol
    resolves to a ``FetchOutcome``; fetch errors never escape.
    """

    def __init__(
        self,
        fetch_fn: Callable[[str], Quote | None],
        *,
        executor: ThreadPoolExecutor | None = None,
        timer: RetryTimer | None = None,
        max_workers: int = 4,
        max_retries: int = MAX_RETRIES,
        backoff_base_ms: int = BACKOFF_BASE_MS,
        backoff_cap_ms: int = BACKOFF_CAP_MS,
        rate_limit_cap_sec: int = RATE_LIMIT_CAP_SEC,
        jitter_fn: Callable[[int], int] | None = None,
        on_retry: Callable[[RetryState], None] | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        self.fetch_fn = fetch_fn
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self.rate_limit_cap_sec = rate_limit_cap_sec
        self._jitter_fn = jitter_fn
        self._on_retry = on_retry

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="quote-fetch")
        self._owns_timer = timer is None
        self._timer = timer or RetryTimer()
        if self._owns_timer:
            self._timer.start()

        self._lock = threading.Lock()
        self._jobs: dict[Future, _Job] = {}
        self._closed = False
        self.metrics_counters = {
            "submitted": 0,
            "attempts": 0,
            "retries_scheduled": 0,
            "rate_limited": 0,
            "transient": 0,
            "fatal": 0,
            "retry_exhausted": 0,
            "success": 0,
            "no_data": 0,
        }

    def _inc(self, key: str, value: int = 1) -> None:
        with self._lock:
            self.metrics_counters[key] = self.metrics_counters.get(key, 0) + value

    def submit(self, symbol: str) -> Future:
        future: Future = Future()
        job = _Job(symbol, future)
        with self._lock:
            if self._closed:
                raise RuntimeError("retry scheduler is shut down")
            self._jobs[future] = job
        future.add_done_callback(self._forget)
        self._inc("submitted")
        try:
            self._executor.submit(self._attempt, job, 0)
        except RuntimeError:
            self._resolve(job, FetchOutcome.failed(symbol, "scheduler shut down", 0))
        return future

    def cancel(self, future: Future) -> bool:
        """Cancel a pending outcome and its retry timer, if any."""
        return future.cancel()

    def in_flight(self) -> int:
        with self._lock:
            return len(self._jobs)

    def metrics(self) -> dict[str, int]:
        with self._lock:
            out = dict(self.metrics_counters)
            out["in_flight"] = len(self._jobs)
        return out

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            futures = list(self._jobs)
        for future in futures:
            future.cancel()
        if self._owns_timer:
            self._timer.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("[QUOTE][scheduler_shutdown] cancelled=%s", len(futures))

    def _forget(self, future: Future) -> None:
        with self._lock:
            job = self._jobs.pop(future, None)
        if job is not None and job.timer_handle is not None:
            job.timer_handle.cancel()

    @staticmethod
    def _resolve(job: _Job, outcome: FetchOutcome) -> None:
        try:
            job.future.set_result(outcome)
        except InvalidStateError:
            # cancelled while the attempt was running
            pass

    def _attempt(self, job: _Job, attempt: int) -> None:
        if job.future.done():
            return
        symbol = job.symbol
        self._inc("attempts")

        try:
            quote = self.fetch_fn(symbol)
        except RateLimitedError as exc:
            self._inc("rate_limited")
            failure = exc.kind
            delay_ms = rate_limit_delay_sec(exc.retry_after_sec, cap_sec=self.rate_limit_cap_sec) * 1000
            reason = str(exc)
        except FatalFetchError as exc:
            self._inc("fatal")
            logger.error("[QUOTE][fetch_fatal] symbol=%s attempt=%s error=%s", symbol, attempt + 1, exc)
            self._resolve(job, FetchOutcome.failed(symbol, str(exc), attempt + 1))
            return
        except Exception as exc:
            self._inc("transient")
            failure = "TRANSIENT"
            delay_ms = backoff_delay_ms(
                attempt,
                base_ms=self.backoff_base_ms,
                cap_ms=self.backoff_cap_ms,
                jitter_fn=self._jitter_fn,
            )
            reason = str(exc) or exc.__class__.__name__
        else:
            if quote is None:
                self._inc("no_data")
                self._resolve(job, FetchOutcome.no_data(symbol, attempt + 1))
            else:
                self._inc("success")
                self._resolve(job, FetchOutcome.success(quote, attempt + 1))
            return

        if attempt + 1 >= self.max_retries:
            self._inc("retry_exhausted")
            logger.error(
                "[QUOTE][retry_exhausted] symbol=%s attempts=%s last_failure=%s error=%s",
                symbol,
                attempt + 1,
                failure,
                reason,
            )
            self._resolve(job, FetchOutcome.failed(symbol, reason, attempt + 1))
            return

        state = RetryState(symbol=symbol, attempt=attempt, failure=failure, delay_ms=delay_ms)
        logger.warning(
            "[QUOTE][fetch_retry] symbol=%s failure=%s delay_ms=%s attempt=%s/%s error=%s",
            symbol,
            failure,
            delay_ms,
            attempt + 1,
            self.max_retries,
            reason,
        )
        if self._on_retry is not None:
            self._on_retry(state)
        self._schedule_retry(job, attempt + 1, delay_ms)

    def _schedule_retry(self, job: _Job, next_attempt: int, delay_ms: int) -> None:
        def resume() -> None:
            if job.future.done():
                return
            try:
                self._executor.submit(self._attempt, job, next_attempt)
            except RuntimeError:
                self._resolve(job, FetchOutcome.failed(job.symbol, "scheduler shut down", next_attempt))

        if job.future.done():
            return
        self._inc("retries_scheduled")
        try:
            handle = self._timer.schedule(delay_ms / 1000.0, resume)
        except RuntimeError:
            self._resolve(job, FetchOutcome.failed(job.symbol, "scheduler shut down", next_attempt))
            return
        job.timer_handle = handle
        if job.future.done():
            # cancelled while scheduling, after _forget already ran
            handle.cancel()
