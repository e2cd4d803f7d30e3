from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import CancelledError, Future
from datetime import datetime
from typing import Callable, Iterable

from quotewatch.schemas.refresh import FetchOutcome, RefreshSummary
from quotewatch.services.quote_cache import QuoteCache
from quotewatch.services.quote_format import format_timestamp
from quotewatch.services.retry_scheduler import RetryScheduler

logger = logging.getLogger(__name__)


def _unique_symbols(symbols: Iterable[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for symbol in symbols:
        value = str(symbol).strip().upper()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def _outcome_of(symbol: str, future: Future) -> FetchOutcome:
    try:
        return future.result()
    except CancelledError:
        return FetchOutcome.failed(symbol, "cancelled", 0)
    except Exception as exc:
        return FetchOutcome.failed(symbol, str(exc) or exc.__class__.__name__, 0)


class RefreshCycle:
    """Outcome tally for one refresh pass.

    The tally only decides when the summary is final. Cache writes happen in
    the fetch callbacks whether or not anybody is still waiting on the cycle.
    """

    def __init__(
        self,
        cycle_id: int,
        symbols: list[str],
        *,
        quote_cache: QuoteCache,
        scheduler: RetryScheduler,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cycle_id = cycle_id
        self.symbols = symbols
        self._quote_cache = quote_cache
        self._scheduler = scheduler
        self._clock = clock
        self._started = clock()
        self._lock = threading.Lock()
        self._futures: dict[str, Future] = {}
        self._outcomes: dict[str, FetchOutcome] = {}
        self._remaining = len(symbols)
        self._done = threading.Event()
        self.cancelled = False
        if not symbols:
            self._done.set()

    def _attach(self, symbol: str, future: Future) -> None:
        self._futures[symbol] = future
        future.add_done_callback(lambda f: self._record(symbol, _outcome_of(symbol, f)))

    def _record(self, symbol: str, outcome: FetchOutcome) -> None:
        with self._lock:
            if symbol in self._outcomes:
                return
            self._outcomes[symbol] = outcome
            self._remaining -= 1
            if self._remaining <= 0:
                self._done.set()

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    def cancel(self) -> None:
        self.cancelled = True
        for future in list(self._futures.values()):
            self._scheduler.cancel(future)

    def outcomes(self) -> dict[str, FetchOutcome]:
        with self._lock:
            return dict(self._outcomes)

    def summary(self) -> RefreshSummary:
        with self._lock:
            outcomes = dict(self._outcomes)
        elapsed = round(self._clock() - self._started, 3)

        if not self.symbols:
            return RefreshSummary(
                status="NOTHING_TO_REFRESH",
                elapsed_sec=elapsed,
                message="Nothing to refresh: watchlist is empty.",
            )

        succeeded = sum(1 for o in outcomes.values() if o.status == "SUCCESS")
        no_data = sum(1 for o in outcomes.values() if o.status == "NO_DATA")
        failed = sum(1 for o in outcomes.values() if o.status == "FAILED")
        failed_symbols = sorted(s for s, o in outcomes.items() if o.status != "SUCCESS")
        pending_symbols = sorted(s for s in self.symbols if s not in outcomes)

        if self.cancelled:
            status = "CANCELLED"
        elif pending_symbols:
            status = "PARTIAL"
        else:
            status = "COMPLETE"

        if failed_symbols:
            message = "Updated with errors: " + ", ".join(failed_symbols)
        else:
            message = f"Updated {len(self._quote_cache)} stocks at {format_timestamp(datetime.now())}"
        if pending_symbols:
            message += " (still waiting: " + ", ".join(pending_symbols) + ")"

        return RefreshSummary(
            status=status,
            requested=len(self.symbols),
            succeeded=succeeded,
            no_data=no_data,
            failed=failed,
            failed_symbols=failed_symbols,
            pending_symbols=pending_symbols,
            elapsed_sec=elapsed,
            message=message,
        )


class RefreshOrchestrator:
    """Fans a refresh pass out over the watchlist and tallies the outcomes."""

    def __init__(
        self,
        *,
        quote_cache: QuoteCache,
        scheduler: RetryScheduler,
        watchlist_provider: Callable[[], Iterable[str]] | None = None,
        refresh_interval_sec: float = 15,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.quote_cache = quote_cache
        self.scheduler = scheduler
        self.watchlist_provider = watchlist_provider
        self.refresh_interval_sec = refresh_interval_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._inflight: dict[str, Future] = {}
        self._live_cycles: set[RefreshCycle] = set()
        self._cycle_ids = itertools.count(1)
        self.last_summary: RefreshSummary | None = None
        self.cycles_started = 0
        self.pending_at_deadline = 0

    def _watched(self, symbol: str) -> bool:
        if self.watchlist_provider is None:
            return True
        return symbol in _unique_symbols(self.watchlist_provider())

    def _apply(self, symbol: str, future: Future) -> None:
        with self._lock:
            if self._inflight.get(symbol) is future:
                self._inflight.pop(symbol, None)
        outcome = _outcome_of(symbol, future)
        if outcome.status == "SUCCESS" and outcome.quote is not None:
            # held across check and put; cancel_symbol waits on the same lock
            with self._lock:
                if not self._watched(symbol):
                    logger.info("[REFRESH][drop_unwatched] symbol=%s", symbol)
                    return
                self.quote_cache.put(symbol, outcome.quote)
        elif outcome.status == "NO_DATA":
            logger.warning("[REFRESH][no_data] symbol=%s attempts=%s", symbol, outcome.attempts)
        else:
            logger.warning(
                "[REFRESH][fetch_failed] symbol=%s attempts=%s reason=%s",
                symbol,
                outcome.attempts,
                outcome.reason,
            )

    def _launch(self, symbol: str) -> Future:
        with self._lock:
            running = self._inflight.get(symbol)
            if running is not None and not running.done():
                logger.info("[REFRESH][join_inflight] symbol=%s", symbol)
                return running
            try:
                future = self.scheduler.submit(symbol)
            except RuntimeError as exc:
                logger.error("[REFRESH][submit_rejected] symbol=%s error=%s", symbol, exc)
                future = Future()
                future.set_result(FetchOutcome.failed(symbol, str(exc), 0))
                return future
            self._inflight[symbol] = future
        future.add_done_callback(lambda f: self._apply(symbol, f))
        return future

    def start_cycle(self, symbols: Iterable[str] | None = None) -> RefreshCycle:
        if symbols is None:
            symbols = self.watchlist_provider() if self.watchlist_provider is not None else []
        targets = _unique_symbols(symbols)
        cycle = RefreshCycle(
            next(self._cycle_ids),
            targets,
            quote_cache=self.quote_cache,
            scheduler=self.scheduler,
            clock=self._clock,
        )
        self.cycles_started += 1
        if not targets:
            logger.info("[REFRESH][cycle_skip] cycle=%s reason=empty_watchlist", cycle.cycle_id)
            return cycle

        with self._lock:
            self._live_cycles = {c for c in self._live_cycles if not c.done()}
            self._live_cycles.add(cycle)
        logger.info("[REFRESH][cycle_start] cycle=%s target_count=%s", cycle.cycle_id, len(targets))
        for symbol in targets:
            cycle._attach(symbol, self._launch(symbol))
        return cycle

    def refresh(
        self,
        symbols: Iterable[str] | None = None,
        *,
        deadline_sec: float | None = None,
    ) -> RefreshSummary:
        """Run one cycle and wait for it, at most ``deadline_sec`` (default: the refresh interval).

        Fetches still running at the deadline keep going and update the cache
        when they land; they show up as ``pending_symbols`` in this summary.
        """
        cycle = self.start_cycle(symbols)
        timeout = self.refresh_interval_sec if deadline_sec is None else deadline_sec
        finished = cycle.wait(timeout)
        summary = cycle.summary()
        self.last_summary = summary
        logger.info(
            "[REFRESH][cycle_done] cycle=%s status=%s target_count=%s succeeded=%s no_data=%s "
            "failed=%s pending=%s elapsed_sec=%s deadline_hit=%s",
            cycle.cycle_id,
            summary.status,
            summary.requested,
            summary.succeeded,
            summary.no_data,
            summary.failed,
            len(summary.pending_symbols),
            summary.elapsed_sec,
            int(not finished),
        )
        if summary.pending_symbols:
            self.pending_at_deadline += len(summary.pending_symbols)
        return summary

    def in_flight_symbols(self) -> list[str]:
        with self._lock:
            return sorted(s for s, f in self._inflight.items() if not f.done())

    def cancel_symbol(self, symbol: str) -> bool:
        """Cancel the in-flight fetch for one symbol so it cannot write to the cache."""
        with self._lock:
            future = self._inflight.get(symbol.strip().upper())
        if future is None:
            return False
        return self.scheduler.cancel(future)

    def fetch_symbol(self, symbol: str, *, timeout_sec: float | None = None) -> FetchOutcome | None:
        """Fetch one symbol now, outside any cycle.

        Returns ``None`` if the fetch is still running after ``timeout_sec``
        (default: the refresh interval); it then lands like any late result.
        """
        symbol = symbol.strip().upper()
        future = self._launch(symbol)
        landed = threading.Event()
        # runs after the cache write callback registered by _launch
        future.add_done_callback(lambda f: landed.set())
        timeout = self.refresh_interval_sec if timeout_sec is None else timeout_sec
        if not landed.wait(timeout):
            logger.info("[REFRESH][fetch_pending] symbol=%s timeout_sec=%s", symbol, timeout)
            return None
        return _outcome_of(symbol, future)

    def cancel_all(self) -> int:
        """Cancel every in-flight fetch; unfinished cycles report ``CANCELLED``."""
        with self._lock:
            futures = list(self._inflight.values())
            cycles = [c for c in self._live_cycles if not c.done()]
            self._live_cycles.clear()
        for cycle in cycles:
            cycle.cancelled = True
        cancelled = sum(1 for f in futures if self.scheduler.cancel(f))
        if cancelled:
            logger.info("[REFRESH][cancel_all] cancelled=%s", cancelled)
        return cancelled

    def metrics(self) -> dict:
        return {
            "cycles_started": self.cycles_started,
            "inflight_symbols": len(self.in_flight_symbols()),
            "pending_at_deadline": self.pending_at_deadline,
            "last_cycle_status": self.last_summary.status if self.last_summary else None,
            "last_cycle_failed": len(self.last_summary.failed_symbols) if self.last_summary else 0,
        }
