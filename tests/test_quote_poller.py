import time
import unittest
from concurrent.futures import Future
from decimal import Decimal

from quotewatch.errors import TransientFetchError
from quotewatch.schemas.quote import Quote
from quotewatch.services.quote_cache import QuoteCache
from quotewatch.services.quote_poller import API_KEY_MISSING_MESSAGE, QuotePoller
from quotewatch.services.refresh_orchestrator import RefreshOrchestrator
from quotewatch.services.retry_scheduler import RetryScheduler
from quotewatch.services.retry_timer import TimerHandle


class SyncExecutor:
    def submit(self, fn, *args, **kwargs):
        future = Future()
        future.set_result(fn(*args, **kwargs))
        return future

    def shutdown(self, wait=True, cancel_futures=False):
        pass


class ParkedTimer:
    def __init__(self) -> None:
        self.handles: list[TimerHandle] = []

    def schedule(self, delay_sec, callback):
        handle = TimerHandle(delay_sec, callback)
        self.handles.append(handle)
        return handle


class StubFetch:
    def __init__(self, failing=()) -> None:
        self.failing = set(failing)
        self.calls = 0

    def __call__(self, symbol: str):
        self.calls += 1
        if symbol in self.failing:
            raise TransientFetchError("HTTP 503")
        return Quote(symbol=symbol, current_price=Decimal("10.5"))


def _poller(fetch, symbols, *, interval_sec=5):
    cache = QuoteCache()
    timer = ParkedTimer()
    scheduler = RetryScheduler(fetch, executor=SyncExecutor(), timer=timer, jitter_fn=lambda base: 0)
    orchestrator = RefreshOrchestrator(
        quote_cache=cache,
        scheduler=scheduler,
        watchlist_provider=lambda: list(symbols),
    )
    return QuotePoller(orchestrator, interval_sec=interval_sec), cache, timer


class QuotePollerTest(unittest.TestCase):
    def test_missing_orchestrator_reports_not_configured(self):
        poller = QuotePoller(None, interval_sec=5)

        summary = poller.run_once()

        self.assertEqual(summary.status, "NOT_CONFIGURED")
        self.assertEqual(summary.message, API_KEY_MISSING_MESSAGE)
        self.assertEqual(poller.metrics()["last_cycle_message"], "API Key missing. Cannot refresh stocks.")

    def test_run_once_refreshes_the_watchlist(self):
        fetch = StubFetch()
        poller, cache, _ = _poller(fetch, ["AAPL", "MSFT"])

        summary = poller.run_once()

        self.assertEqual(summary.status, "COMPLETE")
        self.assertEqual(len(cache), 2)
        self.assertEqual(poller.cycles_run, 1)
        self.assertIs(poller.orchestrator.last_summary, summary)

    def test_interval_must_be_positive(self):
        with self.assertRaises(ValueError):
            QuotePoller(None, interval_sec=0)

    def test_start_runs_cycles_until_stopped(self):
        fetch = StubFetch()
        poller, cache, _ = _poller(fetch, ["AAPL"], interval_sec=0.05)

        poller.start()
        deadline = time.monotonic() + 2.0
        while poller.cycles_run < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        poller.stop()

        self.assertGreaterEqual(poller.cycles_run, 2)
        self.assertFalse(poller.running)
        self.assertIsNotNone(cache.get("AAPL"))

        cycles = poller.cycles_run
        time.sleep(0.15)
        self.assertEqual(poller.cycles_run, cycles)

    def test_stop_cancels_pending_retries(self):
        fetch = StubFetch(failing={"AAPL"})
        poller, _, timer = _poller(fetch, ["AAPL"], interval_sec=0.05)

        poller.run_once()
        self.assertEqual(poller.orchestrator.in_flight_symbols(), ["AAPL"])

        poller.stop()

        self.assertEqual(poller.orchestrator.in_flight_symbols(), [])
        self.assertTrue(all(h.cancelled for h in timer.handles))

    def test_restart_applies_new_interval(self):
        fetch = StubFetch()
        poller, _, _ = _poller(fetch, ["AAPL"], interval_sec=5)

        poller.start()
        poller.restart(interval_sec=7)
        try:
            self.assertTrue(poller.running)
            self.assertEqual(poller.interval_sec, 7)
            self.assertEqual(poller.metrics()["poller_interval_sec"], 7)
        finally:
            poller.stop()

    def test_restart_rejects_bad_interval(self):
        poller = QuotePoller(None, interval_sec=5)

        with self.assertRaises(ValueError):
            poller.restart(interval_sec=-1)


if __name__ == "__main__":
    unittest.main()
