import threading
import unittest
from datetime import datetime, timedelta
from decimal import Decimal

from quotewatch.schemas.quote import Quote
from quotewatch.services.quote_cache import QuoteCache


def _quote(symbol: str, price: str, fetched_at: datetime | None = None) -> Quote:
    if fetched_at is None:
        return Quote(symbol=symbol, current_price=Decimal(price))
    return Quote(symbol=symbol, current_price=Decimal(price), fetched_at=fetched_at)


class QuoteCacheTest(unittest.TestCase):
    def test_put_then_get_returns_the_same_object(self):
        cache = QuoteCache()
        quote = _quote("AAPL", "150.25")

        cache.put("AAPL", quote)

        self.assertIs(cache.get("AAPL"), quote)
        self.assertIn("AAPL", cache)
        self.assertEqual(len(cache), 1)

    def test_get_unknown_symbol_is_none(self):
        self.assertIsNone(QuoteCache().get("NOPE"))

    def test_put_replaces_previous_value(self):
        cache = QuoteCache()
        cache.put("AAPL", _quote("AAPL", "150"))
        newer = _quote("AAPL", "151")

        cache.upsert(newer)

        self.assertIs(cache.get("AAPL"), newer)
        self.assertEqual(cache.upserts, 2)

    def test_remove_returns_removed_quote(self):
        cache = QuoteCache()
        quote = _quote("TSLA", "251.05")
        cache.put("TSLA", quote)

        self.assertIs(cache.remove("TSLA"), quote)
        self.assertIsNone(cache.remove("TSLA"))
        self.assertIsNone(cache.get("TSLA"))

    def test_snapshot_is_sorted_and_detached(self):
        cache = QuoteCache()
        for symbol in ("MSFT", "AAPL", "GOOGL"):
            cache.put(symbol, _quote(symbol, "1"))

        snapshot = cache.snapshot()
        cache.put("AMZN", _quote("AMZN", "2"))

        self.assertEqual([s for s, _ in snapshot], ["AAPL", "GOOGL", "MSFT"])
        self.assertEqual([q.symbol for q in cache.list_all()], ["AAPL", "AMZN", "GOOGL", "MSFT"])

    def test_metrics_counts_stale_rows(self):
        now = datetime(2026, 1, 5, 12, 0, 0)
        cache = QuoteCache()
        cache.put("AAPL", _quote("AAPL", "1", now - timedelta(seconds=10)))
        cache.put("MSFT", _quote("MSFT", "1", now - timedelta(seconds=120)))

        metrics = cache.metrics(stale_after_sec=45, now=now)

        self.assertEqual(metrics, {"cached_symbols": 2, "upserts": 2, "stale_symbols": 1})

    def test_readers_never_see_partial_state_under_concurrent_writes(self):
        cache = QuoteCache()
        symbols = ["S%d" % i for i in range(20)]
        errors: list[str] = []
        stop = threading.Event()

        def writer(offset: int) -> None:
            for n in range(200):
                symbol = symbols[(n + offset) % len(symbols)]
                cache.put(symbol, _quote(symbol, str(n)))

        def reader() -> None:
            while not stop.is_set():
                for symbol, quote in cache.snapshot():
                    if quote.symbol != symbol:
                        errors.append(symbol)

        readers = [threading.Thread(target=reader) for _ in range(3)]
        writers = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
        for t in readers + writers:
            t.start()
        for t in writers:
            t.join()
        stop.set()
        for t in readers:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(cache), 20)
        self.assertEqual(cache.upserts, 800)


if __name__ == "__main__":
    unittest.main()
