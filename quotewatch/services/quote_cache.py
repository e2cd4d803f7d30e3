from __future__ import annotations

import threading
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Mapping

from quotewatch.schemas.quote import Quote


class QuoteCache:
    """Last-known-good quote per symbol.

    Copy-on-write: writers serialize on a lock and swap in a new read-only
    mapping; readers only dereference the current mapping and never wait.
    """

    def __init__(self) -> None:
        self._write_lock = threading.Lock()
        self._rows: Mapping[str, Quote] = MappingProxyType({})
        self.upserts = 0

    def put(self, symbol: str, quote: Quote) -> None:
        with self._write_lock:
            rows = dict(self._rows)
            rows[symbol] = quote
            self._rows = MappingProxyType(rows)
            self.upserts += 1

    def upsert(self, quote: Quote) -> None:
        self.put(quote.symbol, quote)

    def get(self, symbol: str) -> Quote | None:
        return self._rows.get(symbol)

    def remove(self, symbol: str) -> Quote | None:
        with self._write_lock:
            if symbol not in self._rows:
                return None
            rows = dict(self._rows)
            removed = rows.pop(symbol)
            self._rows = MappingProxyType(rows)
            return removed

    def clear(self) -> None:
        with self._write_lock:
            self._rows = MappingProxyType({})
            self.upserts = 0

    def snapshot(self) -> list[tuple[str, Quote]]:
        rows = self._rows
        return sorted(rows.items(), key=lambda item: item[0])

    def list_all(self) -> list[Quote]:
        return [quote for _, quote in self.snapshot()]

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._rows

    def metrics(self, *, stale_after_sec: int, now: datetime | None = None) -> dict:
        ref = now or datetime.now()
        rows = self._rows
        threshold = ref - timedelta(seconds=stale_after_sec)
        stale = sum(1 for q in rows.values() if q.fetched_at < threshold)
        return {
            "cached_symbols": len(rows),
            "upserts": self.upserts,
            "stale_symbols": stale,
        }


quote_cache = QuoteCache()
