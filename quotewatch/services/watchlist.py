from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable

from quotewatch.services.symbols import normalize_symbol

logger = logging.getLogger(__name__)


class Watchlist:
    """Thread-safe set of normalized symbols.

    Refresh cycles only read ``snapshot()``. Removal listeners let the owner
    drop related state, e.g. the cached quote.
    """

    def __init__(self, symbols: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._symbols: set[str] = set()
        self._on_remove: list[Callable[[str], object]] = []
        for symbol in symbols:
            self._symbols.add(normalize_symbol(symbol))

    def add_remove_listener(self, callback: Callable[[str], object]) -> None:
        self._on_remove.append(callback)

    def add(self, symbol: str) -> bool:
        normalized = normalize_symbol(symbol)
        with self._lock:
            if normalized in self._symbols:
                logger.info("[WATCHLIST][add_skip] symbol=%s reason=already_present", normalized)
                return False
            self._symbols.add(normalized)
        logger.info("[WATCHLIST][add] symbol=%s", normalized)
        return True

    def remove(self, symbol: str) -> bool:
        normalized = normalize_symbol(symbol)
        with self._lock:
            if normalized not in self._symbols:
                logger.info("[WATCHLIST][remove_skip] symbol=%s reason=not_found", normalized)
                return False
            self._symbols.discard(normalized)
        for callback in list(self._on_remove):
            callback(normalized)
        logger.info("[WATCHLIST][remove] symbol=%s", normalized)
        return True

    def contains(self, symbol: str) -> bool:
        with self._lock:
            return symbol.strip().upper() in self._symbols

    def snapshot(self) -> list[str]:
        with self._lock:
            return sorted(self._symbols)

    def __len__(self) -> int:
        with self._lock:
            return len(self._symbols)
