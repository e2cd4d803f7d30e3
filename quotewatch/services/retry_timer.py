from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TimerHandle:
    __slots__ = ("due", "callback", "cancelled")

    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class RetryTimer:
    """One daemon thread that runs delayed callbacks in due order.

    Callbacks must be short; they are expected to hand real work to a pool.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, name: str = "quote-retry-timer") -> None:
        self._clock = clock
        self._name = name
        self._cond = threading.Condition()
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()
        self._thread: threading.Thread | None = None
        self.running = False

    def start(self) -> None:
        with self._cond:
            if self.running:
                return
            self.running = True
            self._thread = threading.Thread(target=self._run, daemon=True, name=self._name)
            self._thread.start()

    def schedule(self, delay_sec: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self._clock() + max(delay_sec, 0.0), callback)
        with self._cond:
            if not self.running:
                raise RuntimeError("retry timer is not running")
            heapq.heappush(self._heap, (handle.due, next(self._seq), handle))
            self._cond.notify()
        return handle

    def pending(self) -> int:
        with self._cond:
            return sum(1 for _, _, h in self._heap if not h.cancelled)

    def stop(self, timeout: float = 1.0) -> None:
        with self._cond:
            self.running = False
            for _, _, handle in self._heap:
                handle.cancel()
            self._heap.clear()
            self._cond.notify_all()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        while True:
            with self._cond:
                while self.running:
                    while self._heap and self._heap[0][2].cancelled:
                        heapq.heappop(self._heap)
                    if not self._heap:
                        self._cond.wait()
                        continue
                    wait = self._heap[0][0] - self._clock()
                    if wait <= 0:
                        break
                    self._cond.wait(timeout=wait)
                if not self.running:
                    return
                _, _, handle = heapq.heappop(self._heap)

            if handle.cancelled:
                continue
            try:
                handle.callback()
            except Exception:
                logger.exception("[TIMER][callback_error] thread=%s", self._name)
