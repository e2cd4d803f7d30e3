from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from quotewatch.schemas.refresh import RefreshSummary
from quotewatch.services.refresh_orchestrator import RefreshOrchestrator

logger = logging.getLogger(__name__)

API_KEY_MISSING_MESSAGE = "API Key missing. Cannot refresh stocks."


class QuotePoller:
    """Runs a refresh cycle every ``interval_sec`` on a background thread."""

    def __init__(
        self,
        orchestrator: RefreshOrchestrator | None,
        *,
        interval_sec: float = 15,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0")
        self.orchestrator = orchestrator
        self.interval_sec = interval_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self.last_summary: RefreshSummary | None = None
        self.cycles_run = 0
        self.last_error: str | None = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> RefreshSummary:
        if self.orchestrator is None:
            summary = RefreshSummary(status="NOT_CONFIGURED", message=API_KEY_MISSING_MESSAGE)
            logger.warning("[POLLER][cycle_skip] reason=api_key_missing")
        else:
            self.orchestrator.refresh_interval_sec = self.interval_sec
            summary = self.orchestrator.refresh(deadline_sec=self.interval_sec)
        self.last_summary = summary
        self.cycles_run += 1
        return summary

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            started = self._clock()
            try:
                self.run_once()
                self.last_error = None
            except Exception as exc:
                self.last_error = str(exc)
                logger.exception("[POLLER][cycle_error] error=%s", exc)
            remaining = self.interval_sec - (self._clock() - started)
            if remaining > 0:
                stop_event.wait(remaining)

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(stop_event,),
                daemon=True,
                name="quote-poller",
            )
            self._stop_event = stop_event
            self._thread = thread
        logger.info("[POLLER][start] interval_sec=%s", self.interval_sec)
        thread.start()

    def stop(self, *, cancel_inflight: bool = True, timeout: float = 1.0) -> None:
        with self._lock:
            stop_event, thread = self._stop_event, self._thread
            self._stop_event = None
            self._thread = None
        if stop_event is not None:
            stop_event.set()
        if cancel_inflight and self.orchestrator is not None:
            self.orchestrator.cancel_all()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.info("[POLLER][stop] cancel_inflight=%s", int(cancel_inflight))

    def restart(self, interval_sec: float | None = None) -> None:
        if interval_sec is not None:
            if interval_sec <= 0:
                raise ValueError("interval_sec must be > 0")
            self.interval_sec = interval_sec
        self.stop(cancel_inflight=True)
        self.start()

    def metrics(self) -> dict:
        summary = self.last_summary
        return {
            "poller_running": self.running,
            "poller_interval_sec": self.interval_sec,
            "poller_cycles": self.cycles_run,
            "poller_last_error": self.last_error,
            "last_cycle_message": summary.message if summary else None,
        }
