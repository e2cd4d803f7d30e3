from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from pydantic import ValidationError

from quotewatch.api.routes import router
from quotewatch.config.settings import DEFAULT_REFRESH_INTERVAL_SEC, DEFAULT_WATCHLIST, Settings, get_settings
from quotewatch.integrations.finnhub_rest import FinnhubRestClient
from quotewatch.services.quote_cache import QuoteCache, quote_cache
from quotewatch.services.quote_poller import QuotePoller
from quotewatch.services.refresh_orchestrator import RefreshOrchestrator
from quotewatch.services.retry_scheduler import RetryScheduler
from quotewatch.services.watchlist import Watchlist

logger = logging.getLogger("quotewatch")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_poller(settings: Settings | None, *, cache: QuoteCache, watchlist: Watchlist) -> QuotePoller:
    if settings is None:
        return QuotePoller(None, interval_sec=DEFAULT_REFRESH_INTERVAL_SEC)

    client = FinnhubRestClient(settings.FINNHUB_API_KEY, base_url=settings.FINNHUB_BASE_URL)
    scheduler = RetryScheduler(client.get_quote, max_workers=settings.QUOTEWATCH_FETCH_WORKERS)
    orchestrator = RefreshOrchestrator(
        quote_cache=cache,
        scheduler=scheduler,
        watchlist_provider=watchlist.snapshot,
        refresh_interval_sec=settings.QUOTEWATCH_REFRESH_INTERVAL_SEC,
    )
    return QuotePoller(orchestrator, interval_sec=settings.QUOTEWATCH_REFRESH_INTERVAL_SEC)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings | None
    try:
        settings = app.state.get_settings()
    except ValidationError as exc:
        # keep the read API up without a key; cycles report the missing key
        settings = None
        logger.warning("[APP][settings_invalid] errors=%s", exc.error_count())

    configure_logging(settings.QUOTEWATCH_LOG_LEVEL if settings else "INFO")

    watchlist: Watchlist = app.state.watchlist
    if not len(watchlist):
        for symbol in settings.QUOTEWATCH_WATCHLIST if settings else DEFAULT_WATCHLIST:
            watchlist.add(symbol)

    if app.state.poller is None:
        app.state.poller = build_poller(settings, cache=app.state.quote_cache, watchlist=watchlist)
    poller: QuotePoller = app.state.poller
    poller.start()

    try:
        yield
    finally:
        poller.stop(cancel_inflight=True)
        if poller.orchestrator is not None:
            poller.orchestrator.scheduler.shutdown()
        # the scheduler is closed now; the next startup builds a fresh poller
        app.state.poller = None


app = FastAPI(title="quotewatch", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/v1")

# NOTE: lazy-loaded so app import does not require env during tests.
app.state.get_settings = get_settings
app.state.quote_cache = quote_cache
app.state.watchlist = Watchlist()
app.state.poller = None


def _drop_symbol(symbol: str) -> None:
    poller = app.state.poller
    if poller is not None and poller.orchestrator is not None:
        poller.orchestrator.cancel_symbol(symbol)
    app.state.quote_cache.remove(symbol)


app.state.watchlist.add_remove_listener(_drop_symbol)


def run() -> None:
    import uvicorn

    uvicorn.run(
        "quotewatch.main:app",
        host=os.getenv("QUOTEWATCH_HOST", "127.0.0.1"),
        port=int(os.getenv("QUOTEWATCH_PORT", "8000")),
    )
