from datetime import datetime, timedelta

from fastapi import APIRouter, HTTPException, Request

from quotewatch.config.settings import DEFAULT_REFRESH_INTERVAL_SEC
from quotewatch.errors import InvalidSymbolError
from quotewatch.schemas.quote import Quote, QuoteRow
from quotewatch.services.quote_format import (
    format_change,
    format_percent_change,
    format_price,
    format_timestamp,
)
from quotewatch.services.symbols import normalize_symbol

router = APIRouter()

# a quote missing this many refresh cycles is shown as STALE
_STALE_AFTER_CYCLES = 3


def _normalize_or_400(symbol: str) -> str:
    try:
        return normalize_symbol(symbol)
    except InvalidSymbolError as exc:
        raise HTTPException(status_code=400, detail="INVALID_SYMBOL") from exc


def _interval_sec(request: Request) -> float:
    poller = request.app.state.poller
    return poller.interval_sec if poller is not None else DEFAULT_REFRESH_INTERVAL_SEC


def _to_row(quote: Quote, *, stale_after_sec: float, now: datetime) -> dict:
    stale = quote.fetched_at < now - timedelta(seconds=stale_after_sec)
    row = QuoteRow(
        symbol=quote.symbol,
        current_price=quote.current_price,
        change=quote.change,
        percent_change=quote.percent_change,
        price_display=format_price(quote.current_price),
        change_display=format_change(quote.change),
        percent_change_display=format_percent_change(quote.percent_change),
        provider_ts=quote.timestamp,
        fetched_at=format_timestamp(quote.fetched_at),
        state="STALE" if stale else "HEALTHY",
    )
    return row.model_dump(mode="json")


@router.get('/quotes')
def list_quotes(request: Request):
    cache = request.app.state.quote_cache
    stale_after = _interval_sec(request) * _STALE_AFTER_CYCLES
    now = datetime.now()
    return [_to_row(quote, stale_after_sec=stale_after, now=now) for _, quote in cache.snapshot()]


@router.get('/quotes/{symbol}')
def get_quote(symbol: str, request: Request):
    normalized = _normalize_or_400(symbol)
    quote = request.app.state.quote_cache.get(normalized)
    if quote is None:
        raise HTTPException(status_code=404, detail='QUOTE_NOT_CACHED')
    return _to_row(quote, stale_after_sec=_interval_sec(request) * _STALE_AFTER_CYCLES, now=datetime.now())


@router.get('/watchlist')
def get_watchlist(request: Request):
    return {'symbols': request.app.state.watchlist.snapshot()}


@router.post('/watchlist/{symbol}')
def add_to_watchlist(symbol: str, request: Request):
    normalized = _normalize_or_400(symbol)
    watchlist = request.app.state.watchlist
    if not watchlist.add(normalized):
        return {'symbol': normalized, 'added': False, 'quote': None}

    poller = request.app.state.poller
    orchestrator = poller.orchestrator if poller is not None else None
    if orchestrator is None:
        return {'symbol': normalized, 'added': True, 'quote': None}

    outcome = orchestrator.fetch_symbol(normalized, timeout_sec=_interval_sec(request))
    if outcome is None:
        # still fetching; the result lands with the next cache write
        return {'symbol': normalized, 'added': True, 'quote': None}
    if outcome.status == 'SUCCESS':
        row = _to_row(outcome.quote, stale_after_sec=_interval_sec(request) * _STALE_AFTER_CYCLES, now=datetime.now())
        return {'symbol': normalized, 'added': True, 'quote': row}

    watchlist.remove(normalized)
    if outcome.status == 'NO_DATA':
        raise HTTPException(status_code=404, detail='SYMBOL_NO_DATA')
    raise HTTPException(status_code=502, detail='QUOTE_FETCH_FAILED')


@router.delete('/watchlist/{symbol}')
def remove_from_watchlist(symbol: str, request: Request):
    normalized = _normalize_or_400(symbol)
    removed = request.app.state.watchlist.remove(normalized)
    return {'symbol': normalized, 'removed': removed}


@router.post('/refresh')
def refresh_now(request: Request):
    poller = request.app.state.poller
    if poller is None:
        raise HTTPException(status_code=503, detail='POLLER_NOT_CONFIGURED')
    return poller.run_once().model_dump()


@router.get('/refresh/last')
def last_refresh(request: Request):
    poller = request.app.state.poller
    summary = poller.last_summary if poller is not None else None
    if summary is None:
        raise HTTPException(status_code=404, detail='NO_REFRESH_YET')
    return summary.model_dump()


@router.get('/metrics/quote')
def quote_metrics(request: Request):
    metrics = request.app.state.quote_cache.metrics(
        stale_after_sec=int(_interval_sec(request) * _STALE_AFTER_CYCLES)
    )
    metrics['watchlist_symbols'] = len(request.app.state.watchlist)
    poller = request.app.state.poller
    if poller is not None:
        metrics.update(poller.metrics())
        if poller.orchestrator is not None:
            metrics.update(poller.orchestrator.metrics())
            metrics.update(poller.orchestrator.scheduler.metrics())
    return metrics
