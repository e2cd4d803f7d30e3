"""Display helpers for cached quotes. All arithmetic stays in ``Decimal``."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal

from quotewatch.schemas.quote import Quote

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_CENT = Decimal("0.01")
_RATIO_PLACES = Decimal("0.0001")
_HUNDRED = Decimal("100")


def _as_decimal(value: Decimal | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _signed(value: Decimal) -> str:
    # Decimal keeps negative zero; display it as +0.00
    if value == 0:
        value = abs(value)
    return f"{value:+,.2f}"


def format_price(price: Decimal | int | str) -> str:
    return f"{_as_decimal(price).quantize(_CENT, rounding=ROUND_HALF_EVEN):,.2f}"


def format_change(change: Decimal | int | str) -> str:
    return _signed(_as_decimal(change).quantize(_CENT, rounding=ROUND_HALF_EVEN))


def format_percent_change(percent_change: Decimal | int | str) -> str:
    """``2.34`` -> ``+2.34%``, ``-1.56`` -> ``-1.56%``, ``0`` -> ``+0.00%``.

    The raw percentage is first reduced to a ratio rounded half-up to four
    places, then shown back as a percentage with two decimals.
    """
    ratio = (_as_decimal(percent_change) / _HUNDRED).quantize(_RATIO_PLACES, rounding=ROUND_HALF_UP)
    percent = (ratio * _HUNDRED).quantize(_CENT, rounding=ROUND_HALF_EVEN)
    if percent == 0:
        percent = abs(percent)
    return f"{percent:+.2f}%"


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def is_price_up(quote: Quote) -> bool:
    return quote.change > 0


def is_price_down(quote: Quote) -> bool:
    return quote.change < 0


def absolute_percent_change(quote: Quote) -> Decimal:
    return abs(quote.percent_change)


def quote_summary(quote: Quote) -> str:
    return (
        f"{quote.symbol}: {format_price(quote.current_price)} "
        f"({format_change(quote.change)}, {format_percent_change(quote.percent_change)})"
    )


def is_quote_stale(quote: Quote, max_age_minutes: int, *, now: datetime | None = None) -> bool:
    threshold = (now or datetime.now()) - timedelta(minutes=max_age_minutes)
    return quote.fetched_at < threshold
