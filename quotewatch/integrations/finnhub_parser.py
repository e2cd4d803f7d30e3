from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from quotewatch.schemas.quote import Quote

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite constant {name} in payload")


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def _to_decimal_default(value: Any, default: Decimal = _ZERO) -> Decimal:
    number = _to_decimal(value)
    return default if number is None else number


def _to_int_default(value: Any, default: int = 0) -> int:
    number = _to_decimal(value)
    if number is None:
        return default
    return int(number)


def parse_quote(symbol: str, body: str | bytes | None, *, now: datetime | None = None) -> Quote | None:
    """Turn a Finnhub ``/quote`` body into a ``Quote``, or ``None`` when there is nothing usable.

    ``None`` covers an empty body, malformed JSON, a missing/null ``c`` and ``c == 0``.
    Finnhub answers unknown symbols with all zeros, so a genuinely zero-priced
    instrument is indistinguishable from "no data" and is reported as ``None`` too.
    """
    if body is None:
        return None
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    if not text.strip():
        logger.info("[QUOTE][no_data] symbol=%s reason=empty_body", symbol)
        return None

    try:
        # exact decimals straight from the JSON text, never via float
        root = json.loads(text, parse_float=Decimal, parse_int=Decimal, parse_constant=_reject_constant)
    except ValueError as exc:
        logger.error("[QUOTE][parse_error] symbol=%s error=%s body=%r", symbol, exc, text[:200])
        return None

    if not isinstance(root, dict) or not root:
        logger.info("[QUOTE][no_data] symbol=%s reason=empty_object body=%r", symbol, text[:200])
        return None

    current_price = _to_decimal(root.get("c"))
    if current_price is None or current_price == _ZERO:
        logger.info("[QUOTE][no_data] symbol=%s reason=no_price body=%r", symbol, text[:200])
        return None

    quote = Quote(
        symbol=symbol,
        current_price=current_price,
        change=_to_decimal_default(root.get("d")),
        percent_change=_to_decimal_default(root.get("dp")),
        high_price=_to_decimal_default(root.get("h")),
        low_price=_to_decimal_default(root.get("l")),
        open_price=_to_decimal_default(root.get("o")),
        previous_close_price=_to_decimal_default(root.get("pc")),
        timestamp=_to_int_default(root.get("t")),
        fetched_at=now or datetime.now(),
    )
    logger.debug("[QUOTE][parsed] symbol=%s price=%s", symbol, quote.current_price)
    return quote
