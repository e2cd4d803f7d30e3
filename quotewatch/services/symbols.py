from __future__ import annotations

import re

from quotewatch.errors import InvalidSymbolError

_SYMBOL_PATTERN = re.compile(r"^[A-Z0-9.]{1,5}$")


def is_valid_symbol(symbol: str | None) -> bool:
    if symbol is None:
        return False
    return bool(_SYMBOL_PATTERN.match(symbol.strip().upper()))


def normalize_symbol(symbol: str | None) -> str:
    if not is_valid_symbol(symbol):
        raise InvalidSymbolError(f"invalid stock symbol: {symbol!r}")
    return symbol.strip().upper()
