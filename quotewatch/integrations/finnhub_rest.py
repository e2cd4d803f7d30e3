from __future__ import annotations

import logging
import re
from typing import Any, Optional

import requests

from quotewatch.errors import FatalFetchError, RateLimitedError, TransientFetchError
from quotewatch.integrations.finnhub_parser import parse_quote
from quotewatch.schemas.quote import Quote

logger = logging.getLogger(__name__)

_RETRY_AFTER_BODY = re.compile(r"Retry after: (\d+)s")


class FinnhubRestClient:
    """Single-attempt Finnhub quote client. Retries belong to the caller."""

    DEFAULT_BASE_URL = "https://finnhub.io/api/v1"
    DEFAULT_RETRY_AFTER_SEC = 60
    CONNECT_TIMEOUT_SEC = 10
    READ_TIMEOUT_SEC = 15

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        session: Optional[Any] = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("api_key must not be empty")

        self.api_key = api_key.strip()
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.session = session or requests

    @classmethod
    def _retry_after_sec(cls, symbol: str, response: Any) -> int:
        header = (getattr(response, "headers", None) or {}).get("Retry-After")
        if header is not None:
            try:
                return int(str(header).strip())
            except ValueError:
                logger.warning(
                    "[QUOTE][retry_after_unparsed] symbol=%s header=%r default=%s",
                    symbol,
                    header,
                    cls.DEFAULT_RETRY_AFTER_SEC,
                )
                return cls.DEFAULT_RETRY_AFTER_SEC

        match = _RETRY_AFTER_BODY.search(getattr(response, "text", "") or "")
        if match:
            return int(match.group(1))
        return cls.DEFAULT_RETRY_AFTER_SEC

    def get_quote(self, symbol: str) -> Quote | None:
        """Fetch one quote.

        Returns the quote, or ``None`` when Finnhub answered 200 without usable data.
        Raises ``RateLimitedError`` on 429, ``FatalFetchError`` on 401 and
        ``TransientFetchError`` for any other status or transport failure.
        """
        symbol = symbol.strip().upper()
        logger.debug("[QUOTE][fetch] symbol=%s", symbol)

        try:
            response = self.session.get(
                f"{self.base_url}/quote",
                headers={"Accept": "application/json"},
                params={"symbol": symbol, "token": self.api_key},
                timeout=(self.CONNECT_TIMEOUT_SEC, self.READ_TIMEOUT_SEC),
            )
        except requests.RequestException as exc:
            # request URLs in transport errors carry the token
            detail = str(exc).replace(self.api_key, "***")
            raise TransientFetchError(f"network error: {detail}") from exc

        status = response.status_code
        if status == 429:
            raise RateLimitedError(self._retry_after_sec(symbol, response))
        if status == 401:
            raise FatalFetchError("authentication failed")
        if status != 200:
            raise TransientFetchError(f"HTTP {status}: {(response.text or '')[:200]}")

        return parse_quote(symbol, response.text)
