import logging
import os
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator

from quotewatch.services.symbols import is_valid_symbol

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://finnhub.io/api/v1"
DEFAULT_REFRESH_INTERVAL_SEC = 15
DEFAULT_FETCH_WORKERS = 4
DEFAULT_WATCHLIST = ["AAPL", "GOOGL", "MSFT", "AMZN", "TSLA"]


def _int_env(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("[CONFIG][invalid_int] name=%s value=%r default=%s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("[CONFIG][below_minimum] name=%s value=%s minimum=%s default=%s", name, value, minimum, default)
        return default
    return value


class Settings(BaseModel):
    FINNHUB_API_KEY: str = Field(min_length=1)
    FINNHUB_BASE_URL: str = DEFAULT_BASE_URL
    QUOTEWATCH_REFRESH_INTERVAL_SEC: int = Field(default=DEFAULT_REFRESH_INTERVAL_SEC, ge=1)
    QUOTEWATCH_WATCHLIST: list[str] = Field(default_factory=lambda: list(DEFAULT_WATCHLIST))
    QUOTEWATCH_FETCH_WORKERS: int = Field(default=DEFAULT_FETCH_WORKERS, ge=1)
    QUOTEWATCH_LOG_LEVEL: str = "INFO"

    @field_validator("QUOTEWATCH_WATCHLIST")
    @classmethod
    def drop_invalid_symbols(cls, value: list[str]) -> list[str]:
        out: list[str] = []
        for raw in value:
            symbol = raw.strip().upper()
            if not is_valid_symbol(symbol):
                logger.warning("[CONFIG][invalid_symbol] name=QUOTEWATCH_WATCHLIST value=%r", raw)
                continue
            if symbol not in out:
                out.append(symbol)
        return out

    @classmethod
    def from_env(cls) -> "Settings":
        raw_watchlist = os.getenv("QUOTEWATCH_WATCHLIST")
        if raw_watchlist is None:
            watchlist = list(DEFAULT_WATCHLIST)
        else:
            watchlist = [s.strip().upper() for s in raw_watchlist.split(",") if s.strip()]

        api_key = os.getenv("FINNHUB_API_KEY")
        return cls.model_validate(
            {
                "FINNHUB_API_KEY": api_key.strip() if api_key else api_key,
                "FINNHUB_BASE_URL": os.getenv("FINNHUB_BASE_URL") or DEFAULT_BASE_URL,
                "QUOTEWATCH_REFRESH_INTERVAL_SEC": _int_env(
                    "QUOTEWATCH_REFRESH_INTERVAL_SEC", DEFAULT_REFRESH_INTERVAL_SEC
                ),
                "QUOTEWATCH_WATCHLIST": watchlist,
                "QUOTEWATCH_FETCH_WORKERS": _int_env("QUOTEWATCH_FETCH_WORKERS", DEFAULT_FETCH_WORKERS),
                "QUOTEWATCH_LOG_LEVEL": (os.getenv("QUOTEWATCH_LOG_LEVEL") or "INFO").upper(),
            }
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
