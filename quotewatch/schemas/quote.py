from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class Quote(BaseModel):
    """Immutable price snapshot for one symbol.

    Price fields are ``Decimal`` so formatted output never shows float noise.
    ``percent_change`` is the raw percentage (``2.34`` means 2.34%).
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    current_price: Decimal
    change: Decimal = Decimal("0")
    percent_change: Decimal = Decimal("0")
    high_price: Decimal = Decimal("0")
    low_price: Decimal = Decimal("0")
    open_price: Decimal = Decimal("0")
    previous_close_price: Decimal = Decimal("0")
    timestamp: int = 0
    fetched_at: datetime = Field(default_factory=datetime.now)

    def with_fetched_at(self, fetched_at: datetime) -> "Quote":
        return self.model_copy(update={"fetched_at": fetched_at})


class QuoteRow(BaseModel):
    symbol: str
    current_price: Decimal
    change: Decimal
    percent_change: Decimal
    price_display: str
    change_display: str
    percent_change_display: str
    provider_ts: int
    fetched_at: str
    state: str
