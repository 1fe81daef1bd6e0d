from __future__ import annotations

import math
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


SortKey = Literal["volume", "price_change", "market_cap", "price", "liquidity", "txs"]
Timeframe = Literal["1h", "24h", "7d"]

FULL_LISTING_KEY = "tokens:all"

TIMEFRAME_FIELDS: dict[str, str] = {
    "1h": "price_change_1h",
    "24h": "price_change_24h",
    "7d": "price_change_7d",
}

SORT_FIELDS: dict[str, str] = {
    "price": "price_usd",
    "market_cap": "market_cap",
    "volume": "volume",
    "liquidity": "liquidity",
    "txs": "tx_count",
}


class Asset(BaseModel):
    """Canonical merged token record, keyed by address."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    address: str
    name: Optional[str] = None
    ticker: Optional[str] = None
    price_usd: Optional[float] = None
    price_native: Optional[float] = None
    market_cap: Optional[float] = None
    volume: Optional[float] = None
    liquidity: Optional[float] = None
    tx_count: Optional[int] = None
    # Timeframe suffixes stay lowercase on the wire.
    price_change_1h: Optional[float] = Field(default=None, alias="priceChange1h")
    price_change_24h: Optional[float] = Field(default=None, alias="priceChange24h")
    price_change_7d: Optional[float] = Field(default=None, alias="priceChange7d")
    protocol: Optional[str] = None
    source_hints: list[str] = Field(default_factory=list)

    @field_validator("address")
    @classmethod
    def _require_address(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("address is required")
        return cleaned

    @field_validator(
        "price_usd",
        "price_native",
        "market_cap",
        "volume",
        "liquidity",
        "price_change_1h",
        "price_change_24h",
        "price_change_7d",
    )
    @classmethod
    def _finite_or_none(cls, value: float | None) -> float | None:
        if value is None or not math.isfinite(value):
            return None
        return value

    @field_validator("source_hints")
    @classmethod
    def _unique_hints(cls, value: list[str]) -> list[str]:
        return sorted(set(value))


MERGEABLE_FIELDS: tuple[str, ...] = tuple(
    name for name in Asset.model_fields if name not in ("address", "source_hints")
)


class TokenQuery(BaseModel):
    q: Optional[str] = None
    page: Optional[int] = Field(default=None, ge=1, le=10)
    limit: int = Field(default=30, ge=1, le=100)
    cursor: Optional[str] = None
    sort: SortKey = "volume"
    timeframe: Timeframe = "24h"

    def cache_key(self) -> str:
        """Only the upstream-facing part of the query shapes the merged set."""
        if not self.q and self.page is None:
            return FULL_LISTING_KEY
        canonical = self.model_dump_json(include={"q", "page"})
        return f"agg:{canonical}"


class TokenPage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    data: list[Asset] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    page_size: int
