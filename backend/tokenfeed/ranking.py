from __future__ import annotations

import base64
import binascii
import math
from collections.abc import Iterable

from tokenfeed.schemas.token import SORT_FIELDS, TIMEFRAME_FIELDS, Asset, SortKey, Timeframe

_SEPARATOR = "|"


def sort_field(sort: SortKey, timeframe: Timeframe) -> str:
    if sort == "price_change":
        return TIMEFRAME_FIELDS[timeframe]
    return SORT_FIELDS[sort]


def sort_value(token: Asset, field: str) -> float:
    value = getattr(token, field)
    if value is None:
        return -math.inf
    return float(value)


def _order_key(value: float, address: str) -> tuple[float, str]:
    return (-value, address)


def sort_tokens(tokens: Iterable[Asset], sort: SortKey, timeframe: Timeframe) -> list[Asset]:
    """Descending by the sort field; ties and missing values broken by address."""
    field = sort_field(sort, timeframe)
    return sorted(tokens, key=lambda token: _order_key(sort_value(token, field), token.address))


def encode_cursor(value: float, address: str) -> str:
    raw = f"{value!r}{_SEPARATOR}{address}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str | None) -> tuple[float, str] | None:
    """Return ``(sort_value, address)`` or None when the cursor is unusable."""
    if not cursor:
        return None
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return None
    value_part, separator, address = raw.partition(_SEPARATOR)
    if not separator or not address:
        return None
    try:
        value = float(value_part)
    except ValueError:
        return None
    if math.isnan(value):
        return None
    return value, address


def _start_index(ordered: list[Asset], field: str, cursor: str | None) -> int:
    decoded = decode_cursor(cursor)
    if decoded is None:
        return 0
    value, address = decoded
    if not any(token.address == address for token in ordered):
        return 0
    position = _order_key(value, address)
    for index, token in enumerate(ordered):
        if _order_key(sort_value(token, field), token.address) > position:
            return index
    return len(ordered)


def paginate(
    tokens: Iterable[Asset],
    sort: SortKey,
    timeframe: Timeframe,
    limit: int,
    cursor: str | None = None,
) -> tuple[list[Asset], str | None]:
    """One page of the ranked set plus the cursor for the next page, if any."""
    field = sort_field(sort, timeframe)
    ordered = sort_tokens(tokens, sort, timeframe)
    start = _start_index(ordered, field, cursor)
    page = ordered[start : start + limit]
    if len(page) < limit or start + limit >= len(ordered):
        return page, None
    last = page[-1]
    return page, encode_cursor(sort_value(last, field), last.address)
