from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import ValidationError

from tokenfeed.errors import NormalizationError
from tokenfeed.observability.logging import get_logger
from tokenfeed.schemas.provider import RecordFailure
from tokenfeed.schemas.token import Asset

logger = get_logger(__name__)


def to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise NormalizationError(f"expected a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise NormalizationError(f"expected a number, got {value!r}") from exc


def to_int(value: Any) -> int | None:
    number = to_float(value)
    if number is None:
        return None
    if not math.isfinite(number):
        raise NormalizationError(f"expected a finite number, got {value!r}")
    return int(number)


def dig(payload: Any, *path: str) -> Any:
    """Walk nested dicts, returning None as soon as a level is missing."""
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def normalize_records(
    provider: str,
    records: Iterable[Any],
    normalizer: Callable[[Any], Asset],
) -> tuple[list[Asset], list[RecordFailure]]:
    """Apply ``normalizer`` to every record; a bad record never affects its siblings."""
    tokens: list[Asset] = []
    rejected: list[RecordFailure] = []
    for index, record in enumerate(records):
        try:
            tokens.append(normalizer(record))
        except (NormalizationError, ValidationError, ValueError, TypeError, OverflowError) as exc:
            rejected.append(RecordFailure(provider=provider, index=index, reason=str(exc)))
    if rejected:
        logger.info("records_rejected", provider=provider, count=len(rejected))
    return tokens, rejected
