"""Union of per-provider token lists into one record per address.

Sources are passed in precedence order. For every field the first source
that has a value wins; later sources only fill gaps. ``source_hints`` is
always the union of every contributing record, whatever field won.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable

from tokenfeed.errors import EnrichmentError
from tokenfeed.observability.logging import get_logger
from tokenfeed.schemas.provider import EnrichmentOutcome, MergeReport, SourceResult
from tokenfeed.schemas.token import MERGEABLE_FIELDS, Asset

logger = get_logger(__name__)

PriceFetcher = Callable[[list[str]], Awaitable[dict[str, float]]]


def _union_hints(*groups: Iterable[str]) -> list[str]:
    return sorted({hint for group in groups for hint in group})


def merge_token(existing: Asset, incoming: Asset) -> Asset:
    updates: dict = {}
    for field in MERGEABLE_FIELDS:
        if getattr(existing, field) is None:
            value = getattr(incoming, field)
            if value is not None:
                updates[field] = value
    updates["source_hints"] = _union_hints(existing.source_hints, incoming.source_hints)
    return existing.model_copy(update=updates)


def merge_sources(sources: Iterable[SourceResult]) -> dict[str, Asset]:
    merged: dict[str, Asset] = {}
    for source in sources:
        for token in source.tokens:
            token = token.model_copy(
                update={"source_hints": _union_hints(token.source_hints, [source.provider])}
            )
            current = merged.get(token.address)
            merged[token.address] = token if current is None else merge_token(current, token)
    return merged


def missing_prices(tokens: dict[str, Asset]) -> list[str]:
    return [address for address, token in tokens.items() if token.price_usd is None]


def apply_prices(tokens: dict[str, Asset], prices: dict[str, float], provider: str) -> int:
    """Fill ``price_usd`` where it is still empty. Nothing else is touched."""
    filled = 0
    for address, price in prices.items():
        token = tokens.get(address)
        if token is None or token.price_usd is not None:
            continue
        tokens[address] = token.model_copy(
            update={
                "price_usd": price,
                "source_hints": _union_hints(token.source_hints, [provider]),
            }
        )
        filled += 1
    return filled


async def enrich_prices(
    tokens: dict[str, Asset], fetch_prices: PriceFetcher, provider: str
) -> EnrichmentOutcome:
    wanted = missing_prices(tokens)
    outcome = EnrichmentOutcome(provider=provider, requested=len(wanted))
    if not wanted:
        return outcome
    try:
        prices = await fetch_prices(wanted)
    except EnrichmentError as exc:
        logger.warning("enrichment_failed", provider=provider, error=str(exc))
        outcome.error = str(exc)
        return outcome
    outcome.filled = apply_prices(tokens, prices, provider)
    return outcome


async def build_report(
    sources: list[SourceResult],
    fetch_prices: PriceFetcher | None = None,
    price_provider: str = "Jupiter",
) -> MergeReport:
    tokens = merge_sources(sources)
    enrichment = None
    if fetch_prices is not None:
        enrichment = await enrich_prices(tokens, fetch_prices, price_provider)
    return MergeReport(tokens=tokens, sources=sources, enrichment=enrichment)
