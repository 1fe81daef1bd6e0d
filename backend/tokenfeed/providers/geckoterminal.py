from __future__ import annotations

from typing import Any

from tokenfeed.config.settings import settings
from tokenfeed.errors import NormalizationError, UpstreamFatalError
from tokenfeed.providers.http import UpstreamClient
from tokenfeed.providers.records import dig, normalize_records, to_float
from tokenfeed.schemas.provider import SourceResult
from tokenfeed.schemas.token import Asset

PROVIDER = "geckoterminal"
SOURCE_HINT = "GeckoTerminal"

_TOKENS_PATH = "/tokens"


def _build_url(path: str) -> str:
    base_url = settings.providers.gecko_base_url.rstrip("/")
    return f"{base_url}{path}"


def normalize_token(item: Any) -> Asset:
    attributes = dig(item, "attributes")
    if not isinstance(attributes, dict):
        raise NormalizationError("token has no attributes")
    address = attributes.get("address")
    if not address:
        raise NormalizationError("token has no address")

    market_cap = attributes.get("market_cap_usd")
    if market_cap is None:
        market_cap = attributes.get("fdv_usd")
    changes = attributes.get("price_change_percentage")
    if not isinstance(changes, dict):
        changes = {}

    return Asset(
        address=address,
        name=attributes.get("name"),
        ticker=attributes.get("symbol"),
        price_usd=to_float(attributes.get("price_usd")),
        market_cap=to_float(market_cap),
        volume=to_float(dig(attributes, "volume_usd", "h24")),
        liquidity=to_float(attributes.get("total_reserve_in_usd")),
        price_change_1h=to_float(changes.get("h1", attributes.get("price_change_percentage_1h"))),
        price_change_24h=to_float(changes.get("h24", attributes.get("price_change_percentage_24h"))),
        price_change_7d=to_float(changes.get("d7", attributes.get("price_change_percentage_7d"))),
        protocol=SOURCE_HINT,
        source_hints=[SOURCE_HINT],
    )


def matches(token: Asset, query: str) -> bool:
    needle = query.strip().casefold()
    if not needle:
        return True
    haystack = (token.name, token.ticker, token.address)
    return any(value and needle in value.casefold() for value in haystack)


async def list_tokens(
    client: UpstreamClient, page: int | None = None, query: str | None = None
) -> SourceResult:
    payload = await client.get_json(
        PROVIDER, _build_url(_TOKENS_PATH), params={"page": page or 1}
    )
    if not isinstance(payload, dict):
        raise UpstreamFatalError(PROVIDER, "unexpected payload shape")
    items = payload.get("data") or []
    if not isinstance(items, list):
        raise UpstreamFatalError(PROVIDER, "data is not a list")
    tokens, rejected = normalize_records(PROVIDER, items, normalize_token)
    if query:
        tokens = [token for token in tokens if matches(token, query)]
    return SourceResult(provider=SOURCE_HINT, tokens=tokens, rejected=rejected)
