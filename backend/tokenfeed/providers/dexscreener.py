from __future__ import annotations

from typing import Any

from tokenfeed.config.settings import settings
from tokenfeed.errors import NormalizationError, UpstreamFatalError
from tokenfeed.providers.http import UpstreamClient
from tokenfeed.providers.records import dig, normalize_records, to_float, to_int
from tokenfeed.schemas.provider import SourceResult
from tokenfeed.schemas.token import Asset

PROVIDER = "dexscreener"
SOURCE_HINT = "DexScreener"

_SEARCH_PATH = "/search"
_TOKENS_PATH = "/tokens"


def _build_url(path: str) -> str:
    base_url = settings.providers.dexscreener_base_url.rstrip("/")
    return f"{base_url}{path}"


def _liquidity(pair: dict) -> float:
    try:
        return float(dig(pair, "liquidity", "usd") or 0)
    except (TypeError, ValueError):
        return 0.0


def best_pairs(pairs: list[Any]) -> list[dict]:
    """One pair per base token: the one with the deepest USD liquidity.

    Pairs without a base token address are passed through so that the
    normalizer reports them as rejected records.
    """
    by_address: dict[str, dict] = {}
    orphans: list[Any] = []
    for pair in pairs:
        address = dig(pair, "baseToken", "address")
        if not address:
            orphans.append(pair)
            continue
        current = by_address.get(address)
        if current is None or _liquidity(pair) > _liquidity(current):
            by_address[address] = pair
    return [*by_address.values(), *orphans]


def normalize_pair(pair: Any) -> Asset:
    if not isinstance(pair, dict):
        raise NormalizationError("pair is not an object")
    address = dig(pair, "baseToken", "address")
    if not address:
        raise NormalizationError("pair has no baseToken.address")

    h24 = dig(pair, "txns", "h24")
    tx_count = None
    if isinstance(h24, dict):
        tx_count = (to_int(h24.get("buys")) or 0) + (to_int(h24.get("sells")) or 0)

    market_cap = pair.get("marketCap")
    if market_cap is None:
        market_cap = pair.get("fdv")

    return Asset(
        address=address,
        name=dig(pair, "baseToken", "name"),
        ticker=dig(pair, "baseToken", "symbol"),
        price_usd=to_float(pair.get("priceUsd")),
        price_native=to_float(pair.get("priceNative")),
        market_cap=to_float(market_cap),
        volume=to_float(dig(pair, "volume", "h24")),
        liquidity=to_float(dig(pair, "liquidity", "usd")),
        tx_count=tx_count,
        price_change_1h=to_float(dig(pair, "priceChange", "h1")),
        price_change_24h=to_float(dig(pair, "priceChange", "h24")),
        protocol=pair.get("dexId"),
        source_hints=[SOURCE_HINT],
    )


def _pairs(payload: Any) -> list[Any]:
    if not isinstance(payload, dict):
        raise UpstreamFatalError(PROVIDER, "unexpected payload shape")
    pairs = payload.get("pairs") or []
    if not isinstance(pairs, list):
        raise UpstreamFatalError(PROVIDER, "pairs is not a list")
    return pairs


async def search(client: UpstreamClient, query: str | None) -> SourceResult:
    term = (query or "").strip() or settings.providers.default_search
    payload = await client.get_json(PROVIDER, _build_url(_SEARCH_PATH), params={"q": term})
    tokens, rejected = normalize_records(PROVIDER, best_pairs(_pairs(payload)), normalize_pair)
    return SourceResult(provider=SOURCE_HINT, tokens=tokens, rejected=rejected)


async def lookup(client: UpstreamClient, address: str) -> SourceResult:
    payload = await client.get_json(PROVIDER, _build_url(f"{_TOKENS_PATH}/{address}"))
    pairs = [pair for pair in best_pairs(_pairs(payload)) if dig(pair, "baseToken", "address") == address]
    tokens, rejected = normalize_records(PROVIDER, pairs, normalize_pair)
    return SourceResult(provider=SOURCE_HINT, tokens=tokens, rejected=rejected)
