from __future__ import annotations

from typing import Any

from tokenfeed.config.settings import settings
from tokenfeed.errors import UpstreamFatalError
from tokenfeed.providers.http import UpstreamClient

PROVIDER = "jupiter"
SOURCE_HINT = "Jupiter"


def parse_prices(payload: Any) -> dict[str, float]:
    if not isinstance(payload, dict):
        raise UpstreamFatalError(PROVIDER, "unexpected payload shape")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise UpstreamFatalError(PROVIDER, "data is not an object")
    prices: dict[str, float] = {}
    for address, entry in data.items():
        price = entry.get("price") if isinstance(entry, dict) else None
        if price is None:
            continue
        try:
            prices[address] = float(price)
        except (TypeError, ValueError):
            continue
    return prices


async def fetch_prices(client: UpstreamClient, addresses: list[str]) -> dict[str, float]:
    """USD prices for ``addresses``; addresses Jupiter does not know are left out."""
    if not addresses:
        return {}
    batch_size = max(settings.providers.jupiter_batch_size, 1)
    prices: dict[str, float] = {}
    for start in range(0, len(addresses), batch_size):
        batch = addresses[start : start + batch_size]
        payload = await client.get_json(
            PROVIDER,
            settings.providers.jupiter_base_url,
            params={"ids": ",".join(batch)},
            timeout=settings.enrichment_timeout_seconds,
        )
        prices.update(parse_prices(payload))
    return prices
