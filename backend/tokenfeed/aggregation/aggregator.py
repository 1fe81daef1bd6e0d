from __future__ import annotations

import asyncio
from collections.abc import Awaitable

from pydantic import ValidationError

from tokenfeed.aggregation.merge import build_report
from tokenfeed.cache import CacheStore
from tokenfeed.config.settings import Settings
from tokenfeed.errors import EnrichmentError, UpstreamError
from tokenfeed.observability.logging import get_logger
from tokenfeed.providers import dexscreener, geckoterminal, jupiter
from tokenfeed.providers.http import UpstreamClient
from tokenfeed.schemas.provider import MergeReport, SourceResult
from tokenfeed.schemas.token import Asset, TokenQuery

logger = get_logger(__name__)

_TOKEN_KEY_PREFIX = "token:"


def _dump(tokens: list[Asset]) -> list[dict]:
    return [token.model_dump(mode="json") for token in tokens]


def _load(cached: object) -> list[Asset] | None:
    if not isinstance(cached, list):
        return None
    try:
        return [Asset.model_validate(item) for item in cached]
    except ValidationError:
        return None


async def settle(provider: str, call: Awaitable[SourceResult]) -> SourceResult:
    """Await one provider fetch, turning any failure into an empty contribution."""
    try:
        return await call
    except UpstreamError as exc:
        logger.warning("provider_failed", provider=provider, error=str(exc))
        return SourceResult(provider=provider, error=str(exc))
    except Exception as exc:
        logger.exception("provider_crashed", provider=provider)
        return SourceResult(provider=provider, error=f"unexpected: {exc}")


class Aggregator:
    """Fetch, normalize and merge the providers behind a cache-aside lookup."""

    def __init__(self, cache: CacheStore, client: UpstreamClient, settings: Settings) -> None:
        self.cache = cache
        self.client = client
        self.settings = settings
        self._inflight: dict[str, asyncio.Future[list[Asset]]] = {}

    async def aggregate(self, query: TokenQuery) -> list[Asset]:
        key = query.cache_key()
        cached = _load(await self.cache.get(key))
        if cached is not None:
            return cached

        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(self._refresh_key(key, query))
            self._inflight[key] = future
            future.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(future)

    async def refresh(self, query: TokenQuery) -> list[Asset]:
        """Recompute the merged set for ``query`` and write it back, ignoring the cache."""
        return await self._refresh_key(query.cache_key(), query)

    async def get_token(self, address: str) -> Asset | None:
        key = f"{_TOKEN_KEY_PREFIX}{address}"
        cached = _load(await self.cache.get(key))
        if cached:
            return cached[0]

        source = await settle(
            dexscreener.SOURCE_HINT, dexscreener.lookup(self.client, address)
        )
        report = await build_report([source], self._fetch_prices, jupiter.SOURCE_HINT)
        self._log_report(key, report)
        token = report.tokens.get(address)
        if token is None:
            return None
        await self.cache.set(key, _dump([token]), self.settings.cache_ttl_seconds)
        return token

    async def merge(self, query: TokenQuery) -> MergeReport:
        sources = await asyncio.gather(
            settle(dexscreener.SOURCE_HINT, dexscreener.search(self.client, query.q)),
            settle(
                geckoterminal.SOURCE_HINT,
                geckoterminal.list_tokens(self.client, query.page, query.q),
            ),
        )
        return await build_report(list(sources), self._fetch_prices, jupiter.SOURCE_HINT)

    async def _refresh_key(self, key: str, query: TokenQuery) -> list[Asset]:
        report = await self.merge(query)
        self._log_report(key, report)
        tokens = report.ordered()
        await self.cache.set(key, _dump(tokens), self.settings.cache_ttl_seconds)
        return tokens

    async def _fetch_prices(self, addresses: list[str]) -> dict[str, float]:
        try:
            return await jupiter.fetch_prices(self.client, addresses)
        except UpstreamError as exc:
            raise EnrichmentError(str(exc)) from exc

    def _forget(self, key: str, done: asyncio.Future) -> None:
        if self._inflight.get(key) is done:
            del self._inflight[key]

    def _log_report(self, key: str, report: MergeReport) -> None:
        logger.info(
            "merge_complete",
            key=key,
            tokens=len(report.tokens),
            sources={source.provider: len(source.tokens) for source in report.sources},
            failed=[source.provider for source in report.sources if not source.ok],
            rejected=sum(len(source.rejected) for source in report.sources),
            enriched=report.enrichment.filled if report.enrichment else 0,
        )
