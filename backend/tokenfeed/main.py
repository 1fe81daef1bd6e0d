from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tokenfeed.aggregation.aggregator import Aggregator
from tokenfeed.api.routes import router
from tokenfeed.broadcast import DiffBroadcaster
from tokenfeed.cache import CacheStore, build_cache_store
from tokenfeed.config.settings import Settings, settings as default_settings
from tokenfeed.observability.logging import configure_logging, get_logger
from tokenfeed.providers.http import UpstreamClient
from tokenfeed.push import PushHub
from tokenfeed.scheduler import Poller

logger = get_logger(__name__)


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request_failed", path=request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(
    settings: Settings | None = None,
    cache: CacheStore | None = None,
    client: UpstreamClient | None = None,
    start_poller: bool = True,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings)

    cache = cache or build_cache_store(settings)
    client = client or UpstreamClient(settings)
    aggregator = Aggregator(cache, client, settings)
    hub = PushHub(aggregator)
    broadcaster = DiffBroadcaster(hub.publish)
    poller = Poller(aggregator, broadcaster, settings.poll_interval_ms)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if start_poller:
            poller.start()
        try:
            yield
        finally:
            await poller.stop()
            await client.aclose()
            await cache.aclose()

    app = FastAPI(title="tokenfeed", lifespan=lifespan)
    app.state.settings = settings
    app.state.aggregator = aggregator
    app.state.hub = hub
    app.state.broadcaster = broadcaster
    app.state.poller = poller
    app.add_exception_handler(Exception, _unhandled_error)
    app.include_router(router)
    return app


def run() -> None:
    uvicorn.run(create_app(), host="0.0.0.0", port=default_settings.port)


if __name__ == "__main__":
    run()
