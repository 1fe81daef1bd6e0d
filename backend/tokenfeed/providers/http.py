from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx

from tokenfeed.config.settings import Settings
from tokenfeed.errors import (
    UpstreamFatalError,
    UpstreamTransientError,
    UpstreamUnavailableError,
)
from tokenfeed.retry import with_backoff

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class TokenBucket:
    """Async token bucket; one per provider, refilled at its requests-per-minute rate."""

    def __init__(self, requests_per_minute: int) -> None:
        self.capacity = float(max(requests_per_minute, 1))
        self.refill_per_sec = self.capacity / 60.0
        self._tokens = self.capacity
        self._last = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = now - self._last
                if elapsed > 0:
                    self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_sec)
                    self._last = now
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait = (1.0 - self._tokens) / self.refill_per_sec
            await asyncio.sleep(wait)


def classify_response(provider: str, response: httpx.Response) -> None:
    """Raise the matching upstream error for a non-2xx response."""
    if response.is_success:
        return
    status = response.status_code
    if status in _RETRYABLE_STATUS or status >= 500:
        reason = "rate limited" if status == 429 else "server error"
        raise UpstreamTransientError(provider, f"{reason} ({status})", status_code=status)
    raise UpstreamFatalError(provider, f"unexpected status {status}", status_code=status)


class UpstreamClient:
    """Shared httpx client that applies rate limiting, timeouts and retries per provider."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            timeout=settings.upstream_timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self._buckets: dict[str, TokenBucket] = {
            "dexscreener": TokenBucket(settings.rpm.dexscreener),
            "geckoterminal": TokenBucket(settings.rpm.gecko),
            "jupiter": TokenBucket(settings.rpm.jupiter),
        }

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_json(
        self,
        provider: str,
        url: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        bucket = self._buckets.get(provider)

        async def _request() -> Any:
            if bucket is not None:
                await bucket.acquire()
            try:
                response = await self._client.get(
                    url,
                    params=params,
                    timeout=timeout or self._settings.upstream_timeout_seconds,
                )
            except httpx.TimeoutException as exc:
                raise UpstreamUnavailableError(provider, f"timeout: {exc}") from exc
            except httpx.TransportError as exc:
                raise UpstreamUnavailableError(provider, f"unreachable: {exc}") from exc
            classify_response(provider, response)
            try:
                return response.json()
            except ValueError as exc:
                raise UpstreamFatalError(provider, "invalid JSON body") from exc

        retry = self._settings.retry
        return await with_backoff(
            _request,
            retries=retry.max_retries,
            base_ms=retry.base_delay_ms,
            jitter_ms=retry.jitter_ms,
        )
