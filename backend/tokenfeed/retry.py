from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from tokenfeed.errors import UpstreamTransientError
from tokenfeed.observability.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamTransientError)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "upstream_retry",
        attempt=retry_state.attempt_number,
        delay_seconds=round(delay, 3),
        error=str(exc),
    )


async def with_backoff(
    call: Callable[[], Awaitable[T]],
    should_retry: Callable[[BaseException], bool] = is_retryable,
    *,
    retries: int = 4,
    base_ms: int = 250,
    jitter_ms: int = 100,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``call``, retrying retry-worthy failures with exponential backoff.

    The wait before retry ``n`` (zero based) is ``base * 2**n`` plus up to
    ``jitter`` milliseconds. At most ``retries`` retries follow the first
    attempt. A failure that is not retry-worthy, or the failure of the last
    attempt, is re-raised as is. Only use this for side-effect-free calls.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=base_ms / 1000.0) + wait_random(0, jitter_ms / 1000.0),
        retry=retry_if_exception(should_retry),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    return await retrying(call)
