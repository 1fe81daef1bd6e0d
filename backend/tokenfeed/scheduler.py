from __future__ import annotations

import asyncio

from tokenfeed.aggregation.aggregator import Aggregator
from tokenfeed.broadcast import DiffBroadcaster
from tokenfeed.observability.logging import get_logger
from tokenfeed.schemas.token import TokenQuery

logger = get_logger(__name__)


class Poller:
    """The one recurring job: refresh the full listing, then diff and broadcast it.

    The next run is only scheduled once the current one has finished, so
    ticks never overlap. Failures are logged and the loop keeps going.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        broadcaster: DiffBroadcaster,
        interval_ms: int,
    ) -> None:
        self._aggregator = aggregator
        self._broadcaster = broadcaster
        self._interval = max(interval_ms, 0) / 1000.0
        self._task: asyncio.Task | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> None:
        tokens = await self._aggregator.refresh(TokenQuery())
        await self._broadcaster.tick(tokens)
        self.ticks += 1

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("poll_tick_failed")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="tokenfeed-poller")
        logger.info("poller_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("poller_stopped", ticks=self.ticks)
