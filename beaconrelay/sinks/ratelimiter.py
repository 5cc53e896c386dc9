"""Per-sink rate limiter that coalesces measurements into periodic batches."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from ..models import PublishableMeasurement

logger = logging.getLogger(__name__)

PublishBatch = Callable[[list[PublishableMeasurement]], Awaitable[None]]

# Measurements waiting for the coalescing task
DEFAULT_QUEUE_SIZE = 4

# Windows are stretched or shrunk by up to this fraction so that sinks
# sharing a window length don't flush in lockstep
WINDOW_JITTER = 0.2


class RateLimiter:
    """Publishes at most one batch per window, keeping the latest value per sensor.

    Without a window every measurement is published right away as a batch of
    one. Failed batches are logged and dropped.
    """

    def __init__(
        self,
        window: Optional[float],
        publish_batch: PublishBatch,
        name: str = "",
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._window = window
        self._publish_batch = publish_batch
        self._name = name
        self._queue: asyncio.Queue[PublishableMeasurement] = asyncio.Queue(maxsize=queue_size)
        self._task: Optional[asyncio.Task] = None

    @property
    def window(self) -> Optional[float]:
        """Window length in seconds, None when not rate limited."""
        return self._window

    async def start(self) -> None:
        """Start the coalescing task when a window is configured."""
        if self._window is None or self._task is not None:
            return

        logger.info("Rate limiting sink %s to 1 batch per %.0fs", self._name, self._window)
        self._task = asyncio.create_task(self._run(), name=f"ratelimiter_{self._name}")

    async def stop(self) -> None:
        """Stop the coalescing task, dropping any pending window."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def publish(self, measurement: PublishableMeasurement) -> None:
        """Hand a measurement to the limiter.

        Blocks while the queue is full.
        """
        if self._window is None:
            await self._dispatch([measurement])
        else:
            await self._queue.put(measurement)

    def _next_wait_duration(self) -> float:
        jitter = (random.random() * 2 * WINDOW_JITTER - WINDOW_JITTER) * self._window
        return self._window + jitter

    async def _dispatch(self, batch: list[PublishableMeasurement]) -> None:
        try:
            await self._publish_batch(batch)
        except Exception as e:
            logger.warning(
                "Sink %s failed to publish %d measurement(s): %s",
                self._name,
                len(batch),
                e,
            )

    async def _run(self) -> None:
        """Coalesce measurements and flush them when the deadline passes."""
        loop = asyncio.get_running_loop()
        pending: dict[str, PublishableMeasurement] = {}
        deadline = loop.time() + self._next_wait_duration()

        while True:
            remaining = deadline - loop.time()
            if remaining > 0:
                try:
                    measurement = await asyncio.wait_for(self._queue.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass
                else:
                    pending[measurement.sensor_mac] = measurement
                    continue

            if pending:
                batch = list(pending.values())
                pending = {}
                await self._dispatch(batch)
            deadline = loop.time() + self._next_wait_duration()
