"""Base class for measurement sinks."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from ..models import PublishableMeasurement, RateLimitConfig
from .ratelimiter import RateLimiter


class SinkPublishError(Exception):
    """A batch could not be delivered by a sink."""


class Sink(ABC):
    """A downstream endpoint fed through its own rate limiter."""

    def __init__(self, name: str, rate_limit: Optional[RateLimitConfig] = None) -> None:
        self.name = name
        window = rate_limit.max_1_in if rate_limit else None
        self._limiter = RateLimiter(window, self.publish_batch, name=name)

    async def start(self) -> None:
        """Open connections and start the rate limiter."""
        await self._limiter.start()

    async def stop(self) -> None:
        """Stop the rate limiter and close connections."""
        await self._limiter.stop()

    async def publish(self, measurement: PublishableMeasurement) -> None:
        """Queue a measurement for publishing."""
        await self._limiter.publish(measurement)

    @abstractmethod
    async def publish_batch(self, measurements: list[PublishableMeasurement]) -> None:
        """
        Deliver a batch of measurements.

        Raises:
            SinkPublishError: the batch could not be delivered
        """
        pass
