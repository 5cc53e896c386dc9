"""HTTP endpoint sink."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from ..models import HttpSinkConfig, PublishableMeasurement, build_publication
from .base import Sink, SinkPublishError

logger = logging.getLogger(__name__)


class HttpSink(Sink):
    """POSTs measurement batches as JSON to an HTTP endpoint."""

    def __init__(self, config: HttpSinkConfig) -> None:
        super().__init__(config.name, config.rate_limit)
        self._config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        self._session = aiohttp.ClientSession(
            headers=self._config.headers,
            timeout=aiohttp.ClientTimeout(total=self._config.timeout),
        )
        logger.info("Sink %s: publishing to %s", self.name, self._config.url)
        await super().start()

    async def stop(self) -> None:
        await super().stop()
        if self._session:
            await self._session.close()
            self._session = None

    async def publish_batch(self, measurements: list[PublishableMeasurement]) -> None:
        if self._session is None:
            raise SinkPublishError("sink is not started")

        try:
            async with self._session.post(self._config.url, json=build_publication(measurements)) as resp:
                if resp.status >= 300:
                    raise SinkPublishError(f"{self._config.url} returned HTTP {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SinkPublishError(f"{self._config.url} unreachable: {e}") from e

        logger.debug("Sink %s: published %d measurement(s)", self.name, len(measurements))
