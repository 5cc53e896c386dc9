"""Main application coordinator."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from .ble.parsers import RuuviParser
from .ble.tracker import AdvertisementTracker, TrackerError
from .ble.transports import BaseTransport, create_transport
from .config import load_config
from .models import AppConfig
from .sinks import Sink, create_sink

logger = logging.getLogger(__name__)


class BeaconRelayApp:
    """Wires the transport, tracker, parser and sinks together."""

    def __init__(self, config_path: Optional[Path] = None) -> None:
        self._config_path = config_path
        self._config: Optional[AppConfig] = None
        self._transport: Optional[BaseTransport] = None
        self._tracker: Optional[AdvertisementTracker] = None
        self._parser = RuuviParser()
        self._sinks: list[Sink] = []
        self._running = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._relay_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start all components."""
        logger.info("Starting beaconrelay...")
        self._running = True

        self._config = load_config(self._config_path)

        # Sinks first so nothing is lost once advertisements flow
        for sink_config in self._config.sinks:
            sink = create_sink(sink_config)
            await sink.start()
            self._sinks.append(sink)

        self._transport = create_transport(self._config.transport, self._config.adapter)
        await self._transport.connect()

        self._tracker = AdvertisementTracker(self._transport)
        await self._tracker.start()

        self._relay_task = asyncio.create_task(self._relay(), name="relay")

        logger.info(
            "beaconrelay started (adapter %s, %d sinks)",
            self._config.adapter,
            len(self._sinks),
        )

    async def stop(self) -> None:
        """Stop all components."""
        if not self._running:
            return

        logger.info("Stopping beaconrelay...")
        self._running = False

        if self._relay_task:
            self._relay_task.cancel()
            try:
                await self._relay_task
            except asyncio.CancelledError:
                pass
            self._relay_task = None

        if self._tracker:
            await self._tracker.stop()

        if self._transport:
            await self._transport.close()

        for sink in self._sinks:
            await sink.stop()
        self._sinks.clear()

        logger.info("beaconrelay stopped")

    async def _relay(self) -> None:
        """Decode tracker advertisements and fan them out to every sink."""
        async for advertisement in self._tracker.advertisements():
            measurement = self._parser.parse(advertisement)
            if measurement is None:
                continue
            for sink in self._sinks:
                await sink.publish(measurement)

    async def run(self) -> None:
        """Run the application until a shutdown signal or a tracker failure.

        Raises:
            TrackerError: the tracker stopped because of a fatal error
        """
        self._shutdown_event = asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(
                sig,
                lambda: asyncio.create_task(self._handle_shutdown()),
            )

        try:
            await self.start()

            shutdown = asyncio.create_task(self._shutdown_event.wait())
            await asyncio.wait(
                {shutdown, self._relay_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            shutdown.cancel()

            if not self._shutdown_event.is_set():
                self._check_relay()
        finally:
            await self.stop()

    def _check_relay(self) -> None:
        """Raise the reason the advertisement stream ended."""
        exc = self._relay_task.exception()
        if exc:
            raise TrackerError(f"relay failed: {exc}") from exc
        if self._tracker.error:
            raise TrackerError(
                f"BLE advertisement tracker failed: {self._tracker.error}"
            ) from self._tracker.error
        raise TrackerError("BLE advertisement stream ended")

    async def _handle_shutdown(self) -> None:
        """Handle shutdown signal."""
        logger.info("Shutdown signal received")
        self._shutdown_event.set()
