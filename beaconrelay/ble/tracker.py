"""Advertisement tracker with discovery supervision.

Keeps the last known advertisement of every device seen through the
transport and emits it whenever the device's manufacturer data or RSSI
changes. A second task keeps the adapter in discovery mode, restarting it
when the BLE daemon stops discovering.
"""

from __future__ import annotations

import asyncio
import logging
import re
from enum import Enum
from typing import Any, AsyncIterator, Optional

from ..backoff import exponential
from ..models import RawAdvertisement
from .transports.base import (
    DEVICE_INTERFACE,
    PROP_ADDRESS,
    PROP_MANUFACTURER_DATA,
    PROP_RSSI,
    BaseTransport,
    DeviceAdded,
    DeviceRemoved,
    NotReadyError,
    PropertiesChanged,
    TransportError,
    TransportEvent,
)

logger = logging.getLogger(__name__)

# How often to check that the adapter is still discovering
DISCOVERY_POLL_INTERVAL_SECONDS = 240

# StartDiscovery attempts on "not ready" before giving up
MAX_START_ATTEMPTS = 5
START_RETRY_BASE_SECONDS = 1.0
START_RETRY_MAX_SECONDS = 5.0
START_RETRY_FACTOR = 2.0

# Emitted advertisements waiting for the consumer
DEFAULT_QUEUE_SIZE = 10

_MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}(:[0-9A-Fa-f]{2}){5}$")

_END_OF_STREAM = object()


class TrackerError(Exception):
    """Base class for fatal tracker errors."""


class DiscoveryError(TrackerError):
    """Discovery could not be started or supervised."""


class DiscoveryState(Enum):
    """States of the discovery supervisor."""

    STARTING = "starting"
    POLLING = "polling"
    RESTARTING = "restarting"
    FAILED = "failed"


def parse_manufacturer_data(value: Any) -> dict[int, bytes]:
    """Convert a ManufacturerData property into ``{company_id: payload}``."""
    if not isinstance(value, dict):
        raise ValueError(f"manufacturer data is not a mapping: {value!r}")
    result = {}
    for company_id, payload in value.items():
        if not isinstance(company_id, int) or not 0 <= company_id <= 0xFFFF:
            raise ValueError(f"invalid manufacturer ID: {company_id!r}")
        if not isinstance(payload, (bytes, bytearray, list)):
            raise ValueError(f"manufacturer data for {company_id:#06x} is not bytes")
        result[company_id] = bytes(payload)
    return result


def parse_advertisement(props: dict[str, Any]) -> RawAdvertisement:
    """Build a RawAdvertisement from a device's properties.

    Raises:
        ValueError: the address is missing or malformed, or the manufacturer
            data cannot be parsed.
    """
    address = props.get(PROP_ADDRESS)
    if address is None:
        raise ValueError("device doesn't have an Address property")
    if not isinstance(address, str) or not _MAC_RE.match(address):
        raise ValueError(f"address is not a valid MAC: {address!r}")

    manufacturer_data: dict[int, bytes] = {}
    if PROP_MANUFACTURER_DATA in props:
        manufacturer_data = parse_manufacturer_data(props[PROP_MANUFACTURER_DATA])

    return RawAdvertisement(address=address, manufacturer_data=manufacturer_data)


class AdvertisementTracker:
    """Tracks device advertisements reported by a transport.

    Events are processed one at a time by a single task. The device cache is
    only read and written under ``_lock`` so that the discovery supervisor
    can clear it between events.
    """

    def __init__(
        self,
        transport: BaseTransport,
        poll_interval: float = DISCOVERY_POLL_INTERVAL_SECONDS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._transport = transport
        self._poll_interval = poll_interval
        self._cache: dict[str, RawAdvertisement] = {}
        self._lock = asyncio.Lock()
        self._results: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._event_task: Optional[asyncio.Task] = None
        self._discovery_task: Optional[asyncio.Task] = None
        self._finished = False
        self._error: Optional[BaseException] = None
        self.discovery_state = DiscoveryState.STARTING

    @property
    def error(self) -> Optional[BaseException]:
        """The error that ended the advertisement stream, if any."""
        return self._error

    @property
    def cached_devices(self) -> int:
        """Number of devices currently cached."""
        return len(self._cache)

    async def start(self) -> None:
        """Start processing events and supervising discovery."""
        if self._event_task is not None:
            logger.warning("Tracker already running")
            return

        logger.info("Starting advertisement tracker")
        self._event_task = asyncio.create_task(
            self._process_events(),
            name="tracker_events",
        )
        self._discovery_task = asyncio.create_task(
            self._supervise_discovery(),
            name="tracker_discovery",
        )
        self._event_task.add_done_callback(self._on_task_done)
        self._discovery_task.add_done_callback(self._on_task_done)

    async def stop(self) -> None:
        """Stop the tracker and end the advertisement stream."""
        tasks = [t for t in (self._event_task, self._discovery_task) if t]
        self._finish(None)
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                # already recorded by _on_task_done
                pass
        logger.info("Advertisement tracker stopped")

    async def advertisements(self) -> AsyncIterator[RawAdvertisement]:
        """Yield emitted advertisements until the tracker stops or fails.

        Check ``error`` once the iteration is over.
        """
        while True:
            item = await self._results.get()
            if item is _END_OF_STREAM:
                return
            yield item

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Tracker task %s failed: %s", task.get_name(), exc)
        elif task is self._event_task:
            logger.info("Transport event stream ended")
        self._finish(exc)

    def _finish(self, error: Optional[BaseException]) -> None:
        """Record the first error and close the stream, exactly once."""
        if error is not None and self._error is None:
            self._error = error
        if self._finished:
            return
        self._finished = True

        for task in (self._event_task, self._discovery_task):
            if task is not None and not task.done():
                task.cancel()
        # The end marker must not wait for a consumer that may be gone
        if self._results.full():
            dropped = self._results.get_nowait()
            logger.debug("Dropping unread advertisement from %s", dropped.address)
        self._results.put_nowait(_END_OF_STREAM)

    async def _process_events(self) -> None:
        """Consume transport events until the stream ends."""
        async for event in self._transport.events():
            try:
                await self._handle_event(event)
            except (TransportError, ValueError) as e:
                logger.warning("Error handling %s for %s: %s", type(event).__name__, event.device_key, e)

    async def _handle_event(self, event: TransportEvent) -> None:
        if isinstance(event, PropertiesChanged):
            await self._handle_properties_changed(event)
        elif isinstance(event, DeviceAdded):
            await self._handle_device_added(event)
        elif isinstance(event, DeviceRemoved):
            async with self._lock:
                if self._cache.pop(event.device_key, None) is not None:
                    logger.debug("Removed %s from cache", event.device_key)

    async def _handle_properties_changed(self, event: PropertiesChanged) -> None:
        if event.interface != DEVICE_INTERFACE:
            return

        async with self._lock:
            publish = False
            advertisement = self._cache.get(event.device_key)
            if advertisement is None:
                props = await self._transport.fetch_all_properties(event.device_key)
                advertisement = parse_advertisement(props)
                publish = True

            if PROP_MANUFACTURER_DATA in event.changed:
                advertisement = RawAdvertisement(
                    address=advertisement.address,
                    manufacturer_data=parse_manufacturer_data(event.changed[PROP_MANUFACTURER_DATA]),
                )
                publish = True

            # RSSI changes republish the last payload as a liveness signal
            if PROP_RSSI in event.changed:
                publish = True

            if publish:
                await self._publish(event.device_key, advertisement)

    async def _handle_device_added(self, event: DeviceAdded) -> None:
        props = event.interfaces.get(DEVICE_INTERFACE)
        if props is None:
            return

        advertisement = parse_advertisement(props)
        async with self._lock:
            await self._publish(event.device_key, advertisement)

    async def _publish(self, device_key: str, advertisement: RawAdvertisement) -> None:
        """Cache and emit an advertisement. Must be called with lock held."""
        self._cache[device_key] = advertisement
        if advertisement.manufacturer_data:
            await self._results.put(advertisement)

    async def _start_discovery_with_retry(self) -> None:
        """Call StartDiscovery, retrying while the adapter is not ready."""
        retry_num = 0
        while True:
            await asyncio.sleep(
                exponential(
                    retry_num,
                    START_RETRY_BASE_SECONDS,
                    START_RETRY_MAX_SECONDS,
                    START_RETRY_FACTOR,
                )
            )
            try:
                await self._transport.start_discovery()
                return
            except NotReadyError as e:
                if retry_num + 1 >= MAX_START_ATTEMPTS:
                    raise DiscoveryError(
                        f"failed to start discovery after {retry_num + 1} attempts: {e}"
                    ) from e
                logger.warning("Failed to start discovery (%s), retrying...", e)
                retry_num += 1
            except TransportError as e:
                raise DiscoveryError(f"failed to start discovery: {e}") from e

    async def _supervise_discovery(self) -> None:
        """Keep the adapter discovering.

        A single StartDiscovery should last forever, but the BLE daemon can
        be restarted or crash, so the adapter state is polled periodically.
        """
        try:
            while True:
                self.discovery_state = DiscoveryState.STARTING
                await self._start_discovery_with_retry()
                logger.info("Discovery started")

                self.discovery_state = DiscoveryState.POLLING
                discovering = True
                while discovering:
                    await asyncio.sleep(self._poll_interval)
                    try:
                        discovering = await self._transport.is_discovering()
                    except TransportError as e:
                        raise DiscoveryError(f"failed to read discovering status: {e}") from e

                self.discovery_state = DiscoveryState.RESTARTING
                # The cache might be stale
                async with self._lock:
                    self._cache.clear()
                logger.warning("Discovering stopped, restarting...")
        except asyncio.CancelledError:
            raise
        except Exception:
            self.discovery_state = DiscoveryState.FAILED
            raise
