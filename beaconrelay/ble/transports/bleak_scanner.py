"""Transport built on the Bleak scanner's detection callbacks.

Bleak does not report device removal or the adapter's discovering state, so
every advertisement becomes a PropertiesChanged event and a watchdog stands
in for the discovering check: no data for WATCHDOG_TIMEOUT_SECONDS counts as
"not discovering" and makes the tracker restart discovery.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from bleak import BleakScanner as BleakScannerLib
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakDBusError, BleakError

from .base import (
    DEVICE_INTERFACE,
    PROP_ADDRESS,
    PROP_MANUFACTURER_DATA,
    PROP_RSSI,
    BaseTransport,
    NotReadyError,
    PropertiesChanged,
    TransportError,
    TransportEvent,
)

logger = logging.getLogger(__name__)

NOT_READY_ERROR = "org.bluez.Error.NotReady"


class BleakTransport(BaseTransport):
    """Device events from a Bleak scanner, restarted with a fresh instance."""

    # No data for this long means the scanner silently stopped
    # (BlueZ often does after a while)
    WATCHDOG_TIMEOUT_SECONDS = 45

    # Timeout for stop() operation - don't let it hang forever
    STOP_TIMEOUT_SECONDS = 10

    def __init__(self, adapter: str = "hci0") -> None:
        self._adapter = adapter
        self._scanner: Optional[BleakScannerLib] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._props: dict[str, dict[str, Any]] = {}
        self._last_data_time: Optional[datetime] = None

    def _detection_callback(
        self,
        device: BLEDevice,
        advertisement_data: AdvertisementData,
    ) -> None:
        """Turn a detected advertisement into a PropertiesChanged event."""
        key = device.address.upper()
        changed = {
            PROP_MANUFACTURER_DATA: dict(advertisement_data.manufacturer_data),
            PROP_RSSI: advertisement_data.rssi,
        }
        self._props[key] = {PROP_ADDRESS: device.address, **changed}
        self._last_data_time = datetime.now()
        self._queue.put_nowait(
            PropertiesChanged(device_key=key, interface=DEVICE_INTERFACE, changed=changed)
        )

    async def connect(self) -> None:
        """Nothing to connect; the scanner is created by start_discovery()."""
        logger.info("Using Bleak scanner on adapter %s", self._adapter)

    async def close(self) -> None:
        await self._stop_scanner_safe()

    async def events(self) -> AsyncIterator[TransportEvent]:
        while True:
            yield await self._queue.get()

    async def fetch_all_properties(self, device_key: str) -> dict[str, Any]:
        props = self._props.get(device_key)
        if props is None:
            raise TransportError(f"device {device_key} was never seen")
        return dict(props)

    async def start_discovery(self) -> None:
        """Start a fresh scanner instance, stopping any previous one."""
        await self._stop_scanner_safe()
        scanner = BleakScannerLib(
            detection_callback=self._detection_callback,
            adapter=self._adapter,
        )
        try:
            await scanner.start()
        except BleakDBusError as e:
            if e.dbus_error == NOT_READY_ERROR:
                raise NotReadyError(str(e)) from e
            raise TransportError(f"failed to start scanner: {e}") from e
        except BleakError as e:
            raise TransportError(f"failed to start scanner: {e}") from e

        self._scanner = scanner
        self._last_data_time = datetime.now()
        logger.info("BLE scanner started")

    async def is_discovering(self) -> bool:
        """Report the scanner as stopped when the watchdog expired."""
        if self._scanner is None:
            return False
        if self._last_data_time:
            elapsed = (datetime.now() - self._last_data_time).total_seconds()
            if elapsed > self.WATCHDOG_TIMEOUT_SECONDS:
                logger.warning("No data for %.0fs", elapsed)
                return False
        return True

    async def _stop_scanner_safe(self) -> None:
        """Stop scanner with timeout protection."""
        if self._scanner is None:
            return

        try:
            await asyncio.wait_for(
                self._scanner.stop(),
                timeout=self.STOP_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning("Scanner stop() timed out after %ds", self.STOP_TIMEOUT_SECONDS)
        except BleakError as e:
            logger.debug("Error stopping scanner: %s", e)
        finally:
            self._scanner = None
