"""Transport contract between the advertisement tracker and a BLE stack."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union

# BlueZ vocabulary, shared by all transports
DEVICE_INTERFACE = "org.bluez.Device1"
ADAPTER_INTERFACE = "org.bluez.Adapter1"
PROP_ADDRESS = "Address"
PROP_MANUFACTURER_DATA = "ManufacturerData"
PROP_RSSI = "RSSI"


class TransportError(Exception):
    """A transport operation failed or the connection was lost."""


class NotReadyError(TransportError):
    """The adapter is not ready yet (e.g. still powering on)."""


@dataclass(frozen=True)
class PropertiesChanged:
    """Properties of one interface of a device object changed."""

    device_key: str
    interface: str
    changed: dict[str, Any] = field(default_factory=dict)
    invalidated: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DeviceAdded:
    """A device object appeared, with the properties of each of its interfaces."""

    device_key: str
    interfaces: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class DeviceRemoved:
    """Interfaces were removed from a device object."""

    device_key: str
    interfaces: list[str] = field(default_factory=list)


TransportEvent = Union[PropertiesChanged, DeviceAdded, DeviceRemoved]


class BaseTransport(ABC):
    """Abstract source of device events plus discovery control.

    Property values handed to the tracker are plain Python values:
    ``Address`` is a string, ``ManufacturerData`` maps company IDs to bytes
    and ``RSSI`` is an int.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the BLE stack and start delivering events."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[TransportEvent]:
        """
        Iterate over device events in arrival order.

        Raises:
            TransportError: the connection to the BLE stack was lost
        """
        pass

    @abstractmethod
    async def fetch_all_properties(self, device_key: str) -> dict[str, Any]:
        """Fetch all device properties of the given device."""
        pass

    @abstractmethod
    async def start_discovery(self) -> None:
        """
        Start discovery on the adapter.

        Raises:
            NotReadyError: the adapter is not ready yet, retrying may help
            TransportError: any other failure
        """
        pass

    @abstractmethod
    async def is_discovering(self) -> bool:
        """Check whether the adapter is still discovering."""
        pass
