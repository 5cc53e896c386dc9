"""BLE transports feeding the advertisement tracker."""

from __future__ import annotations

from ...models import TransportType
from .base import (
    BaseTransport,
    DeviceAdded,
    DeviceRemoved,
    NotReadyError,
    PropertiesChanged,
    TransportError,
)


def create_transport(transport_type: TransportType, adapter: str) -> BaseTransport:
    """Create the transport selected in the configuration."""
    if transport_type == TransportType.BLEAK:
        from .bleak_scanner import BleakTransport

        return BleakTransport(adapter)

    from .bluez import BluezTransport

    return BluezTransport(adapter)


__all__ = [
    "BaseTransport",
    "DeviceAdded",
    "DeviceRemoved",
    "NotReadyError",
    "PropertiesChanged",
    "TransportError",
    "create_transport",
]
