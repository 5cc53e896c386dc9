"""BlueZ transport talking to the Bluetooth daemon over the system D-Bus.

Listens for PropertiesChanged signals of org.bluez.Device1 objects under the
adapter and for ObjectManager InterfacesAdded/InterfacesRemoved signals.
See https://git.kernel.org/pub/scm/bluetooth/bluez.git/tree/doc for the
BlueZ D-Bus API.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

from dbus_fast import BusType, Message, MessageType, Variant
from dbus_fast.aio import MessageBus

from .base import (
    ADAPTER_INTERFACE,
    DEVICE_INTERFACE,
    BaseTransport,
    DeviceAdded,
    DeviceRemoved,
    NotReadyError,
    PropertiesChanged,
    TransportError,
    TransportEvent,
)

logger = logging.getLogger(__name__)

BLUEZ_SERVICE = "org.bluez"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"
NOT_READY_ERROR = "org.bluez.Error.NotReady"

_DISCONNECTED = object()


def unwrap_variants(value: Any) -> Any:
    """Recursively replace D-Bus variants with their plain values."""
    if isinstance(value, Variant):
        value = value.value
    if isinstance(value, dict):
        return {k: unwrap_variants(v) for k, v in value.items()}
    if isinstance(value, list):
        return [unwrap_variants(v) for v in value]
    return value


class BluezTransport(BaseTransport):
    """Device events and discovery control through BlueZ on the system bus."""

    def __init__(self, adapter: str = "hci0") -> None:
        self._adapter = adapter
        self._adapter_path = f"/org/bluez/{adapter}"
        self._bus: Optional[MessageBus] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._disconnect_task: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        """Connect to the system bus and subscribe to device signals."""
        try:
            self._bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        except Exception as e:
            raise TransportError(f"failed to connect to system bus: {e}") from e

        # Report a missing adapter clearly instead of failing in StartDiscovery
        objects = await self._call(
            "/",
            OBJECT_MANAGER_INTERFACE,
            "GetManagedObjects",
        )
        if self._adapter_path not in objects[0]:
            raise TransportError(
                f"requested to listen on Bluetooth adapter '{self._adapter}', but it doesn't exist"
            )

        self._bus.add_message_handler(self._on_message)
        for rule in (
            "type='signal',interface='org.freedesktop.DBus.Properties',"
            f"member='PropertiesChanged',path_namespace='{self._adapter_path}'",
            "type='signal',interface='org.freedesktop.DBus.ObjectManager',member='InterfacesAdded'",
            "type='signal',interface='org.freedesktop.DBus.ObjectManager',member='InterfacesRemoved'",
        ):
            await self._add_match(rule)

        self._disconnect_task = asyncio.create_task(
            self._watch_disconnect(),
            name="bluez_disconnect_watch",
        )
        logger.info("Connected to BlueZ adapter %s", self._adapter)

    async def close(self) -> None:
        """Disconnect from the system bus."""
        if self._disconnect_task:
            self._disconnect_task.cancel()
            try:
                await self._disconnect_task
            except asyncio.CancelledError:
                pass
            self._disconnect_task = None

        if self._bus:
            self._bus.remove_message_handler(self._on_message)
            self._bus.disconnect()
            self._bus = None
            logger.info("Disconnected from system bus")

    async def events(self) -> AsyncIterator[TransportEvent]:
        """Yield device events until the bus connection is lost."""
        while True:
            item = await self._queue.get()
            if item is _DISCONNECTED:
                raise TransportError("system bus connection lost")
            yield item

    async def fetch_all_properties(self, device_key: str) -> dict[str, Any]:
        body = await self._call(
            device_key,
            PROPERTIES_INTERFACE,
            "GetAll",
            signature="s",
            body=[DEVICE_INTERFACE],
        )
        return unwrap_variants(body[0])

    async def start_discovery(self) -> None:
        await self._call(self._adapter_path, ADAPTER_INTERFACE, "StartDiscovery")

    async def is_discovering(self) -> bool:
        body = await self._call(
            self._adapter_path,
            PROPERTIES_INTERFACE,
            "Get",
            signature="ss",
            body=[ADAPTER_INTERFACE, "Discovering"],
        )
        return bool(unwrap_variants(body[0]))

    async def _call(
        self,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: Optional[list] = None,
        destination: str = BLUEZ_SERVICE,
    ) -> list:
        """Call a method and return the reply body, raising on D-Bus errors."""
        if self._bus is None:
            raise TransportError("not connected")

        reply = await self._bus.call(
            Message(
                destination=destination,
                path=path,
                interface=interface,
                member=member,
                signature=signature,
                body=body or [],
            )
        )
        if reply is None:
            raise TransportError(f"no reply to {interface}.{member}")
        if reply.message_type == MessageType.ERROR:
            text = reply.body[0] if reply.body else ""
            if reply.error_name == NOT_READY_ERROR or text == "Resource Not Ready":
                raise NotReadyError(f"{reply.error_name}: {text}")
            raise TransportError(f"{interface}.{member} failed: {reply.error_name}: {text}")
        return reply.body

    async def _add_match(self, rule: str) -> None:
        await self._call(
            "/org/freedesktop/DBus",
            "org.freedesktop.DBus",
            "AddMatch",
            signature="s",
            body=[rule],
            destination="org.freedesktop.DBus",
        )

    async def _watch_disconnect(self) -> None:
        try:
            await self._bus.wait_for_disconnect()
        except Exception as e:
            logger.warning("System bus disconnected with error: %s", e)
        self._queue.put_nowait(_DISCONNECTED)

    def _in_adapter(self, path: str) -> bool:
        return path.startswith(self._adapter_path + "/")

    def _on_message(self, msg: Message) -> None:
        """Translate BlueZ signals into transport events."""
        if msg.message_type != MessageType.SIGNAL:
            return

        try:
            if msg.interface == PROPERTIES_INTERFACE and msg.member == "PropertiesChanged":
                if not self._in_adapter(msg.path):
                    return
                interface, changed, invalidated = msg.body
                event = PropertiesChanged(
                    device_key=msg.path,
                    interface=interface,
                    changed=unwrap_variants(changed),
                    invalidated=list(invalidated),
                )
            elif msg.interface == OBJECT_MANAGER_INTERFACE and msg.member == "InterfacesAdded":
                path, interfaces = msg.body
                if not self._in_adapter(path):
                    return
                event = DeviceAdded(device_key=path, interfaces=unwrap_variants(interfaces))
            elif msg.interface == OBJECT_MANAGER_INTERFACE and msg.member == "InterfacesRemoved":
                path, interfaces = msg.body
                if not self._in_adapter(path):
                    return
                event = DeviceRemoved(device_key=path, interfaces=list(interfaces))
            else:
                return
        except (TypeError, ValueError) as e:
            logger.warning("Failed to parse %s signal: %s", msg.member, e)
            return

        self._queue.put_nowait(event)
