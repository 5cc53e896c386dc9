from __future__ import annotations

import asyncio
from typing import Any

import pytest

from beaconrelay.ble.transports.base import BaseTransport, TransportError

RUUVI_V2_PAYLOAD = bytes.fromhex("0512FC5394C37C0004FFFC040CAC364200CDCBB8334C884F")


class FakeTransport(BaseTransport):
    """In-memory transport; tests push events (or exceptions) onto ``queue``."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self.props: dict[str, dict[str, Any]] = {}
        self.fetch_calls: list[str] = []
        self.start_calls = 0
        self.start_errors: list[Exception] = []
        self.discovering = True
        self.discovering_error: Exception | None = None
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def events(self):
        while True:
            item = await self.queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    async def fetch_all_properties(self, device_key: str) -> dict[str, Any]:
        self.fetch_calls.append(device_key)
        if device_key not in self.props:
            raise TransportError(f"no such object: {device_key}")
        return dict(self.props[device_key])

    async def start_discovery(self) -> None:
        self.start_calls += 1
        if self.start_errors:
            raise self.start_errors.pop(0)

    async def is_discovering(self) -> bool:
        if self.discovering_error is not None:
            raise self.discovering_error
        return self.discovering


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
