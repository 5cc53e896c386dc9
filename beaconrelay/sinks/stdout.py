"""Console writer sink."""

from __future__ import annotations

import sys
from typing import Optional, TextIO

from ..models import PublishableMeasurement, RateLimitConfig
from .base import Sink


def format_measurement(sink_name: str, m: PublishableMeasurement) -> str:
    """Format one measurement as a console line."""
    return (
        f"[{sink_name}] {m.sensor_mac} = {m.temperature:.2f}°C, {m.humidity:.2f}%, "
        f"{m.pressure:.2f}hPa, {m.battery_voltage:.2f}V"
    )


class StdoutSink(Sink):
    """Prints measurements to the console, one line per sensor."""

    def __init__(
        self,
        name: str,
        rate_limit: Optional[RateLimitConfig] = None,
        stream: Optional[TextIO] = None,
    ) -> None:
        super().__init__(name, rate_limit)
        self._stream = stream

    async def publish_batch(self, measurements: list[PublishableMeasurement]) -> None:
        stream = self._stream or sys.stdout
        for m in sorted(measurements, key=lambda m: m.sensor_mac):
            print(format_measurement(self.name, m), file=stream)
        stream.flush()
