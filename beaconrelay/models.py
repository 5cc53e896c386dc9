"""Data models for beaconrelay."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union


@dataclass
class RawAdvertisement:
    """A BLE advertisement as last seen for one device.

    The address is kept in lower case, the form published as ``sensorMac``.
    """

    address: str
    manufacturer_data: dict[int, bytes] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.address = self.address.lower()


def _json_float(value: float) -> Union[float, str]:
    # JSON has no NaN, use the protobuf JSON mapping for it
    if math.isnan(value):
        return "NaN"
    return value


@dataclass
class PublishableMeasurement:
    """A measurement as published to sinks.

    NaN marks a value the sensor did not provide.
    """

    sensor_mac: str
    temperature: float = math.nan
    humidity: float = math.nan
    pressure: float = math.nan
    battery_voltage: float = math.nan

    def to_json_dict(self) -> dict:
        """Render the measurement with the publication's JSON field names."""
        return {
            "sensorMac": self.sensor_mac,
            "temperature": _json_float(self.temperature),
            "humidity": _json_float(self.humidity),
            "pressure": _json_float(self.pressure),
            "batteryVoltage": _json_float(self.battery_voltage),
        }


def build_publication(measurements: list[PublishableMeasurement]) -> dict:
    """Wrap a batch of measurements into a publication document."""
    return {"measurements": [m.to_json_dict() for m in measurements]}


class TransportType(Enum):
    """Supported BLE transports."""

    BLUEZ = "bluez"
    BLEAK = "bleak"


@dataclass
class RateLimitConfig:
    """Publish at most one batch per window."""

    max_1_in: float


@dataclass
class StdoutSinkConfig:
    """Console writer sink."""

    name: str
    rate_limit: Optional[RateLimitConfig] = None


@dataclass
class TlsConfig:
    """TLS settings for broker connections."""

    ca_certs: Optional[Path] = None
    skip_verify: bool = False


@dataclass
class MqttSinkConfig:
    """MQTT broker sink."""

    name: str
    topic: str
    server_name: str
    server_port: int = 8883
    client_id: str = ""
    username: str = ""
    password: str = ""
    tls: Optional[TlsConfig] = None
    rate_limit: Optional[RateLimitConfig] = None


@dataclass
class HttpSinkConfig:
    """HTTP endpoint sink."""

    name: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    rate_limit: Optional[RateLimitConfig] = None


SinkConfig = Union[StdoutSinkConfig, MqttSinkConfig, HttpSinkConfig]


@dataclass
class AppConfig:
    """Application configuration."""

    adapter: str = "hci0"
    transport: TransportType = TransportType.BLUEZ
    sinks: list[SinkConfig] = field(default_factory=list)

    def get_sink_names(self) -> list[str]:
        """Get names of all configured sinks."""
        return [s.name for s in self.sinks]
