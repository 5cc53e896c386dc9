"""RuuviTag manufacturer data decoder for Data Formats 3 and 5."""

from __future__ import annotations

import logging
import math
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ...models import PublishableMeasurement, RawAdvertisement
from .base import BaseParser

logger = logging.getLogger(__name__)

# RuuviTag manufacturer ID
RUUVI_MANUFACTURER_ID = 0x0499

# Data Format 3 (RAWv1): format, humidity, temperature, temperature fraction,
# pressure, acceleration x/y/z, battery voltage
_RAWV1 = struct.Struct(">BBBBHhhhH")

# Data Format 5 (RAWv2): format, temperature, humidity, pressure,
# acceleration x/y/z, power info, movement counter, sequence number, MAC
_RAWV2 = struct.Struct(">BhHHhhhHBH6s")

_INVALID_MAC = b"\xff" * 6


class RuuviDecodeError(ValueError):
    """Raised when manufacturer data is not a supported Ruuvi payload."""


class DataFormat(Enum):
    """Supported Ruuvi data formats."""

    RAW_V1 = 3
    RAW_V2 = 5


@dataclass(frozen=True)
class RuuviData:
    """Decoded Ruuvi payload. ``None`` means the sensor did not provide the field."""

    data_format: DataFormat
    temperature: Optional[float] = None  # C
    humidity: Optional[float] = None  # RH %
    pressure: Optional[float] = None  # hPa
    acceleration: tuple[Optional[float], Optional[float], Optional[float]] = (None, None, None)  # G
    battery_voltage: Optional[float] = None  # V
    tx_power: Optional[float] = None  # dBm
    movement_counter: Optional[int] = None
    measurement_sequence: Optional[int] = None
    mac: Optional[str] = None


def _unless(invalid: int, raw: int, value):
    """Return value unless raw holds the field's "not available" marker."""
    if raw == invalid:
        return None
    return value


def _format_mac(raw: bytes) -> str:
    return ":".join(f"{b:02X}" for b in raw)


def _parse_raw_v1(data: bytes) -> RuuviData:
    """
    Parse Data Format 3 (RAWv1).

    Format:
    - Byte 0: Data format (0x03)
    - Byte 1: Humidity (0.5% per unit)
    - Byte 2: Temperature (bit 7 sign, bits 6-0 integer part)
    - Byte 3: Temperature (fraction, 1/100)
    - Bytes 4-5: Pressure (unsigned, 50000 Pa added)
    - Bytes 6-7: Acceleration X (mG)
    - Bytes 8-9: Acceleration Y (mG)
    - Bytes 10-11: Acceleration Z (mG)
    - Bytes 12-13: Battery voltage (mV)
    """
    if len(data) != _RAWV1.size:
        raise RuuviDecodeError(
            f"Ruuvi manufacturer data must be exactly {_RAWV1.size} bytes, got {len(data)}"
        )

    (
        _,
        humidity,
        temp_raw,
        temp_fraction,
        pressure,
        accel_x,
        accel_y,
        accel_z,
        battery_mv,
    ) = _RAWV1.unpack(data)

    temperature = None
    if temp_fraction < 100:
        temperature = (temp_raw & 0x7F) + temp_fraction / 100.0
        if temp_raw & 0x80:
            temperature = -temperature

    return RuuviData(
        data_format=DataFormat.RAW_V1,
        temperature=temperature,
        humidity=humidity / 2.0,
        pressure=(pressure + 50000) / 100.0,
        acceleration=(accel_x / 1000.0, accel_y / 1000.0, accel_z / 1000.0),
        battery_voltage=battery_mv / 1000.0,
    )


def _parse_raw_v2(data: bytes) -> RuuviData:
    """
    Parse Data Format 5 (RAWv2).

    Format:
    - Byte 0: Data format (0x05)
    - Bytes 1-2: Temperature (0.005 degree per unit, signed)
    - Bytes 3-4: Humidity (0.0025% per unit)
    - Bytes 5-6: Pressure (unsigned, 50000 Pa added)
    - Bytes 7-8: Acceleration X
    - Bytes 9-10: Acceleration Y
    - Bytes 11-12: Acceleration Z
    - Bytes 13-14: Power info (11 bits voltage, 5 bits TX power)
    - Byte 15: Movement counter
    - Bytes 16-17: Measurement sequence
    - Bytes 18-23: MAC address

    Every field has a reserved "not available" value (the maximum for
    unsigned fields, the minimum for signed ones).
    """
    if len(data) != _RAWV2.size:
        raise RuuviDecodeError(
            f"Ruuvi manufacturer data must be exactly {_RAWV2.size} bytes, got {len(data)}"
        )

    (
        _,
        temperature,
        humidity,
        pressure,
        accel_x,
        accel_y,
        accel_z,
        power_info,
        movement_counter,
        sequence,
        mac,
    ) = _RAWV2.unpack(data)

    battery_raw = power_info >> 5
    tx_raw = power_info & 0x1F

    return RuuviData(
        data_format=DataFormat.RAW_V2,
        temperature=_unless(-32768, temperature, temperature * 0.005),
        humidity=_unless(65535, humidity, humidity * 0.0025),
        pressure=_unless(65535, pressure, (pressure + 50000) / 100.0),
        acceleration=(
            _unless(-32768, accel_x, accel_x / 1000.0),
            _unless(-32768, accel_y, accel_y / 1000.0),
            _unless(-32768, accel_z, accel_z / 1000.0),
        ),
        battery_voltage=_unless(2047, battery_raw, (battery_raw + 1600) / 1000.0),
        tx_power=_unless(31, tx_raw, tx_raw * 2.0 - 40.0),
        movement_counter=_unless(255, movement_counter, movement_counter),
        measurement_sequence=_unless(65535, sequence, sequence),
        mac=None if mac == _INVALID_MAC else _format_mac(mac),
    )


def decode(data: bytes) -> RuuviData:
    """Decode Ruuvi manufacturer data.

    Raises:
        RuuviDecodeError: empty input, unsupported data format or a payload
            of the wrong length for its format.
    """
    if len(data) < 1:
        raise RuuviDecodeError("got empty manufacturer data")

    data_format = data[0]
    try:
        if data_format == DataFormat.RAW_V1.value:
            return _parse_raw_v1(data)
        if data_format == DataFormat.RAW_V2.value:
            return _parse_raw_v2(data)
    except RuuviDecodeError as e:
        raise RuuviDecodeError(f"failed to parse data in format {data_format}: {e}") from e

    raise RuuviDecodeError(
        f"only Ruuvi data formats 3 and 5 are supported, got: {data_format}"
    )


def _nan_if_none(value: Optional[float]) -> float:
    return math.nan if value is None else value


class RuuviParser(BaseParser):
    """Parser for RuuviTag Data Format 3 (RAWv1) and Data Format 5 (RAWv2)."""

    def can_parse(self, advertisement: RawAdvertisement) -> bool:
        """Check if this is a RuuviTag advertisement."""
        return RUUVI_MANUFACTURER_ID in advertisement.manufacturer_data

    def parse(self, advertisement: RawAdvertisement) -> Optional[PublishableMeasurement]:
        """Decode the Ruuvi payload and flatten it for publishing."""
        if not self.can_parse(advertisement):
            return None

        data = advertisement.manufacturer_data[RUUVI_MANUFACTURER_ID]
        try:
            ruuvi_data = decode(data)
        except RuuviDecodeError as e:
            logger.warning(
                "Failed to parse Ruuvi data from %s: %s",
                advertisement.address,
                e,
            )
            return None

        return PublishableMeasurement(
            sensor_mac=advertisement.address,
            temperature=_nan_if_none(ruuvi_data.temperature),
            humidity=_nan_if_none(ruuvi_data.humidity),
            pressure=_nan_if_none(ruuvi_data.pressure),
            battery_voltage=_nan_if_none(ruuvi_data.battery_voltage),
        )
