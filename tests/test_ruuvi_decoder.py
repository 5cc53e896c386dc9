from __future__ import annotations

import logging
import math

import pytest

from beaconrelay.ble.parsers.ruuvi import (
    RUUVI_MANUFACTURER_ID,
    DataFormat,
    RuuviDecodeError,
    RuuviParser,
    decode,
)
from beaconrelay.models import RawAdvertisement


def _approx_or_none(value):
    return None if value is None else pytest.approx(value, abs=1e-4)


VALID_CASES = [
    (
        "RAWv2 valid",
        "0512FC5394C37C0004FFFC040CAC364200CDCBB8334C884F",
        dict(
            data_format=DataFormat.RAW_V2,
            temperature=24.3,
            humidity=53.49,
            pressure=1000.44,
            acceleration=(0.004, -0.004, 1.036),
            tx_power=4.0,
            battery_voltage=2.977,
            movement_counter=66,
            measurement_sequence=205,
            mac="CB:B8:33:4C:88:4F",
        ),
    ),
    (
        "RAWv2 maximum",
        "057FFFFFFEFFFE7FFF7FFF7FFFFFDEFEFFFECBB8334C884F",
        dict(
            data_format=DataFormat.RAW_V2,
            temperature=163.835,
            humidity=163.835,
            pressure=1155.34,
            acceleration=(32.767, 32.767, 32.767),
            tx_power=20.0,
            battery_voltage=3.646,
            movement_counter=254,
            measurement_sequence=65534,
            mac="CB:B8:33:4C:88:4F",
        ),
    ),
    (
        "RAWv2 minimum",
        "058001000000008001800180010000000000CBB8334C884F",
        dict(
            data_format=DataFormat.RAW_V2,
            temperature=-163.835,
            humidity=0.0,
            pressure=500.0,
            acceleration=(-32.767, -32.767, -32.767),
            tx_power=-40.0,
            battery_voltage=1.6,
            movement_counter=0,
            measurement_sequence=0,
            mac="CB:B8:33:4C:88:4F",
        ),
    ),
    (
        "RAWv2 invalid",
        "058000FFFFFFFF800080008000FFFFFFFFFFFFFFFFFFFFFF",
        dict(data_format=DataFormat.RAW_V2),
    ),
    (
        "RAWv1 valid",
        "03291A1ECE1EFC18F94202CA0B53",
        dict(
            data_format=DataFormat.RAW_V1,
            temperature=26.3,
            humidity=20.5,
            pressure=1027.66,
            acceleration=(-1.0, -1.726, 0.714),
            battery_voltage=2.899,
        ),
    ),
    (
        "RAWv1 maximum",
        "03FF7F63FFFF7FFF7FFF7FFFFFFF",
        dict(
            data_format=DataFormat.RAW_V1,
            temperature=127.99,
            humidity=127.5,
            pressure=1155.35,
            acceleration=(32.767, 32.767, 32.767),
            battery_voltage=65.535,
        ),
    ),
    (
        "RAWv1 minimum",
        "0300FF6300008001800180010000",
        dict(
            data_format=DataFormat.RAW_V1,
            temperature=-127.99,
            humidity=0.0,
            pressure=500.0,
            acceleration=(-32.767, -32.767, -32.767),
            battery_voltage=0.0,
        ),
    ),
]


@pytest.mark.parametrize("name, payload, expected", VALID_CASES, ids=[c[0] for c in VALID_CASES])
def test_decode_valid(name: str, payload: str, expected: dict) -> None:
    result = decode(bytes.fromhex(payload))

    assert result.data_format == expected["data_format"]
    assert result.temperature == _approx_or_none(expected.get("temperature"))
    assert result.humidity == _approx_or_none(expected.get("humidity"))
    assert result.pressure == _approx_or_none(expected.get("pressure"))
    accel = expected.get("acceleration", (None, None, None))
    for axis, value in zip(result.acceleration, accel):
        assert axis == _approx_or_none(value)
    assert result.battery_voltage == _approx_or_none(expected.get("battery_voltage"))
    assert result.tx_power == _approx_or_none(expected.get("tx_power"))
    assert result.movement_counter == expected.get("movement_counter")
    assert result.measurement_sequence == expected.get("measurement_sequence")
    assert result.mac == expected.get("mac")


def test_rawv1_fraction_out_of_range_drops_only_temperature() -> None:
    result = decode(bytes.fromhex("03291A64CE1EFC18F94202CA0B53"))

    assert result.temperature is None
    assert result.humidity == pytest.approx(20.5)
    assert result.battery_voltage == pytest.approx(2.899)


def test_rawv2_sentinels_are_independent_per_axis() -> None:
    # only acceleration y is "not available"
    result = decode(bytes.fromhex("0512FC5394C37C00048000040CAC364200CDCBB8334C884F"))

    assert result.acceleration[0] == pytest.approx(0.004)
    assert result.acceleration[1] is None
    assert result.acceleration[2] == pytest.approx(1.036)
    assert result.temperature == pytest.approx(24.3)


@pytest.mark.parametrize(
    "payload",
    ["", "537FFF", "04", "FF0102"],
    ids=["empty", "unsupported format", "format 4", "format 255"],
)
def test_decode_invalid(payload: str) -> None:
    with pytest.raises(RuuviDecodeError):
        decode(bytes.fromhex(payload))


@pytest.mark.parametrize(
    "payload, size",
    [("03291A1ECE", 14), ("0512FC5394C37C0004FFFC040CAC364200CDCBB8334C884F00", 24)],
)
def test_decode_wrong_length_names_expected_size(payload: str, size: int) -> None:
    with pytest.raises(RuuviDecodeError, match=f"exactly {size} bytes"):
        decode(bytes.fromhex(payload))


@pytest.mark.parametrize("name, payload, expected", VALID_CASES, ids=[c[0] for c in VALID_CASES])
def test_decode_is_deterministic(name: str, payload: str, expected: dict) -> None:
    data = bytes.fromhex(payload)
    assert decode(data) == decode(data)


def test_parser_flattens_to_publishable_measurement() -> None:
    adv = RawAdvertisement(
        address="CB:B8:33:4C:88:4F",
        manufacturer_data={RUUVI_MANUFACTURER_ID: bytes.fromhex("0512FC5394C37C0004FFFC040CAC364200CDCBB8334C884F")},
    )

    measurement = RuuviParser().parse(adv)

    assert measurement is not None
    assert measurement.sensor_mac == "cb:b8:33:4c:88:4f"
    assert measurement.temperature == pytest.approx(24.3)
    assert measurement.humidity == pytest.approx(53.49)
    assert measurement.pressure == pytest.approx(1000.44)
    assert measurement.battery_voltage == pytest.approx(2.977)


def test_parser_uses_nan_for_missing_fields() -> None:
    adv = RawAdvertisement(
        address="CB:B8:33:4C:88:4F",
        manufacturer_data={RUUVI_MANUFACTURER_ID: bytes.fromhex("058000FFFFFFFF800080008000FFFFFFFFFFFFFFFFFFFFFF")},
    )

    measurement = RuuviParser().parse(adv)

    assert measurement is not None
    assert math.isnan(measurement.temperature)
    assert math.isnan(measurement.humidity)
    assert math.isnan(measurement.pressure)
    assert math.isnan(measurement.battery_voltage)


def test_parser_ignores_other_manufacturers() -> None:
    adv = RawAdvertisement(address="CB:B8:33:4C:88:4F", manufacturer_data={0x004C: b"\x02\x15"})

    parser = RuuviParser()

    assert not parser.can_parse(adv)
    assert parser.parse(adv) is None


def test_parser_logs_and_drops_undecodable_payload(caplog: pytest.LogCaptureFixture) -> None:
    adv = RawAdvertisement(address="CB:B8:33:4C:88:4F", manufacturer_data={RUUVI_MANUFACTURER_ID: b"\x53\x7f"})

    with caplog.at_level(logging.WARNING):
        assert RuuviParser().parse(adv) is None

    assert "cb:b8:33:4c:88:4f" in caplog.text
