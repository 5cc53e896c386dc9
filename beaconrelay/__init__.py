"""beaconrelay: relay RuuviTag BLE measurements to downstream sinks."""

__version__ = "0.1.0"
