"""BLE advertisement tracking and parsing module."""

from .parsers import RuuviParser
from .tracker import AdvertisementTracker, DiscoveryError, DiscoveryState

__all__ = ["AdvertisementTracker", "DiscoveryError", "DiscoveryState", "RuuviParser"]
