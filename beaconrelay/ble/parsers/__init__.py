"""BLE advertisement parsers."""

from .base import BaseParser
from .ruuvi import RuuviDecodeError, RuuviParser, decode

__all__ = ["BaseParser", "RuuviDecodeError", "RuuviParser", "decode"]
