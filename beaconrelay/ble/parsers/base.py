"""Base parser class for BLE advertisements."""

from abc import ABC, abstractmethod
from typing import Optional

from ...models import PublishableMeasurement, RawAdvertisement


class BaseParser(ABC):
    """Abstract base class for BLE advertisement parsers."""

    @abstractmethod
    def parse(self, advertisement: RawAdvertisement) -> Optional[PublishableMeasurement]:
        """
        Parse an advertisement and return a PublishableMeasurement if valid.

        Args:
            advertisement: Advertisement as emitted by the tracker

        Returns:
            PublishableMeasurement if successfully parsed, None otherwise
        """
        pass

    @abstractmethod
    def can_parse(self, advertisement: RawAdvertisement) -> bool:
        """
        Check if this parser can handle the given advertisement.

        Args:
            advertisement: Advertisement as emitted by the tracker

        Returns:
            True if this parser can handle the data
        """
        pass
