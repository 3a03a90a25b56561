"""
Abstract shipment tracking provider - the reconciler depends only on this.
"""
from abc import ABC, abstractmethod
from typing import Optional


class TrackingProvider(ABC):
    """Courier-agnostic tracking API."""

    @abstractmethod
    async def create_tracking(
        self,
        slug: str,
        tracking_number: str,
        title: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> dict:
        """
        Register a tracking number with one courier.
        Returns the provider's tracking object. Raises CourierAPIError.
        """
        ...

    @abstractmethod
    async def get_tracking(self, slug: str, tracking_number: str) -> dict:
        """
        Read an existing tracking.
        Returns the provider's tracking object. Raises CourierAPIError.
        """
        ...

    @staticmethod
    def is_already_exists(error: Exception) -> bool:
        """True when a create failed because the tracking is already registered."""
        return False
