"""Port interface for distribution preview persistence."""

from abc import ABC, abstractmethod
from datetime import datetime

from app.domain.entities.distribution import DistributionPreview


class PreviewRepository(ABC):
    @abstractmethod
    async def create(self, preview: DistributionPreview) -> DistributionPreview:
        """Persist a new preview.

        The record must be durable and visible to other sessions on return,
        because the compute job reads it from its own session.
        """
        ...

    @abstractmethod
    async def get_by_id(self, preview_id: str) -> DistributionPreview | None:
        ...

    @abstractmethod
    async def finalize(self, preview: DistributionPreview) -> bool:
        """Write the terminal state only if the stored record is still Processing.

        Returns False if the record is gone or was already finalized.
        """
        ...

    @abstractmethod
    async def mark_applied(self, preview_id: str, applied_at: datetime) -> bool:
        """Compare-and-swap applied_at from NULL on a Completed preview."""
        ...

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        """Delete every preview with expires_at < now, regardless of status."""
        ...

    async def rollback(self) -> None:
        """Discard the current unit of work after a failed statement.

        Stores without transactions have nothing to discard.
        """
