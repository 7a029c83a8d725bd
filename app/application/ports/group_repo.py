"""Port interface for group lookup."""

from abc import ABC, abstractmethod

from app.domain.entities.group import Group


class GroupRepository(ABC):
    @abstractmethod
    async def get_by_id(self, group_id: str) -> Group | None:
        ...
