"""Port interface for user lookup."""

from abc import ABC, abstractmethod

from app.domain.entities.user import User


class UserRepository(ABC):
    @abstractmethod
    async def get_by_ids(self, user_ids: list[str]) -> list[User]:
        """Return known users in the order of *user_ids*; unknown ids are skipped."""
        ...

    async def get_by_id(self, user_id: str) -> User | None:
        users = await self.get_by_ids([user_id])
        return users[0] if users else None
