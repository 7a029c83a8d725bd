"""Port interface for task persistence."""

from abc import ABC, abstractmethod

from app.domain.entities.task import TaskItem
from app.domain.value_objects.date_range import DateRange


class TaskRepository(ABC):
    @abstractmethod
    async def find_unassigned(
        self, group_id: str, due_range: DateRange, limit: int
    ) -> list[TaskItem]:
        """Unassigned tasks of the group due within *due_range*, ordered by due date."""
        ...

    @abstractmethod
    async def get_by_id(self, task_id: str) -> TaskItem | None:
        ...

    @abstractmethod
    async def update(self, task: TaskItem) -> TaskItem:
        """Full replace of assignee and status."""
        ...

    @abstractmethod
    async def count_open_by_user(self, group_id: str, user_ids: list[str]) -> dict[str, int]:
        """Open (not completed) assigned tasks per user; every requested id is present."""
        ...
