"""TaskItem entity — a unit of work owned by a group."""

from dataclasses import dataclass
from datetime import datetime

from app.domain.value_objects.enums import TaskStatus


@dataclass
class TaskItem:
    id: str
    group_id: str
    name: str
    difficulty: int
    due_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    assigned_user_id: str | None = None

    def is_unassigned(self) -> bool:
        return not self.assigned_user_id

    def assign(self, user_id: str) -> None:
        """Replace assignee and move the task into progress."""
        self.assigned_user_id = user_id
        self.status = TaskStatus.IN_PROGRESS
