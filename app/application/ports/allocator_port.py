"""Port interface for generative task allocation."""

from abc import ABC, abstractmethod

from app.domain.entities.distribution import AllocationResult
from app.domain.entities.task import TaskItem
from app.domain.entities.user import User


class AllocatorPort(ABC):
    @abstractmethod
    async def allocate(
        self,
        tasks: list[TaskItem],
        users: list[User],
        workloads: dict[str, int],
    ) -> AllocationResult:
        """Propose an assignment for *tasks* over *users*.

        Best-effort: the result may cover only part of the task set, and
        ``dropped_count`` reports how many proposed entries were discarded.

        Raises:
            AllocationError: transport, parse or shape failure.
        """
        ...
