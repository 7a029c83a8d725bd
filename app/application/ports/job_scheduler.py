"""Port interface for running work outside the originating request."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

Job = Callable[[], Awaitable[None]]


class JobScheduler(ABC):
    @abstractmethod
    async def enqueue(self, key: str, job: Job) -> bool:
        """Schedule *job* under *key* and return immediately.

        Returns False if a job with the same key is already queued or running.
        The job's cancellation scope belongs to the scheduler, not the caller.
        """
        ...
