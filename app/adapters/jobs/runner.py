"""DistributionJobRunner — asyncio worker pool implementing JobScheduler."""

from __future__ import annotations

import asyncio
import logging

from app.application.ports.job_scheduler import Job, JobScheduler

logger = logging.getLogger(__name__)


class DistributionJobRunner(JobScheduler):
    """Runs keyed jobs on a fixed pool of worker tasks.

    Jobs are owned by the runner: cancelling the coroutine that enqueued a
    job has no effect on it. Only stop() cancels in-flight work.
    """

    def __init__(self, workers: int = 2):
        if workers < 1:
            raise ValueError("Job runner needs at least one worker")
        self._worker_count = workers
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._pending: set[str] = set()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending_keys(self) -> frozenset[str]:
        """Keys queued or currently running."""
        return frozenset(self._pending)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"distribution-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("Job runner started with %d workers", self._worker_count)

    async def stop(self) -> None:
        """Cancel workers; jobs still queued are dropped."""
        workers, self._workers = self._workers, []
        for w in workers:
            w.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        dropped = self._queue.qsize()
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._pending.clear()
        logger.info("Job runner stopped (%d queued jobs dropped)", dropped)

    async def enqueue(self, key: str, job: Job) -> bool:
        if key in self._pending:
            return False
        self._pending.add(key)
        await self._queue.put((key, job))
        logger.debug("Job %s queued (%d pending)", key, len(self._pending))
        return True

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            key, job = await self._queue.get()
            try:
                logger.debug("Worker %d running job %s", index, key)
                await job()
            except Exception:
                logger.exception("Job %s failed", key)
            finally:
                self._pending.discard(key)
                self._queue.task_done()
