"""PreviewSweeper — periodic deletion of expired distribution previews."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from app.application.ports.preview_repo import PreviewRepository

logger = logging.getLogger(__name__)


async def sweep_expired(previews: PreviewRepository, now: datetime | None = None) -> int:
    """Delete every preview past its expires_at, whatever its status."""
    now = now or datetime.now(timezone.utc)
    deleted = await previews.delete_expired(now)
    if deleted:
        logger.info("Swept %d expired distribution previews", deleted)
    return deleted


class PreviewSweeper:
    """Background loop calling *sweep* every *interval* seconds."""

    def __init__(self, sweep: Callable[[], Awaitable[int]], interval: float):
        self._sweep = sweep
        self._interval = interval
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="preview-sweeper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _loop(self) -> None:
        while True:
            try:
                await self._sweep()
            except Exception:
                logger.exception("Preview sweep failed")
            await asyncio.sleep(self._interval)
