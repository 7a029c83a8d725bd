"""FastAPI dependency injection — wires adapters into use cases."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.adapters.jobs.runner import DistributionJobRunner
from app.adapters.jobs.sweeper import PreviewSweeper, sweep_expired
from app.adapters.llm.openai_allocator import OpenAIAllocator
from app.adapters.persistence.database import async_session_factory, get_session
from app.adapters.persistence.repositories import (
    SqlGroupRepository,
    SqlPreviewRepository,
    SqlTaskRepository,
    SqlUserRepository,
)
from app.application.ports.job_scheduler import Job
from app.application.use_cases.distribute_tasks import DistributionOrchestrator
from app.config import settings
from app.domain.entities.distribution import GenerateRequest

logger = logging.getLogger(__name__)

# Re-export session dependency
get_db_session = get_session

# Singletons owned by the application lifespan
_allocator = OpenAIAllocator()
job_runner = DistributionJobRunner(workers=settings.distribution_workers)


def build_orchestrator(session: AsyncSession) -> DistributionOrchestrator:
    return DistributionOrchestrator(
        allocator=_allocator,
        group_repo=SqlGroupRepository(session),
        task_repo=SqlTaskRepository(session),
        user_repo=SqlUserRepository(session),
        preview_repo=SqlPreviewRepository(session),
        scheduler=job_runner,
        job_factory=compute_job,
        batch_size=settings.distribution_batch_size,
        preview_ttl=timedelta(hours=settings.preview_ttl_hours),
        allocation_timeout=settings.llm_timeout_seconds,
    )


def compute_job(preview_id: str, request: GenerateRequest) -> Job:
    """Compute job with its own session; the request session is long gone by then."""

    async def job() -> None:
        async with async_session_factory() as session:
            await build_orchestrator(session).compute(preview_id, request)
            await session.commit()

    return job


async def _sweep_once() -> int:
    async with async_session_factory() as session:
        deleted = await sweep_expired(SqlPreviewRepository(session))
        await session.commit()
        return deleted


preview_sweeper = PreviewSweeper(_sweep_once, interval=settings.preview_sweep_interval_seconds)


def get_orchestrator(
    session: AsyncSession = Depends(get_session),
) -> DistributionOrchestrator:
    return build_orchestrator(session)
