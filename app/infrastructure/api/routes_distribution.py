"""Distribution endpoints — generate preview, poll it, apply it."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.adapters.persistence.database import get_session
from app.application.use_cases.distribute_tasks import DistributionOrchestrator
from app.config import settings
from app.domain.entities.distribution import (
    AssignmentModification,
    DistributionPreview,
    DistributionStats,
    GenerateRequest,
)
from app.domain.errors import ApplyStateError, GroupNotFoundError, PreviewNotFoundError
from app.domain.value_objects.date_range import DateRange
from app.infrastructure.api.dependencies import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/distribution", tags=["distribution"])

# ── Request schemas ─────────────────────────────────────────────────


class GenerateDistributionBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    group_id: str = Field(alias="groupId")
    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")
    user_ids: list[str] | None = Field(default=None, alias="userIds")


class ModificationBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    new_assigned_user_id: str = Field(alias="newAssignedUserId")


class ApplyDistributionBody(BaseModel):
    modifications: list[ModificationBody] | None = None


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


# ── Endpoints ───────────────────────────────────────────────────────


@router.post("/generate")
async def generate_distribution(
    body: GenerateDistributionBody,
    orchestrator: DistributionOrchestrator = Depends(get_orchestrator),
):
    """Create a distribution preview and start computing it in the background."""
    start, end = _as_utc(body.start_date), _as_utc(body.end_date)
    if end <= start:
        raise _error(400, "INVALID_DATE_RANGE", "End date must be after start date")
    if end - start > timedelta(days=settings.max_date_range_days):
        raise _error(
            400,
            "DATE_RANGE_TOO_LARGE",
            f"Date range cannot exceed {settings.max_date_range_days} days",
        )

    request = GenerateRequest(
        group_id=body.group_id,
        date_range=DateRange(start=start, end=end),
        user_ids=tuple(body.user_ids) if body.user_ids else None,
    )
    try:
        preview_id = await orchestrator.generate(request)
    except GroupNotFoundError as e:
        logger.warning("Invalid distribution request: %s", e)
        raise _error(400, "INVALID_REQUEST", str(e))

    return {"previewId": preview_id, "status": "Processing"}


@router.get("/preview/{preview_id}")
async def get_preview(
    preview_id: str,
    orchestrator: DistributionOrchestrator = Depends(get_orchestrator),
):
    """Poll a preview; assignments and stats are filled once it is Completed."""
    try:
        preview = await orchestrator.get_preview(preview_id)
    except PreviewNotFoundError as e:
        raise _error(404, "PREVIEW_NOT_FOUND", str(e))
    return _serialize_preview(preview)


@router.post("/{preview_id}/apply")
async def apply_distribution(
    preview_id: str,
    body: ApplyDistributionBody | None = None,
    orchestrator: DistributionOrchestrator = Depends(get_orchestrator),
    session: AsyncSession = Depends(get_session),
):
    """Write the (optionally modified) preview assignments to the tasks."""
    modifications = [
        AssignmentModification(task_id=m.task_id, new_assigned_user_id=m.new_assigned_user_id)
        for m in ((body.modifications if body else None) or [])
    ]
    try:
        result = await orchestrator.apply(preview_id, modifications)
    except PreviewNotFoundError as e:
        raise _error(404, "PREVIEW_NOT_FOUND", str(e))
    except ApplyStateError as e:
        logger.warning("Invalid apply request for preview %s: %s", preview_id, e)
        raise _error(400, "INVALID_APPLY", str(e))
    await session.commit()

    return {
        "assignedCount": result.assigned_count,
        "modifiedCount": result.modified_count,
        "finalStats": _serialize_stats(result.final_stats),
    }


def _serialize_stats(s: DistributionStats) -> dict:
    return {
        "totalTasks": s.total_tasks,
        "totalUsers": s.total_users,
        "workloadVariance": s.workload_variance_percent,
        "tasksPerUser": dict(s.tasks_per_user),
    }


def _serialize_preview(p: DistributionPreview) -> dict:
    return {
        "id": p.id,
        "groupId": p.group_id,
        "status": p.status.value,
        "method": p.method.value if p.method else None,
        "assignments": [
            {
                "taskId": a.task_id,
                "taskName": a.task_name,
                "assignedUserId": a.assigned_user_id,
                "assignedUserName": a.assigned_user_name,
                "confidence": a.confidence,
                "rationale": a.rationale,
            }
            for a in p.assignments
        ],
        "stats": _serialize_stats(p.stats),
        "error": p.error,
        "createdAt": p.created_at.isoformat(),
        "expiresAt": p.expires_at.isoformat(),
        "appliedAt": p.applied_at.isoformat() if p.applied_at else None,
    }
