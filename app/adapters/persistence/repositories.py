"""SQLAlchemy repository implementations."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.adapters.persistence.models import (
    DistributionPreviewModel,
    GroupModel,
    TaskModel,
    UserModel,
)
from app.application.ports.group_repo import GroupRepository
from app.application.ports.preview_repo import PreviewRepository
from app.application.ports.task_repo import TaskRepository
from app.application.ports.user_repo import UserRepository
from app.domain.entities.distribution import (
    AssignmentRecord,
    DistributionPreview,
    DistributionStats,
)
from app.domain.entities.group import Group, GroupMember
from app.domain.entities.task import TaskItem
from app.domain.entities.user import User
from app.domain.value_objects.date_range import DateRange
from app.domain.value_objects.enums import (
    OPEN_TASK_STATUSES,
    DistributionMethod,
    GroupRole,
    PreviewStatus,
    TaskStatus,
)

# ─── Mappers ─────────────────────────────────────────────────────────


def _group_to_domain(m: GroupModel) -> Group:
    return Group(
        id=m.id,
        name=m.name,
        members=[GroupMember(user_id=gm.user_id, role=GroupRole(gm.role)) for gm in m.members],
    )


def _user_to_domain(m: UserModel) -> User:
    return User(id=m.id, first_name=m.first_name, last_name=m.last_name or "")


def _task_to_domain(m: TaskModel) -> TaskItem:
    return TaskItem(
        id=m.id,
        group_id=m.group_id,
        name=m.name,
        difficulty=m.difficulty,
        due_at=m.due_at,
        status=TaskStatus(m.status),
        assigned_user_id=m.assigned_user_id,
    )


def _assignment_to_row(a: AssignmentRecord) -> dict:
    return {
        "taskId": a.task_id,
        "taskName": a.task_name,
        "assignedUserId": a.assigned_user_id,
        "assignedUserName": a.assigned_user_name,
        "confidence": a.confidence,
        "rationale": a.rationale,
    }


def _assignment_from_row(row: dict) -> AssignmentRecord:
    return AssignmentRecord(
        task_id=row["taskId"],
        task_name=row.get("taskName", ""),
        assigned_user_id=row["assignedUserId"],
        assigned_user_name=row.get("assignedUserName", ""),
        confidence=row.get("confidence", 0.5),
        rationale=row.get("rationale"),
    )


def _preview_to_domain(m: DistributionPreviewModel) -> DistributionPreview:
    return DistributionPreview(
        id=m.id,
        group_id=m.group_id,
        created_at=m.created_at,
        expires_at=m.expires_at,
        status=PreviewStatus(m.status),
        method=DistributionMethod(m.method) if m.method else None,
        assignments=[_assignment_from_row(r) for r in (m.assignments or [])],
        stats=DistributionStats(
            total_tasks=m.total_tasks,
            total_users=m.total_users,
            workload_variance_percent=m.workload_variance,
            tasks_per_user=dict(m.tasks_per_user or {}),
        ),
        error=m.error,
        applied_at=m.applied_at,
    )


# ─── Repositories ────────────────────────────────────────────────────


class SqlGroupRepository(GroupRepository):
    def __init__(self, session: AsyncSession):
        self._s = session

    async def get_by_id(self, group_id: str) -> Group | None:
        m = await self._s.get(
            GroupModel, group_id, options=[selectinload(GroupModel.members)]
        )
        return _group_to_domain(m) if m else None


class SqlUserRepository(UserRepository):
    def __init__(self, session: AsyncSession):
        self._s = session

    async def get_by_ids(self, user_ids: list[str]) -> list[User]:
        if not user_ids:
            return []
        result = await self._s.execute(select(UserModel).where(UserModel.id.in_(user_ids)))
        found = {m.id: _user_to_domain(m) for m in result.scalars()}
        return [found[uid] for uid in dict.fromkeys(user_ids) if uid in found]


class SqlTaskRepository(TaskRepository):
    def __init__(self, session: AsyncSession):
        self._s = session

    async def find_unassigned(
        self, group_id: str, due_range: DateRange, limit: int
    ) -> list[TaskItem]:
        result = await self._s.execute(
            select(TaskModel)
            .where(
                TaskModel.group_id == group_id,
                TaskModel.assigned_user_id.is_(None),
                TaskModel.status != TaskStatus.COMPLETED.value,
                TaskModel.due_at >= due_range.start,
                TaskModel.due_at <= due_range.end,
            )
            .order_by(TaskModel.due_at, TaskModel.id)
            .limit(limit)
        )
        return [_task_to_domain(m) for m in result.scalars()]

    async def get_by_id(self, task_id: str) -> TaskItem | None:
        m = await self._s.get(TaskModel, task_id)
        return _task_to_domain(m) if m else None

    async def update(self, task: TaskItem) -> TaskItem:
        await self._s.execute(
            update(TaskModel)
            .where(TaskModel.id == task.id)
            .values(
                assigned_user_id=task.assigned_user_id,
                status=task.status.value,
            )
        )
        await self._s.flush()
        return task

    async def count_open_by_user(self, group_id: str, user_ids: list[str]) -> dict[str, int]:
        counts = {uid: 0 for uid in user_ids}
        if not user_ids:
            return counts
        result = await self._s.execute(
            select(TaskModel.assigned_user_id, func.count(TaskModel.id))
            .where(
                TaskModel.group_id == group_id,
                TaskModel.assigned_user_id.in_(user_ids),
                TaskModel.status.in_([s.value for s in OPEN_TASK_STATUSES]),
            )
            .group_by(TaskModel.assigned_user_id)
        )
        for user_id, count in result.all():
            counts[user_id] = count
        return counts


class SqlPreviewRepository(PreviewRepository):
    def __init__(self, session: AsyncSession):
        self._s = session

    async def create(self, preview: DistributionPreview) -> DistributionPreview:
        m = DistributionPreviewModel(
            id=preview.id,
            group_id=preview.group_id,
            status=preview.status.value,
            method=preview.method.value if preview.method else None,
            assignments=[_assignment_to_row(a) for a in preview.assignments],
            total_tasks=preview.stats.total_tasks,
            total_users=preview.stats.total_users,
            workload_variance=preview.stats.workload_variance_percent,
            tasks_per_user=dict(preview.stats.tasks_per_user),
            error=preview.error,
            created_at=preview.created_at,
            expires_at=preview.expires_at,
        )
        self._s.add(m)
        # Compute jobs read the row from their own session.
        await self._s.commit()
        return preview

    async def get_by_id(self, preview_id: str) -> DistributionPreview | None:
        result = await self._s.execute(
            select(DistributionPreviewModel)
            .where(DistributionPreviewModel.id == preview_id)
            .execution_options(populate_existing=True)
        )
        m = result.scalar_one_or_none()
        return _preview_to_domain(m) if m else None

    async def finalize(self, preview: DistributionPreview) -> bool:
        result = await self._s.execute(
            update(DistributionPreviewModel)
            .where(
                DistributionPreviewModel.id == preview.id,
                DistributionPreviewModel.status == PreviewStatus.PROCESSING.value,
            )
            .values(
                status=preview.status.value,
                method=preview.method.value if preview.method else None,
                assignments=[_assignment_to_row(a) for a in preview.assignments],
                total_tasks=preview.stats.total_tasks,
                total_users=preview.stats.total_users,
                workload_variance=preview.stats.workload_variance_percent,
                tasks_per_user=dict(preview.stats.tasks_per_user),
                error=preview.error,
            )
            .execution_options(synchronize_session=False)
        )
        await self._s.flush()
        return result.rowcount == 1

    async def mark_applied(self, preview_id: str, applied_at: datetime) -> bool:
        result = await self._s.execute(
            update(DistributionPreviewModel)
            .where(
                DistributionPreviewModel.id == preview_id,
                DistributionPreviewModel.status == PreviewStatus.COMPLETED.value,
                DistributionPreviewModel.applied_at.is_(None),
            )
            .values(applied_at=applied_at)
            .execution_options(synchronize_session=False)
        )
        await self._s.flush()
        return result.rowcount == 1

    async def delete_expired(self, now: datetime) -> int:
        result = await self._s.execute(
            delete(DistributionPreviewModel)
            .where(DistributionPreviewModel.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        await self._s.flush()
        return result.rowcount or 0

    async def rollback(self) -> None:
        await self._s.rollback()
