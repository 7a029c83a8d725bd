"""DistributionOrchestrator — preview lifecycle: generate → compute → apply."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from app.application.ports.allocator_port import AllocatorPort
from app.application.ports.group_repo import GroupRepository
from app.application.ports.job_scheduler import Job, JobScheduler
from app.application.ports.preview_repo import PreviewRepository
from app.application.ports.task_repo import TaskRepository
from app.application.ports.user_repo import UserRepository
from app.domain.entities.distribution import (
    AllocationResult,
    ApplyResult,
    AssignmentModification,
    AssignmentRecord,
    DistributionPreview,
    DistributionStats,
    GenerateRequest,
)
from app.domain.entities.task import TaskItem
from app.domain.entities.user import User
from app.domain.errors import (
    AllocationError,
    ApplyStateError,
    GroupNotFoundError,
    PreviewNotFoundError,
)
from app.domain.policies import greedy_balancer
from app.domain.policies.workload_stats import calculate_stats
from app.domain.value_objects.enums import DistributionMethod, PreviewStatus

logger = logging.getLogger(__name__)

NO_TASKS_NOTE = "No unassigned tasks found in date range"
NO_USERS_ERROR = "No valid users found"

JobFactory = Callable[[str, GenerateRequest], Job]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DistributionOrchestrator:
    """Owns the distribution preview state machine.

    Processing → Completed | Failed; terminal states are final. Compute runs
    as a scheduler job keyed by preview id, never inline with generate().
    """

    def __init__(
        self,
        allocator: AllocatorPort,
        group_repo: GroupRepository,
        task_repo: TaskRepository,
        user_repo: UserRepository,
        preview_repo: PreviewRepository,
        scheduler: JobScheduler,
        job_factory: JobFactory | None = None,
        batch_size: int = 100,
        preview_ttl: timedelta = timedelta(hours=24),
        allocation_timeout: float | None = 30.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._allocator = allocator
        self._groups = group_repo
        self._tasks = task_repo
        self._users = user_repo
        self._previews = preview_repo
        self._scheduler = scheduler
        # Default job reuses this orchestrator; the web layer injects one that
        # opens its own session.
        self._job_factory = job_factory or (
            lambda preview_id, request: lambda: self.compute(preview_id, request)
        )
        self._batch_size = batch_size
        self._preview_ttl = preview_ttl
        self._allocation_timeout = allocation_timeout
        self._clock = clock

    # ── Generate ────────────────────────────────────────────────────

    async def generate(self, request: GenerateRequest) -> str:
        """Create a Processing preview, schedule its compute job, return its id.

        Raises:
            GroupNotFoundError: the group does not exist (no preview is created).
        """
        logger.info(
            "Generating distribution for group %s, due %s .. %s",
            request.group_id, request.date_range.start, request.date_range.end,
        )
        group = await self._groups.get_by_id(request.group_id)
        if group is None:
            raise GroupNotFoundError(request.group_id)

        preview = DistributionPreview.start(
            preview_id=uuid.uuid4().hex,
            group_id=request.group_id,
            now=self._clock(),
            ttl=self._preview_ttl,
        )
        # create() commits the caller's unit of work so the compute job's own
        # session can see the row; keep no other pending writes before it.
        await self._previews.create(preview)

        scheduled = await self._scheduler.enqueue(
            preview.id, self._job_factory(preview.id, request)
        )
        if not scheduled:
            logger.warning("Compute job for preview %s was already scheduled", preview.id)

        logger.info("Preview %s created for group %s", preview.id, request.group_id)
        return preview.id

    # ── Compute ─────────────────────────────────────────────────────

    async def compute(self, preview_id: str, request: GenerateRequest) -> None:
        """Run allocation for a Processing preview and finalize it.

        Never raises for domain outcomes: "no tasks" completes with a note,
        "no users" and unexpected errors finalize the preview as Failed.
        """
        preview = await self._previews.get_by_id(preview_id)
        if preview is None:
            logger.warning("Preview %s vanished before compute (expired?)", preview_id)
            return
        if preview.is_terminal():
            logger.info("Preview %s already %s, skipping compute", preview_id, preview.status.value)
            return

        try:
            await self._compute(preview, request)
        except Exception as e:
            logger.exception("Error computing distribution %s", preview_id)
            await self._fail(preview_id, str(e) or type(e).__name__)

    async def _compute(self, preview: DistributionPreview, request: GenerateRequest) -> None:
        tasks = await self._tasks.find_unassigned(
            request.group_id, request.date_range, self._batch_size
        )
        if not tasks:
            logger.info("Preview %s: no unassigned tasks in range", preview.id)
            preview.complete(None, [], DistributionStats(), note=NO_TASKS_NOTE)
            await self._finalize(preview)
            return

        users = await self._resolve_users(request)
        if not users:
            logger.warning("Preview %s: no resolvable users", preview.id)
            preview.fail(NO_USERS_ERROR)
            await self._finalize(preview)
            return

        method, result = await self._allocate(preview.id, request.group_id, tasks, users)
        stats = calculate_stats(result.assignments, [u.id for u in users])
        preview.complete(method, result.assignments, stats)
        if not await self._finalize(preview):
            return

        logger.info(
            "Distribution %s completed using %s: %d tasks, %d users, variance %.2f%%",
            preview.id, method.value, stats.total_tasks, stats.total_users,
            stats.workload_variance_percent,
        )

    async def _resolve_users(self, request: GenerateRequest) -> list[User]:
        if request.user_ids:
            user_ids = list(dict.fromkeys(request.user_ids))
        else:
            group = await self._groups.get_by_id(request.group_id)
            if group is None:
                return []
            user_ids = group.member_ids()
        if not user_ids:
            return []
        return await self._users.get_by_ids(user_ids)

    async def _allocate(
        self,
        preview_id: str,
        group_id: str,
        tasks: list[TaskItem],
        users: list[User],
    ) -> tuple[DistributionMethod, AllocationResult]:
        """Generative first; greedy over ALL tasks on failure or partial coverage."""
        workloads = await self._tasks.count_open_by_user(group_id, [u.id for u in users])

        try:
            result = await asyncio.wait_for(
                self._allocator.allocate(tasks, users, workloads),
                timeout=self._allocation_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Preview %s: generative allocation timed out after %ss, using rule-based",
                preview_id, self._allocation_timeout,
            )
        except AllocationError as e:
            logger.warning(
                "Preview %s: generative allocation failed (%s), using rule-based",
                preview_id, e,
            )
        except Exception:
            logger.exception(
                "Preview %s: unexpected generative allocator error, using rule-based",
                preview_id,
            )
        else:
            if result.covers([t.id for t in tasks]):
                return DistributionMethod.GENERATIVE, result
            logger.warning(
                "Preview %s: generative allocation covered %d/%d tasks (%d dropped), "
                "re-running rule-based over all tasks",
                preview_id, len(result.assignments), len(tasks), result.dropped_count,
            )

        return DistributionMethod.RULE_BASED, greedy_balancer.distribute(tasks, users)

    async def _finalize(self, preview: DistributionPreview) -> bool:
        if await self._previews.finalize(preview):
            return True
        logger.warning(
            "Preview %s was not Processing at finalize time; result discarded", preview.id
        )
        return False

    async def _fail(self, preview_id: str, error: str) -> None:
        # The failed statement may have aborted the transaction; the preview
        # row itself was committed by create().
        await self._previews.rollback()
        current = await self._previews.get_by_id(preview_id)
        if current is None or current.is_terminal():
            return
        current.fail(error)
        await self._finalize(current)

    # ── Read ────────────────────────────────────────────────────────

    async def get_preview(self, preview_id: str) -> DistributionPreview:
        preview = await self._previews.get_by_id(preview_id)
        if preview is None:
            raise PreviewNotFoundError(preview_id)
        return preview

    # ── Apply ───────────────────────────────────────────────────────

    async def apply(
        self,
        preview_id: str,
        modifications: list[AssignmentModification] | None = None,
    ) -> ApplyResult:
        """Commit a Completed preview (with optional overrides) to the task store.

        The preview itself is only touched to claim it (applied_at CAS);
        a second apply of the same preview is rejected.

        Raises:
            PreviewNotFoundError: unknown preview id.
            ApplyStateError: preview not Completed, or already applied.
        """
        preview = await self._previews.get_by_id(preview_id)
        if preview is None:
            raise PreviewNotFoundError(preview_id)
        if preview.status != PreviewStatus.COMPLETED:
            raise ApplyStateError(
                f"Cannot apply preview with status {preview.status.value}"
            )
        if preview.applied_at is not None or not await self._previews.mark_applied(
            preview_id, self._clock()
        ):
            raise ApplyStateError(f"Preview {preview_id} has already been applied")

        assignments = [replace(a) for a in preview.assignments]
        modified_count = await self._apply_modifications(assignments, modifications or [])

        assigned_count = 0
        for a in assignments:
            task = await self._tasks.get_by_id(a.task_id)
            if task is None:
                logger.warning(
                    "Apply %s: task %s no longer exists, skipping", preview_id, a.task_id
                )
                continue
            task.assign(a.assigned_user_id)
            await self._tasks.update(task)
            assigned_count += 1

        referenced = list(dict.fromkeys(a.assigned_user_id for a in assignments))
        users = await self._users.get_by_ids(referenced)
        final_stats = calculate_stats(assignments, [u.id for u in users])

        logger.info(
            "Applied distribution %s. Assigned: %d, Modified: %d",
            preview_id, assigned_count, modified_count,
        )
        return ApplyResult(
            assigned_count=assigned_count,
            modified_count=modified_count,
            final_stats=final_stats,
        )

    async def _apply_modifications(
        self,
        assignments: list[AssignmentRecord],
        modifications: list[AssignmentModification],
    ) -> int:
        by_task = {a.task_id: a for a in assignments}
        modified = 0
        for mod in modifications:
            record = by_task.get(mod.task_id)
            if record is None:
                logger.warning("Modification for task %s not in preview, ignored", mod.task_id)
                continue
            user = await self._users.get_by_id(mod.new_assigned_user_id)
            if user is None:
                logger.warning(
                    "Modification for task %s targets unknown user %s, ignored",
                    mod.task_id, mod.new_assigned_user_id,
                )
                continue
            record.assigned_user_id = user.id
            record.assigned_user_name = user.display_name
            modified += 1
        return modified
