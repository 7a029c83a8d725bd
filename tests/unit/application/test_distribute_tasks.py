"""Tests for DistributionOrchestrator with in-memory fakes."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from app.application.ports.allocator_port import AllocatorPort
from app.application.ports.group_repo import GroupRepository
from app.application.ports.job_scheduler import JobScheduler
from app.application.ports.preview_repo import PreviewRepository
from app.application.ports.task_repo import TaskRepository
from app.application.ports.user_repo import UserRepository
from app.application.use_cases.distribute_tasks import (
    NO_TASKS_NOTE,
    NO_USERS_ERROR,
    DistributionOrchestrator,
)
from app.domain.entities.distribution import (
    AllocationResult,
    AssignmentModification,
    AssignmentRecord,
    GenerateRequest,
)
from app.domain.entities.group import Group, GroupMember
from app.domain.entities.task import TaskItem
from app.domain.entities.user import User
from app.domain.errors import (
    AllocationError,
    ApplyStateError,
    GroupNotFoundError,
    PreviewNotFoundError,
)
from app.domain.value_objects.date_range import DateRange
from app.domain.value_objects.enums import DistributionMethod, PreviewStatus, TaskStatus

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
RANGE = DateRange(start=NOW, end=NOW + timedelta(days=7))

# ─── In-memory fakes ────────────────────────────────────────────────


class FakeAllocator(AllocatorPort):
    def __init__(self, result: AllocationResult | None = None, error: Exception | None = None,
                 delay: float = 0.0):
        self._result = result
        self._error = error
        self._delay = delay
        self.calls = 0
        self.last_workloads: dict[str, int] | None = None

    async def allocate(self, tasks, users, workloads):
        self.calls += 1
        self.last_workloads = workloads
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        if self._result is not None:
            return self._result
        # Round-robin in input order: total by construction
        return AllocationResult(assignments=[
            AssignmentRecord(
                task_id=t.id, task_name=t.name,
                assigned_user_id=users[i % len(users)].id,
                assigned_user_name=users[i % len(users)].display_name,
                confidence=0.9, rationale="fake",
            )
            for i, t in enumerate(tasks)
        ])


class FakeGroupRepo(GroupRepository):
    def __init__(self, groups: list[Group]):
        self._groups = {g.id: g for g in groups}

    async def get_by_id(self, group_id):
        return self._groups.get(group_id)


class FakeUserRepo(UserRepository):
    def __init__(self, users: list[User]):
        self._users = {u.id: u for u in users}

    async def get_by_ids(self, user_ids):
        return [self._users[uid] for uid in dict.fromkeys(user_ids) if uid in self._users]


class FakeTaskRepo(TaskRepository):
    def __init__(self, tasks: list[TaskItem]):
        self.tasks = {t.id: t for t in tasks}
        self.updates: list[TaskItem] = []

    async def find_unassigned(self, group_id, due_range, limit):
        found = [
            t for t in self.tasks.values()
            if t.group_id == group_id and t.is_unassigned() and due_range.contains(t.due_at)
        ]
        return sorted(found, key=lambda t: t.due_at)[:limit]

    async def get_by_id(self, task_id):
        t = self.tasks.get(task_id)
        return replace(t) if t else None

    async def update(self, task):
        self.tasks[task.id] = replace(task)
        self.updates.append(replace(task))
        return task

    async def count_open_by_user(self, group_id, user_ids):
        counts = {uid: 0 for uid in user_ids}
        for t in self.tasks.values():
            if t.assigned_user_id in counts and t.status != TaskStatus.COMPLETED:
                counts[t.assigned_user_id] += 1
        return counts


class FakePreviewRepo(PreviewRepository):
    def __init__(self):
        self.previews = {}

    async def create(self, preview):
        self.previews[preview.id] = replace(preview)
        return preview

    async def get_by_id(self, preview_id):
        p = self.previews.get(preview_id)
        return replace(p) if p else None

    async def finalize(self, preview):
        stored = self.previews.get(preview.id)
        if stored is None or stored.status != PreviewStatus.PROCESSING:
            return False
        self.previews[preview.id] = replace(preview)
        return True

    async def mark_applied(self, preview_id, applied_at):
        stored = self.previews.get(preview_id)
        if stored is None or stored.status != PreviewStatus.COMPLETED or stored.applied_at:
            return False
        stored.applied_at = applied_at
        return True

    async def delete_expired(self, now):
        expired = [pid for pid, p in self.previews.items() if p.expires_at < now]
        for pid in expired:
            del self.previews[pid]
        return len(expired)


class RecordingScheduler(JobScheduler):
    """Collects jobs instead of running them, so tests decide when compute runs."""

    def __init__(self):
        self.jobs = {}

    async def enqueue(self, key, job):
        if key in self.jobs:
            return False
        self.jobs[key] = job
        return True

    async def run_all(self):
        jobs, self.jobs = self.jobs, {}
        for job in jobs.values():
            await job()


# ─── Fixtures ────────────────────────────────────────────────────────


def _users(n: int) -> list[User]:
    return [User(id=f"u{i}", first_name=f"User{i}", last_name="Test") for i in range(1, n + 1)]


def _tasks(n: int, group_id: str = "g1") -> list[TaskItem]:
    return [
        TaskItem(
            id=f"t{i:02d}", group_id=group_id, name=f"Task {i}",
            difficulty=(i % 10) + 1, due_at=NOW + timedelta(hours=i),
        )
        for i in range(1, n + 1)
    ]


def _group(users: list[User], group_id: str = "g1") -> Group:
    return Group(id=group_id, name="Flat 4B", members=[GroupMember(user_id=u.id) for u in users])


def _make(users=None, tasks=None, groups=None, allocator=None, extra_users=None,
          task_repo=None, preview_repo=None, **kwargs):
    users = _users(5) if users is None else users
    tasks = _tasks(12) if tasks is None else tasks
    groups = [_group(users)] if groups is None else groups
    deps = {
        "allocator": allocator or FakeAllocator(),
        "groups": FakeGroupRepo(groups),
        "tasks": task_repo or FakeTaskRepo(tasks),
        "users": FakeUserRepo(users + (extra_users or [])),
        "previews": preview_repo or FakePreviewRepo(),
        "scheduler": RecordingScheduler(),
    }
    orchestrator = DistributionOrchestrator(
        allocator=deps["allocator"],
        group_repo=deps["groups"],
        task_repo=deps["tasks"],
        user_repo=deps["users"],
        preview_repo=deps["previews"],
        scheduler=deps["scheduler"],
        clock=lambda: NOW,
        **kwargs,
    )
    return orchestrator, deps


async def _generate_and_run(orchestrator, deps, request=None):
    preview_id = await orchestrator.generate(request or GenerateRequest(group_id="g1", date_range=RANGE))
    await deps["scheduler"].run_all()
    return await orchestrator.get_preview(preview_id)


# ─── Generate ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_generate_returns_processing_preview_without_computing():
    orchestrator, deps = _make()
    preview_id = await orchestrator.generate(GenerateRequest(group_id="g1", date_range=RANGE))

    preview = await orchestrator.get_preview(preview_id)
    assert preview.status == PreviewStatus.PROCESSING
    assert preview.method is None
    assert preview_id in deps["scheduler"].jobs
    assert deps["allocator"].calls == 0


@pytest.mark.asyncio
async def test_generate_sets_fixed_expiry():
    orchestrator, _ = _make(preview_ttl=timedelta(hours=24))
    preview_id = await orchestrator.generate(GenerateRequest(group_id="g1", date_range=RANGE))
    preview = await orchestrator.get_preview(preview_id)
    assert preview.created_at == NOW
    assert preview.expires_at == NOW + timedelta(hours=24)


@pytest.mark.asyncio
async def test_generate_unknown_group_raises_and_creates_nothing():
    orchestrator, deps = _make()
    with pytest.raises(GroupNotFoundError):
        await orchestrator.generate(GenerateRequest(group_id="missing", date_range=RANGE))
    assert deps["previews"].previews == {}
    assert deps["scheduler"].jobs == {}


# ─── Compute ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_generative_total_result_is_kept():
    orchestrator, deps = _make()
    preview = await _generate_and_run(orchestrator, deps)

    assert preview.status == PreviewStatus.COMPLETED
    assert preview.method == DistributionMethod.GENERATIVE
    assert len(preview.assignments) == 12
    assert all(a.confidence == 0.9 for a in preview.assignments)
    assert preview.error is None


@pytest.mark.asyncio
async def test_scenario_generative_failure_falls_back_to_rule_based():
    """5 members, 12 tasks, generative call throws → RuleBased, 12 assignments."""
    orchestrator, deps = _make(allocator=FakeAllocator(error=AllocationError("boom")))
    preview = await _generate_and_run(orchestrator, deps)

    assert preview.status == PreviewStatus.COMPLETED
    assert preview.method == DistributionMethod.RULE_BASED
    assert len(preview.assignments) == 12
    assert sum(preview.stats.tasks_per_user.values()) == 12
    assert set(preview.stats.tasks_per_user) == {"u1", "u2", "u3", "u4", "u5"}
    assert preview.stats.total_users == 5


@pytest.mark.asyncio
async def test_unexpected_allocator_exception_also_falls_back():
    orchestrator, deps = _make(allocator=FakeAllocator(error=RuntimeError("socket closed")))
    preview = await _generate_and_run(orchestrator, deps)
    assert preview.status == PreviewStatus.COMPLETED
    assert preview.method == DistributionMethod.RULE_BASED


@pytest.mark.asyncio
async def test_allocation_timeout_falls_back():
    orchestrator, deps = _make(allocator=FakeAllocator(delay=1.0), allocation_timeout=0.01)
    preview = await _generate_and_run(orchestrator, deps)
    assert preview.method == DistributionMethod.RULE_BASED
    assert len(preview.assignments) == 12


@pytest.mark.asyncio
async def test_partial_generative_result_reruns_rule_based_over_all_tasks():
    tasks = _tasks(4)
    partial = AllocationResult(
        assignments=[
            AssignmentRecord(task_id="t01", task_name="Task 1",
                             assigned_user_id="u1", assigned_user_name="User1 Test"),
        ],
        dropped_count=3,
    )
    orchestrator, deps = _make(tasks=tasks, allocator=FakeAllocator(result=partial))
    preview = await _generate_and_run(orchestrator, deps)

    assert preview.method == DistributionMethod.RULE_BASED
    assert sorted(a.task_id for a in preview.assignments) == ["t01", "t02", "t03", "t04"]
    assert all(a.confidence == 0.5 for a in preview.assignments)


@pytest.mark.asyncio
async def test_scenario_no_tasks_completes_with_note():
    orchestrator, deps = _make(tasks=[])
    preview = await _generate_and_run(orchestrator, deps)

    assert preview.status == PreviewStatus.COMPLETED
    assert preview.assignments == []
    assert preview.error == NO_TASKS_NOTE
    assert deps["allocator"].calls == 0


@pytest.mark.asyncio
async def test_tasks_outside_range_are_ignored():
    late = TaskItem(id="late", group_id="g1", name="Late", difficulty=3,
                    due_at=NOW + timedelta(days=30))
    orchestrator, deps = _make(tasks=[late])
    preview = await _generate_and_run(orchestrator, deps)
    assert preview.error == NO_TASKS_NOTE


@pytest.mark.asyncio
async def test_no_resolvable_users_fails_preview():
    orchestrator, deps = _make()
    request = GenerateRequest(group_id="g1", date_range=RANGE, user_ids=("ghost-1", "ghost-2"))
    preview = await _generate_and_run(orchestrator, deps, request)

    assert preview.status == PreviewStatus.FAILED
    assert preview.error == NO_USERS_ERROR
    assert preview.assignments == []


@pytest.mark.asyncio
async def test_empty_group_fails_preview():
    orchestrator, deps = _make(groups=[Group(id="g1", name="Empty", members=[])])
    preview = await _generate_and_run(orchestrator, deps)
    assert preview.status == PreviewStatus.FAILED


@pytest.mark.asyncio
async def test_explicit_user_list_limits_candidates():
    orchestrator, deps = _make(allocator=FakeAllocator(error=AllocationError("down")))
    request = GenerateRequest(group_id="g1", date_range=RANGE, user_ids=("u2", "u4"))
    preview = await _generate_and_run(orchestrator, deps, request)

    assert set(preview.stats.tasks_per_user) == {"u2", "u4"}
    assert {a.assigned_user_id for a in preview.assignments} == {"u2", "u4"}


@pytest.mark.asyncio
async def test_batch_size_caps_tasks_by_due_date():
    orchestrator, deps = _make(batch_size=5)
    preview = await _generate_and_run(orchestrator, deps)
    assert sorted(a.task_id for a in preview.assignments) == ["t01", "t02", "t03", "t04", "t05"]


@pytest.mark.asyncio
async def test_current_workloads_passed_to_allocator():
    busy = TaskItem(id="busy", group_id="g1", name="Old", difficulty=2,
                    due_at=NOW - timedelta(days=3), status=TaskStatus.IN_PROGRESS,
                    assigned_user_id="u3")
    allocator = FakeAllocator()
    orchestrator, deps = _make(tasks=_tasks(3) + [busy], allocator=allocator)
    await _generate_and_run(orchestrator, deps)
    assert allocator.last_workloads == {"u1": 0, "u2": 0, "u3": 1, "u4": 0, "u5": 0}


@pytest.mark.asyncio
async def test_compute_is_noop_on_terminal_preview():
    orchestrator, deps = _make()
    preview = await _generate_and_run(orchestrator, deps)
    calls = deps["allocator"].calls

    await orchestrator.compute(preview.id, GenerateRequest(group_id="g1", date_range=RANGE))
    assert deps["allocator"].calls == calls


@pytest.mark.asyncio
async def test_compute_on_vanished_preview_does_nothing():
    orchestrator, deps = _make()
    await orchestrator.compute("swept", GenerateRequest(group_id="g1", date_range=RANGE))
    assert deps["previews"].previews == {}


@pytest.mark.asyncio
async def test_repository_error_during_compute_fails_preview():
    orchestrator, deps = _make()

    async def broken(*args, **kwargs):
        raise RuntimeError("db down")

    deps["tasks"].find_unassigned = broken
    preview = await _generate_and_run(orchestrator, deps)
    assert preview.status == PreviewStatus.FAILED
    assert preview.error == "db down"


class SharedTransaction:
    """Mimics one database session: after a failed statement every command
    is refused until the transaction is rolled back."""

    def __init__(self):
        self.aborted = False
        self.rollbacks = 0

    def check(self):
        if self.aborted:
            raise RuntimeError("current transaction is aborted")

    def abort(self, message):
        self.aborted = True
        raise RuntimeError(message)


class TransactionalPreviewRepo(FakePreviewRepo):
    def __init__(self, tx: SharedTransaction, fail_finalize: bool = False):
        super().__init__()
        self._tx = tx
        self._fail_finalize = fail_finalize

    async def get_by_id(self, preview_id):
        self._tx.check()
        return await super().get_by_id(preview_id)

    async def finalize(self, preview):
        self._tx.check()
        if self._fail_finalize:
            self._fail_finalize = False
            self._tx.abort("value too long for type character varying(20)")
        return await super().finalize(preview)

    async def rollback(self):
        self._tx.aborted = False
        self._tx.rollbacks += 1


class TransactionalTaskRepo(FakeTaskRepo):
    def __init__(self, tasks, tx: SharedTransaction):
        super().__init__(tasks)
        self._tx = tx

    async def count_open_by_user(self, group_id, user_ids):
        self._tx.abort("deadlock detected")


@pytest.mark.asyncio
async def test_aborted_transaction_during_workload_count_fails_preview():
    tx = SharedTransaction()
    orchestrator, deps = _make(
        task_repo=TransactionalTaskRepo(_tasks(3), tx),
        preview_repo=TransactionalPreviewRepo(tx),
    )

    preview = await _generate_and_run(orchestrator, deps)

    assert preview.status == PreviewStatus.FAILED
    assert preview.error == "deadlock detected"
    assert tx.rollbacks == 1


@pytest.mark.asyncio
async def test_aborted_transaction_during_finalize_fails_preview():
    tx = SharedTransaction()
    orchestrator, deps = _make(preview_repo=TransactionalPreviewRepo(tx, fail_finalize=True))

    preview = await _generate_and_run(orchestrator, deps)

    assert preview.status == PreviewStatus.FAILED
    assert "value too long" in preview.error
    assert preview.assignments == []


@pytest.mark.asyncio
async def test_completion_not_logged_when_result_discarded(caplog):
    class SweptPreviewRepo(FakePreviewRepo):
        async def finalize(self, preview):
            return False

    orchestrator, deps = _make(preview_repo=SweptPreviewRepo())

    with caplog.at_level("INFO"):
        await _generate_and_run(orchestrator, deps)

    assert "result discarded" in caplog.text
    assert "completed using" not in caplog.text


@pytest.mark.asyncio
async def test_get_preview_unknown_raises():
    orchestrator, _ = _make()
    with pytest.raises(PreviewNotFoundError):
        await orchestrator.get_preview("nope")


# ─── Apply ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_apply_writes_every_assignment():
    orchestrator, deps = _make()
    preview = await _generate_and_run(orchestrator, deps)

    result = await orchestrator.apply(preview.id)

    assert result.assigned_count == 12
    assert result.modified_count == 0
    for a in preview.assignments:
        task = deps["tasks"].tasks[a.task_id]
        assert task.assigned_user_id == a.assigned_user_id
        assert task.status == TaskStatus.IN_PROGRESS
    assert sum(result.final_stats.tasks_per_user.values()) == 12


@pytest.mark.asyncio
async def test_scenario_apply_on_failed_preview_rejected_without_writes():
    orchestrator, deps = _make()
    request = GenerateRequest(group_id="g1", date_range=RANGE, user_ids=("ghost",))
    preview = await _generate_and_run(orchestrator, deps, request)
    assert preview.status == PreviewStatus.FAILED

    with pytest.raises(ApplyStateError):
        await orchestrator.apply(preview.id)
    assert deps["tasks"].updates == []


@pytest.mark.asyncio
async def test_apply_on_processing_preview_rejected():
    orchestrator, deps = _make()
    preview_id = await orchestrator.generate(GenerateRequest(group_id="g1", date_range=RANGE))
    with pytest.raises(ApplyStateError, match="Processing"):
        await orchestrator.apply(preview_id)
    assert deps["tasks"].updates == []


@pytest.mark.asyncio
async def test_apply_unknown_preview_raises_not_found():
    orchestrator, _ = _make()
    with pytest.raises(PreviewNotFoundError):
        await orchestrator.apply("nope")


@pytest.mark.asyncio
async def test_scenario_apply_modification_overrides_assignee():
    outsider = User(id="u9", first_name="Outside", last_name="Helper")
    orchestrator, deps = _make(extra_users=[outsider])
    preview = await _generate_and_run(orchestrator, deps)
    target = preview.assignments[0]

    result = await orchestrator.apply(
        preview.id, [AssignmentModification(task_id=target.task_id, new_assigned_user_id="u9")]
    )

    assert result.modified_count == 1
    assert result.final_stats.tasks_per_user["u9"] == 1
    assert deps["tasks"].tasks[target.task_id].assigned_user_id == "u9"
    original = sum(1 for a in preview.assignments if a.assigned_user_id == target.assigned_user_id)
    assert result.final_stats.tasks_per_user.get(target.assigned_user_id, 0) == original - 1


@pytest.mark.asyncio
async def test_apply_does_not_rewrite_stored_assignments():
    orchestrator, deps = _make()
    preview = await _generate_and_run(orchestrator, deps)
    target = preview.assignments[0]

    await orchestrator.apply(
        preview.id, [AssignmentModification(task_id=target.task_id, new_assigned_user_id="u5")]
    )
    stored = await orchestrator.get_preview(preview.id)
    assert stored.assignments[0].assigned_user_id == target.assigned_user_id
    assert stored.applied_at == NOW


@pytest.mark.asyncio
async def test_apply_ignores_unknown_modification_targets():
    orchestrator, deps = _make()
    preview = await _generate_and_run(orchestrator, deps)

    result = await orchestrator.apply(preview.id, [
        AssignmentModification(task_id="not-in-preview", new_assigned_user_id="u1"),
        AssignmentModification(task_id=preview.assignments[0].task_id, new_assigned_user_id="ghost"),
    ])
    assert result.modified_count == 0
    assert result.assigned_count == 12


@pytest.mark.asyncio
async def test_apply_skips_deleted_tasks():
    orchestrator, deps = _make()
    preview = await _generate_and_run(orchestrator, deps)
    del deps["tasks"].tasks[preview.assignments[0].task_id]

    result = await orchestrator.apply(preview.id)
    assert result.assigned_count == 11
    assert len(deps["tasks"].updates) == 11


@pytest.mark.asyncio
async def test_second_apply_is_rejected():
    orchestrator, deps = _make()
    preview = await _generate_and_run(orchestrator, deps)
    await orchestrator.apply(preview.id)
    writes = len(deps["tasks"].updates)

    with pytest.raises(ApplyStateError, match="already been applied"):
        await orchestrator.apply(preview.id)
    assert len(deps["tasks"].updates) == writes


@pytest.mark.asyncio
async def test_final_stats_restricted_to_referenced_users():
    orchestrator, deps = _make(tasks=_tasks(2))
    preview = await _generate_and_run(orchestrator, deps)
    assert set(preview.stats.tasks_per_user) == {"u1", "u2", "u3", "u4", "u5"}

    result = await orchestrator.apply(preview.id)
    assert set(result.final_stats.tasks_per_user) == {a.assigned_user_id for a in preview.assignments}
    assert result.final_stats.workload_variance_percent == 0.0
