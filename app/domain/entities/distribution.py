"""Distribution entities — preview record, proposed assignments and stats."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from app.domain.value_objects.date_range import DateRange
from app.domain.value_objects.enums import DistributionMethod, PreviewStatus


@dataclass
class AssignmentRecord:
    task_id: str
    task_name: str
    assigned_user_id: str
    assigned_user_name: str
    confidence: float = 0.5
    rationale: str | None = None


@dataclass
class DistributionStats:
    total_tasks: int = 0
    total_users: int = 0
    workload_variance_percent: float = 0.0
    tasks_per_user: dict[str, int] = field(default_factory=dict)


@dataclass
class DistributionPreview:
    id: str
    group_id: str
    created_at: datetime
    expires_at: datetime
    status: PreviewStatus = PreviewStatus.PROCESSING
    method: DistributionMethod | None = None
    assignments: list[AssignmentRecord] = field(default_factory=list)
    stats: DistributionStats = field(default_factory=DistributionStats)
    error: str | None = None
    applied_at: datetime | None = None

    @classmethod
    def start(
        cls, preview_id: str, group_id: str, now: datetime, ttl: timedelta
    ) -> "DistributionPreview":
        """New Processing preview; expires_at is fixed here and never extended."""
        return cls(
            id=preview_id,
            group_id=group_id,
            created_at=now,
            expires_at=now + ttl,
        )

    def is_terminal(self) -> bool:
        return self.status != PreviewStatus.PROCESSING

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def complete(
        self,
        method: DistributionMethod | None,
        assignments: list[AssignmentRecord],
        stats: DistributionStats,
        note: str | None = None,
    ) -> None:
        self._ensure_processing()
        self.status = PreviewStatus.COMPLETED
        self.method = method
        self.assignments = assignments
        self.stats = stats
        self.error = note

    def fail(self, error: str) -> None:
        self._ensure_processing()
        self.status = PreviewStatus.FAILED
        self.error = error

    def _ensure_processing(self) -> None:
        if self.is_terminal():
            raise ValueError(f"Preview {self.id} is already {self.status.value}")


@dataclass
class AllocationResult:
    """Output of an allocation strategy.

    ``dropped_count`` is the number of proposed entries the strategy discarded
    (unknown task/user ids, duplicates, malformed rows).
    """

    assignments: list[AssignmentRecord]
    dropped_count: int = 0

    def covers(self, task_ids: list[str]) -> bool:
        """True if every task id appears exactly once and nothing else does."""
        assigned = [a.task_id for a in self.assignments]
        return len(assigned) == len(set(assigned)) and set(assigned) == set(task_ids)


@dataclass(frozen=True)
class GenerateRequest:
    group_id: str
    date_range: DateRange
    user_ids: tuple[str, ...] | None = None


@dataclass(frozen=True)
class AssignmentModification:
    task_id: str
    new_assigned_user_id: str


@dataclass
class ApplyResult:
    assigned_count: int
    modified_count: int
    final_stats: DistributionStats
