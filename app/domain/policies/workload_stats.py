"""Workload statistics over a finalized assignment set."""

from __future__ import annotations

from collections.abc import Iterable

from app.domain.entities.distribution import AssignmentRecord, DistributionStats


def workload_variance(counts: Iterable[int]) -> float:
    """Normalized spread of per-user counts: (max - min) / avg * 100.

    Returns 0 for an empty collection or when nobody has any work.
    """
    values = list(counts)
    if not values:
        return 0.0
    avg = sum(values) / len(values)
    if avg <= 0:
        return 0.0
    return round((max(values) - min(values)) / avg * 100, 2)


def calculate_stats(
    assignments: list[AssignmentRecord], user_ids: Iterable[str]
) -> DistributionStats:
    """Per-user counts, zero-filled for every candidate, plus the variance metric."""
    candidates = list(dict.fromkeys(user_ids))
    tasks_per_user: dict[str, int] = {uid: 0 for uid in candidates}
    for a in assignments:
        tasks_per_user[a.assigned_user_id] = tasks_per_user.get(a.assigned_user_id, 0) + 1

    return DistributionStats(
        total_tasks=len(assignments),
        total_users=len(candidates),
        workload_variance_percent=workload_variance(tasks_per_user.values()),
        tasks_per_user=tasks_per_user,
    )
