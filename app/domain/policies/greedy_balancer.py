"""GreedyLoadBalancer — deterministic least-loaded task distribution."""

from __future__ import annotations

import logging

from app.domain.entities.distribution import AllocationResult, AssignmentRecord
from app.domain.entities.task import TaskItem
from app.domain.entities.user import User

logger = logging.getLogger(__name__)

RULE_BASED_CONFIDENCE = 0.5


def distribute(tasks: list[TaskItem], users: list[User]) -> AllocationResult:
    """Assign every task to the currently least-loaded user.

    1. Sort tasks by difficulty DESC (stable, so equal difficulties keep input order).
    2. For each task pick the user with the lowest running count, ties by id ASC.
    3. Increment that user's count.

    The result is total: each task appears exactly once, only candidate
    user ids are used, and identical input yields identical output.

    Raises:
        ValueError: if users list is empty.
    """
    if not users:
        raise ValueError("Cannot distribute tasks to an empty user list")

    counts: dict[str, int] = {u.id: 0 for u in users}
    by_id = {u.id: u for u in users}
    assignments: list[AssignmentRecord] = []

    for task in sorted(tasks, key=lambda t: t.difficulty, reverse=True):
        user_id = min(counts, key=lambda uid: (counts[uid], uid))
        user = by_id[user_id]
        assignments.append(
            AssignmentRecord(
                task_id=task.id,
                task_name=task.name,
                assigned_user_id=user.id,
                assigned_user_name=user.display_name,
                confidence=RULE_BASED_CONFIDENCE,
                rationale=f"Rule-based: Lowest workload ({counts[user_id]} tasks)",
            )
        )
        counts[user_id] += 1

    logger.info(
        "Rule-based distribution: %d tasks over %d users", len(assignments), len(users)
    )
    return AllocationResult(assignments=assignments)
