"""OpenAI allocator — implements AllocatorPort using the OpenAI chat API."""

from __future__ import annotations

import json
import logging
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from app.application.ports.allocator_port import AllocatorPort
from app.config import settings
from app.domain.entities.distribution import AllocationResult, AssignmentRecord
from app.domain.entities.task import TaskItem
from app.domain.entities.user import User
from app.domain.errors import AllocationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a task distribution assistant. Your goal is to assign tasks to users fairly and efficiently.

Consider these factors:
1. Balance workload across users (minimize variance)
2. Match tasks to user preferences when available
3. Respect user availability constraints
4. Consider historical performance for similar tasks
5. Aim for <15% workload variance

Every task must be assigned to exactly one of the listed users.
Use only the task and user ids given to you.

Respond with a JSON object containing an "assignments" array. Each assignment has:
- taskId: string (the task id)
- assignedUserId: string (the user id to assign to)
- confidence: number (0.0 to 1.0, how confident you are in this assignment)
- rationale: string (brief explanation of why this assignment makes sense)

Example:
{
  "assignments": [
    {
      "taskId": "task123",
      "assignedUserId": "user456",
      "confidence": 0.85,
      "rationale": "User has low workload and experience with similar tasks"
    }
  ]
}
"""

DEFAULT_CONFIDENCE = 0.5
DEFAULT_RATIONALE = "AI recommendation"


class OpenAIAllocator(AllocatorPort):
    """OpenAI implementation of AllocatorPort.

    No retries and no deadline of its own: the caller imposes the deadline
    and treats any failure as a signal to use the rule-based fallback.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        client: Any | None = None,
    ):
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._model = model or settings.openai_model
        self._temperature = settings.openai_temperature if temperature is None else temperature
        self._max_tokens = max_tokens or settings.openai_max_tokens
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not (self._api_key or "").strip():
                raise AllocationError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=self._api_key, max_retries=0)
        return self._client

    async def allocate(
        self,
        tasks: list[TaskItem],
        users: list[User],
        workloads: dict[str, int],
    ) -> AllocationResult:
        """Ask the model for a distribution and parse it defensively."""
        logger.info(
            "Generating AI distribution for %d tasks and %d users", len(tasks), len(users)
        )
        client = self._get_client()

        try:
            response = await client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": self._build_user_prompt(tasks, users, workloads)},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            raise AllocationError(f"OpenAI request failed: {e}") from e

        try:
            raw_text = response.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            raise AllocationError("Malformed completion response") from e

        result = self._parse_response(raw_text, tasks, users)
        logger.info(
            "AI proposed %d assignments (%d dropped)",
            len(result.assignments), result.dropped_count,
        )
        return result

    @staticmethod
    def _build_user_prompt(
        tasks: list[TaskItem], users: list[User], workloads: dict[str, int]
    ) -> str:
        task_list = [
            {
                "id": t.id,
                "name": t.name,
                "difficulty": t.difficulty,
                "dueAt": t.due_at.isoformat(),
            }
            for t in tasks
        ]
        user_list = [
            {
                "id": u.id,
                "name": u.display_name,
                "currentWorkload": workloads.get(u.id, 0),
            }
            for u in users
        ]
        return (
            "Please distribute these tasks among the users:\n\n"
            f"Tasks:\n{json.dumps(task_list, indent=2, ensure_ascii=False)}\n\n"
            f"Users:\n{json.dumps(user_list, indent=2, ensure_ascii=False)}\n\n"
            "Create a fair distribution that balances workload and considers task "
            "difficulty. Provide confidence scores and rationale for each assignment."
        )

    @staticmethod
    def _parse_response(
        raw_text: str, tasks: list[TaskItem], users: list[User]
    ) -> AllocationResult:
        """Map raw model JSON to assignment records.

        Shape errors raise AllocationError; individual bad entries are dropped.
        """
        if not raw_text.strip():
            raise AllocationError("Empty response from OpenAI")

        try:
            parsed = json.loads(raw_text)
        except json.JSONDecodeError as e:
            raise AllocationError("Invalid JSON response from OpenAI") from e

        if not isinstance(parsed, dict) or "assignments" not in parsed:
            raise AllocationError("Response does not contain 'assignments' property")
        entries = parsed["assignments"]
        if not isinstance(entries, list):
            raise AllocationError("'assignments' is not a list")

        tasks_by_id = {t.id: t for t in tasks}
        users_by_id = {u.id: u for u in users}
        seen: set[str] = set()
        assignments: list[AssignmentRecord] = []
        dropped = 0

        for entry in entries:
            if not isinstance(entry, dict):
                logger.warning("Skipping malformed assignment entry: %r", entry)
                dropped += 1
                continue

            task_id = str(entry.get("taskId", ""))
            user_id = str(entry.get("assignedUserId", ""))
            task = tasks_by_id.get(task_id)
            user = users_by_id.get(user_id)

            if task is None or user is None:
                logger.warning("Skipping invalid assignment: task=%s, user=%s", task_id, user_id)
                dropped += 1
                continue
            if task_id in seen:
                logger.warning("Skipping duplicate assignment for task %s", task_id)
                dropped += 1
                continue
            seen.add(task_id)

            assignments.append(
                AssignmentRecord(
                    task_id=task.id,
                    task_name=task.name,
                    assigned_user_id=user.id,
                    assigned_user_name=user.display_name,
                    confidence=_clamp_confidence(entry.get("confidence")),
                    rationale=str(entry.get("rationale") or DEFAULT_RATIONALE),
                )
            )

        return AllocationResult(assignments=assignments, dropped_count=dropped)


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, confidence))
