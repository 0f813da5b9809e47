"""Read interfaces to the systems this engine does not own.

The quiz flow owns attempts and uploaded artifacts, and the task scheduler
owns task metadata. The engine only reads from them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


@dataclass
class Submission:
    """Latest quiz attempt plus the uploaded artifact for a user and task."""

    attempt_id: str
    artifact_ref: str
    questions: list[str] = field(default_factory=list)
    status: str = "submitted"
    artifact_name: str = ""
    task_id: str = ""
    submitted_at: datetime | None = None

    @property
    def is_submitted(self) -> bool:
        return self.status == "submitted" and bool(self.artifact_ref)


@dataclass
class TaskInfo:
    """Task metadata needed for settlement."""

    task_id: str
    title: str
    topic: str
    course_id: str
    token_stake: int
    reward: int
    course_name: str = ""

    def context(self) -> dict[str, str]:
        """Prompt context shared by both oracles."""
        return {
            "task_title": self.title,
            "task_topic": self.topic,
            "course_name": self.course_name or self.course_id,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "title": self.title,
            "topic": self.topic,
            "course_id": self.course_id,
            "course_name": self.course_name,
            "token_stake": self.token_stake,
            "reward": self.reward,
        }


class SubmissionLookup(Protocol):
    async def get_latest_submitted_attempt(self, user_id: str, task_id: str) -> Submission | None:
        """Latest attempt for the user and task, or None if nothing was submitted."""
        ...

    async def list_submitted_attempts(self, user_id: str, limit: int) -> list[Submission]:
        """The user's submitted attempts across tasks, newest first, with ``task_id`` set."""
        ...


class TaskCatalog(Protocol):
    async def get_task(self, task_id: str) -> TaskInfo | None:
        """Task metadata, or None if the task does not exist."""
        ...


class InMemorySubmissionLookup:
    """Dict-backed submissions for tests and local runs."""

    def __init__(self) -> None:
        self._submissions: dict[tuple[str, str], Submission] = {}

    def add(self, user_id: str, task_id: str, submission: Submission) -> None:
        submission.task_id = task_id
        self._submissions[(user_id, task_id)] = submission

    async def get_latest_submitted_attempt(self, user_id: str, task_id: str) -> Submission | None:
        submission = self._submissions.get((user_id, task_id))
        if submission is None or not submission.is_submitted:
            return None
        return submission

    async def list_submitted_attempts(self, user_id: str, limit: int) -> list[Submission]:
        found = [s for (uid, _), s in self._submissions.items() if uid == user_id and s.is_submitted]
        # Undated attempts sort as oldest; ties keep insertion order reversed.
        found.reverse()
        found.sort(key=lambda s: s.submitted_at.timestamp() if s.submitted_at else 0.0, reverse=True)
        return found[:limit]


class InMemoryTaskCatalog:
    """Dict-backed task metadata for tests and local runs."""

    def __init__(self) -> None:
        self._tasks: dict[str, TaskInfo] = {}

    def add(self, task: TaskInfo) -> None:
        self._tasks[task.task_id] = task

    async def get_task(self, task_id: str) -> TaskInfo | None:
        return self._tasks.get(task_id)
