"""Execution context for a single workflow run.

A :class:`WorkflowContext` is created when a workflow starts, owned by that
workflow alone, mutated by its steps and completed exactly once. It stores
key/value data in three categories (``git_data``, ``metadata`` and
``timestamps``), accumulates errors and warnings without ever raising, and
keeps the step audit trail.

Timestamps handed out by a context never go backwards, even if the wall
clock does; durations are measured on the monotonic clock.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from branchpilot.enums import TaskType
from branchpilot.models.domain import ExecutionStep, Task

CATEGORIES = ("git_data", "metadata", "timestamps")
REQUIRED_FIELDS = ("task_id", "project_path")


@dataclass
class ContextEntry:
    """An error or warning recorded against a workflow."""

    message: str
    phase: str | None
    timestamp: datetime
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "phase": self.phase,
            "timestamp": self.timestamp.isoformat(),
            "error_type": type(self.error).__name__ if self.error else None,
        }


@dataclass
class ContextValidation:
    """Result of :meth:`WorkflowContext.validate`."""

    is_valid: bool
    missing_fields: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class WorkflowContext:
    """Mutable state record of one workflow execution.

    Attributes:
        task_id: Identifier of the task being executed
        task_type: Normalized task type, None for unknown types
        project_path: Repository the workflow operates on
        task: Read-only snapshot of the task
        git_data: Branch, merge, pull request and review details
        metadata: Free-form data recorded by steps
        timestamps: Lifecycle timestamps (created, branch_created, ...)
        errors: Ordered error entries
        warnings: Ordered warning entries
        steps: ExecutionStep audit trail in run order
    """

    def __init__(
        self,
        task: Task,
        project_path: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = clock or _utcnow
        self._last_timestamp: datetime | None = None
        self._started = time.monotonic()
        self._finished: float | None = None

        self.task_id = task.id
        self.task_type: TaskType | None = task.task_type
        self.project_path = project_path if project_path is not None else task.project_path
        self.task = task.snapshot()

        self.git_data: dict[str, Any] = {}
        self.metadata: dict[str, Any] = {}
        self.timestamps: dict[str, datetime] = {}
        self.errors: list[ContextEntry] = []
        self.warnings: list[ContextEntry] = []
        self.steps: list[ExecutionStep] = []

        self.timestamps["created"] = self.now()

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        """Current time, clamped so it never precedes an earlier result."""
        return self._clamp(self._clock())

    def _clamp(self, moment: datetime) -> datetime:
        if self._last_timestamp is not None and moment < self._last_timestamp:
            moment = self._last_timestamp
        self._last_timestamp = moment
        return moment

    # ------------------------------------------------------------------
    # Generic key/value access
    # ------------------------------------------------------------------

    def _category(self, category: str) -> dict[str, Any]:
        if category not in CATEGORIES:
            raise KeyError(f"Unknown context category: {category}")
        return getattr(self, category)

    def set(self, key: str, value: Any, category: str = "metadata") -> None:
        """Store ``value`` under ``key``.

        Values in the ``timestamps`` category must be datetimes, or None to
        stamp the current time; they are clamped so timestamps never go
        backwards.

        Raises:
            KeyError: If the category is unknown
            TypeError: If a timestamp value is not a datetime
        """
        values = self._category(category)
        if category == "timestamps":
            if value is None:
                value = self.now()
            elif isinstance(value, datetime):
                value = self._clamp(value)
            else:
                raise TypeError(f"Timestamp {key!r} must be a datetime, got {type(value).__name__}")
        values[key] = value

    def get(self, key: str, category: str = "metadata", default: Any = None) -> Any:
        return self._category(category).get(key, default)

    def has(self, key: str, category: str = "metadata") -> bool:
        return key in self._category(category)

    def delete(self, key: str, category: str = "metadata") -> bool:
        """Remove ``key``; returns False when it was not present."""
        values = self._category(category)
        if key not in values:
            return False
        del values[key]
        return True

    # ------------------------------------------------------------------
    # Git bookkeeping
    # ------------------------------------------------------------------

    @property
    def branch_name(self) -> str | None:
        return self.git_data.get("branch", {}).get("name")

    @property
    def base_branch(self) -> str | None:
        return self.git_data.get("branch", {}).get("base")

    def set_branch_info(self, name: str, base_branch: str, **extra: Any) -> None:
        self.git_data["branch"] = {"name": name, "base": base_branch, **extra}
        self.timestamps["branch_created"] = self.now()

    def set_merge_info(
        self,
        source: str,
        target: str,
        strategy: str,
        completed: bool = True,
        **extra: Any,
    ) -> None:
        """Record a merge. A merge that has not happened yet is stamped as pending."""
        self.git_data["merge"] = {
            "source": source,
            "target": target,
            "strategy": strategy,
            "completed": completed,
            **extra,
        }
        self.timestamps["merge_completed" if completed else "merge_pending"] = self.now()

    def set_pull_request_info(self, number: int | str | None, url: str | None = None, **extra: Any) -> None:
        self.git_data["pull_request"] = {"number": number, "url": url, **extra}
        self.timestamps["pull_request_created"] = self.now()

    def set_review_info(
        self,
        reviewers: list[str] | None = None,
        required: bool = True,
        **extra: Any,
    ) -> None:
        self.git_data["review"] = {"reviewers": list(reviewers or []), "required": required, **extra}
        self.timestamps["review_requested"] = self.now()

    # ------------------------------------------------------------------
    # Errors, warnings and steps
    # ------------------------------------------------------------------

    def add_error(self, message: str, phase: str | None = None, error: BaseException | None = None) -> None:
        self.errors.append(ContextEntry(message, phase, self.now(), error))

    def add_warning(self, message: str, phase: str | None = None, error: BaseException | None = None) -> None:
        self.warnings.append(ContextEntry(message, phase, self.now(), error))

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def add_step(self, step: ExecutionStep) -> None:
        self.steps.append(step)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_completed(self) -> bool:
        return "completed" in self.timestamps

    def mark_completed(self) -> bool:
        """Stamp completion. Only the first call has an effect.

        Returns:
            True if this call completed the context
        """
        if self.is_completed:
            return False
        self.timestamps["completed"] = self.now()
        self._finished = time.monotonic()
        return True

    def get_duration(self) -> float:
        """Seconds from creation to completion (or to now while running)."""
        end = self._finished if self._finished is not None else time.monotonic()
        return max(end - self._started, 0.0)

    def validate(self) -> ContextValidation:
        missing = [name for name in REQUIRED_FIELDS if not getattr(self, name)]
        return ContextValidation(is_valid=not missing, missing_fields=missing)

    def summary(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "task_type": self.task_type.value if self.task_type else self.task.get("type"),
            "project_path": self.project_path,
            "task": self.task,
            "branch_name": self.branch_name,
            "base_branch": self.base_branch,
            "git_data": dict(self.git_data),
            "metadata": dict(self.metadata),
            "timestamps": {key: value.isoformat() for key, value in self.timestamps.items()},
            "errors": [entry.to_dict() for entry in self.errors],
            "warnings": [entry.to_dict() for entry in self.warnings],
            "steps": [step.to_dict() for step in self.steps],
            "duration": self.get_duration(),
            "completed": self.is_completed,
        }
