"""
Domain models for the workflow engine.

This module contains the data classes passed between the orchestration
components: the read-only task snapshot, validation results, execution step
records, retry attempts, merge results and the result objects returned by
the orchestrator and the sequential pipeline executor.

Example:
    Creating a task from stored task data::

        task = Task(
            id="42",
            type=TaskType.REFACTOR,
            title="Split the payment service",
            metadata={"projectPath": "/work/shop", "filePath": "src/payments.py"},
        )
        task.project_path  # "/work/shop"
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from branchpilot.enums import StepStatus, TaskType


@dataclass
class Task:
    """A unit of work consumed read-only by the engine.

    The metadata bag follows the task store's camelCase keys; snake_case
    aliases are accepted so tasks built in Python read naturally.
    """

    id: str
    type: TaskType | str
    title: str
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def task_type(self) -> TaskType | None:
        """Normalized task type, or None for unknown types."""
        return TaskType.from_value(self.type)

    @property
    def type_value(self) -> str:
        """Raw task type string, used in messages and events."""
        return self.type.value if isinstance(self.type, TaskType) else str(self.type)

    @property
    def project_path(self) -> str | None:
        """Project path from metadata (``projectPath`` or ``project_path``)."""
        return self.metadata.get("projectPath") or self.metadata.get("project_path")

    @property
    def file_path(self) -> str | None:
        """Optional file path the task focuses on."""
        return self.metadata.get("filePath") or self.metadata.get("file_path")

    def snapshot(self) -> dict[str, Any]:
        """Plain-dict copy of the task for context summaries."""
        return {
            "id": self.id,
            "type": self.type_value,
            "title": self.title,
            "description": self.description,
            "metadata": dict(self.metadata),
        }


@dataclass
class BuildResult:
    """Outcome of one validation run (build, test or lint).

    Attributes:
        success: True when a validation command passed.
        command: Command that produced this result (the passing one, or the
            last one attempted).
        output: Captured stdout of that command.
        error: Error text of the last failing command.
        failures: Failing test identifiers extracted from test output.
        duration: Wall-clock seconds spent validating.
    """

    success: bool
    command: str | None = None
    output: str = ""
    error: str | None = None
    failures: list[str] = field(default_factory=list)
    duration: float = 0.0


@dataclass
class RetryAttempt:
    """Record of one apply-then-validate iteration of the retry loop."""

    attempt_number: int
    build_result: BuildResult
    ai_response: str | None = None
    feedback_prompt: str | None = None


@dataclass
class ExecutionStep:
    """Audit record of one pipeline step.

    Appended to the owning context in run order and never reordered.
    """

    name: str
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    data: Any = None
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class MergeResult:
    """Outcome of merging a task branch into a target branch."""

    success: bool
    source_branch: str
    target_branch: str
    strategy: str
    commit_sha: str | None = None
    branch_deleted: bool = False
    error: str | None = None


@dataclass
class WorkflowResult:
    """Structured result of :meth:`WorkflowOrchestrator.execute_workflow`.

    Attributes:
        success: True only when the pipeline succeeded and completion
            (commit, push and any auto-merge) succeeded.
        task_id: Identifier of the executed task.
        branch_name: Task branch, when it was created.
        strategy: Resolved branch strategy as a plain dict.
        steps: Step audit trail.
        attempts: Retry attempts recorded by validating steps.
        error: First fatal error, if any.
        rolled_back: True when the rollback path ran.
        merge: Merge result when an auto-merge was attempted.
        duration: Elapsed seconds.
        context: Full workflow context summary.
    """

    success: bool
    task_id: str
    branch_name: str | None = None
    strategy: dict[str, Any] | None = None
    steps: list[ExecutionStep] = field(default_factory=list)
    attempts: list[RetryAttempt] = field(default_factory=list)
    error: BaseException | None = None
    rolled_back: bool = False
    merge: MergeResult | None = None
    duration: float = 0.0
    context: dict[str, Any] = field(default_factory=dict)

    def raise_for_error(self) -> None:
        """Re-raise the first fatal error, if the workflow failed with one."""
        if self.error is not None:
            raise self.error


@dataclass
class PipelineTaskResult:
    """One entry of a sequential pipeline run."""

    task: Task
    index: int
    branch_name: str | None = None
    success: bool = False
    response: str | None = None
    merge_result: MergeResult | None = None
    next_branch: str | None = None
    duration: float = 0.0
    error: BaseException | None = None
    skipped: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass
class PipelineRun:
    """Ordered record of a sequential multi-task run."""

    entries: list[PipelineTaskResult] = field(default_factory=list)
    total_duration: float = 0.0

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def successful(self) -> int:
        return sum(1 for entry in self.entries if entry.success)

    @property
    def failed(self) -> int:
        return sum(1 for entry in self.entries if not entry.success and not entry.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for entry in self.entries if entry.skipped)

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.total if self.entries else 0.0

    def summary(self) -> dict[str, Any]:
        """Aggregate counts and per-task durations."""
        return {
            "success": self.success,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "total_duration": self.total_duration,
            "average_duration": self.average_duration,
            "durations": {entry.task.id: entry.duration for entry in self.entries},
        }
