"""Branch name, commit message and merge message generation.

Branch names have the form ``{prefix}/{title-slug}-{task_id}-{epoch_ms}``.
Every component is sanitized to lowercase ``[a-z0-9-]`` so the result is
always a valid git ref and always matches :data:`BRANCH_NAME_PATTERN`.
Uniqueness relies on the millisecond timestamp and is probabilistic only.
"""

import re
import time
from collections.abc import Callable
from datetime import UTC, datetime

from branchpilot.engine.strategy import BranchStrategy
from branchpilot.models.domain import Task

BRANCH_NAME_PATTERN = re.compile(r"^[a-z0-9-]+/[a-z0-9-]+-[^/]+-[0-9]+$")

MAX_TITLE_LENGTH = 30
TITLE_PLACEHOLDER = "task"
PREFIX_PLACEHOLDER = "task"
TASK_ID_PLACEHOLDER = "unknown"

_DISALLOWED = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")


def sanitize(value: str, max_length: int | None = None, placeholder: str = TITLE_PLACEHOLDER) -> str:
    """Reduce ``value`` to a lowercase hyphenated slug.

    Args:
        value: Arbitrary text
        max_length: Truncate the slug to this many characters
        placeholder: Returned when nothing survives sanitization

    Returns:
        A non-empty string of ``[a-z0-9-]`` without leading, trailing or
        repeated hyphens
    """
    slug = _DISALLOWED.sub("", str(value).lower())
    slug = _WHITESPACE.sub("-", slug.strip())
    slug = _HYPHENS.sub("-", slug).strip("-")
    if max_length is not None:
        slug = slug[:max_length].strip("-")
    return slug or placeholder


def _epoch_millis() -> int:
    return time.time_ns() // 1_000_000


class BranchNameGenerator:
    """Generate task branch names.

    Args:
        clock: Callable returning epoch milliseconds; injectable for tests.
    """

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self.clock = clock or _epoch_millis

    def generate(self, task: Task, strategy: BranchStrategy) -> str:
        prefix = sanitize(strategy.branch_prefix, placeholder=PREFIX_PLACEHOLDER)
        title = sanitize(task.title or "", max_length=MAX_TITLE_LENGTH)
        task_id = sanitize(str(task.id), placeholder=TASK_ID_PLACEHOLDER)
        timestamp = max(int(self.clock()), 0)
        return f"{prefix}/{title}-{task_id}-{timestamp}"


def generate_commit_message(task: Task, timestamp: datetime | None = None) -> str:
    """Commit message recorded for a completed task branch."""
    stamp = (timestamp or datetime.now(UTC)).isoformat()
    return (
        f"{task.type_value}: {task.title}\n"
        f"\n"
        f"- Task ID: {task.id}\n"
        f"- Workflow Type: {task.type_value}\n"
        f"- Automated workflow execution\n"
        f"- Timestamp: {stamp}"
    )


def generate_merge_message(task: Task, target_branch: str) -> str:
    """Merge commit message used when a task branch is merged into ``target_branch``."""
    return (
        f"Merge task {task.id} ({task.type_value}) into {target_branch}\n"
        f"\n"
        f"Task: {task.title}\n"
        f"Type: {task.type_value}\n"
        f"ID: {task.id}"
    )
