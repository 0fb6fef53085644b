"""Enumerations for task types, protection levels and step states."""

from enum import Enum


class TaskType(str, Enum):
    """Closed set of workflow categories.

    The task type drives both branch strategy selection and pipeline
    selection. Raw strings coming from task storage are normalized with
    :meth:`from_value`, which also understands the legacy aliases used by
    older task records.
    """

    REFACTOR = "refactor"
    FEATURE = "feature"
    BUGFIX = "bugfix"
    HOTFIX = "hotfix"
    ANALYSIS = "analysis"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    DEBUG = "debug"
    OPTIMIZATION = "optimization"
    CODE_REVIEW = "code-review"
    GENERIC = "generic"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_value(cls, value: "TaskType | str | None") -> "TaskType | None":
        """Normalize a task type value.

        Args:
            value: A TaskType, a raw string (case-insensitive, underscores
                accepted), or None.

        Returns:
            The matching TaskType, or None when the value is unknown.
        """
        if value is None:
            return None
        if isinstance(value, TaskType):
            return value

        normalized = str(value).strip().lower().replace("_", "-")
        normalized = _TASK_TYPE_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return None


_TASK_TYPE_ALIASES = {
    "bug": "bugfix",
    "fix": "bugfix",
    "security": "hotfix",
    "review": "code-review",
    "codereview": "code-review",
    "test": "testing",
    "test-status": "debug",
    "docs": "documentation",
    "enhancement": "optimization",
    "task": "generic",
}


class ProtectionLevel(str, Enum):
    """Qualitative branch protection policy, ordered from weakest to strongest."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    def __str__(self) -> str:
        return self.value

    @property
    def rank(self) -> int:
        """Position in the ordering LOW < MEDIUM < HIGH < CRITICAL."""
        return _PROTECTION_ORDER.index(self)

    def stronger(self, other: "ProtectionLevel") -> "ProtectionLevel":
        """Return whichever of the two levels is stronger."""
        return self if self.rank >= other.rank else other


_PROTECTION_ORDER = [
    ProtectionLevel.LOW,
    ProtectionLevel.MEDIUM,
    ProtectionLevel.HIGH,
    ProtectionLevel.CRITICAL,
]


class StepStatus(str, Enum):
    """Execution status of a single pipeline step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class MergeStrategy(str, Enum):
    """Merge strategies understood by VCS providers."""

    SQUASH = "squash"
    MERGE = "merge"
    REBASE = "rebase"

    def __str__(self) -> str:
        return self.value
