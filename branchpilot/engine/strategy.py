"""Branch strategy resolution.

Each task type maps to a :class:`BranchStrategy` describing where its branch
starts, how it is named, how strongly it is protected and where it merges.
Resolution is a pure table lookup with optional per-invocation overrides and
performs no I/O.

Example:
    >>> resolver = BranchStrategyResolver()
    >>> strategy = resolver.resolve("bugfix")
    >>> strategy.branch_prefix, strategy.protection_level
    ('fix', <ProtectionLevel.HIGH: 'high'>)
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from branchpilot.enums import ProtectionLevel, TaskType
from branchpilot.exceptions import PreconditionError


class BranchStrategy(BaseModel):
    """Immutable branching policy for one task type."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Task type this strategy belongs to")
    branch_prefix: str = Field(..., min_length=1)
    start_point: str = Field(..., min_length=1, description="Branch the task branch is cut from")
    protection_level: ProtectionLevel = ProtectionLevel.MEDIUM
    auto_merge: bool = False
    requires_review: bool = True
    merge_target: str = Field(..., min_length=1)
    description: str = ""

    @model_validator(mode="after")
    def _critical_requires_review(self) -> "BranchStrategy":
        if self.protection_level == ProtectionLevel.CRITICAL and not self.requires_review:
            raise ValueError("critical protection requires review")
        return self


class StrategyOverrides(BaseModel):
    """Per-invocation adjustments to a resolved strategy.

    Overrides can only tighten policy: protection may be raised but never
    lowered, auto-merge may be disabled but never enabled, and review may be
    required but never waived.
    """

    start_point: str | None = None
    merge_target: str | None = None
    disable_auto_merge: bool = False
    protection_level: ProtectionLevel | None = None
    require_review: bool = False


def _strategy(
    task_type: TaskType | str,
    prefix: str,
    start: str,
    protection: ProtectionLevel,
    auto_merge: bool,
    review: bool,
    target: str,
    description: str,
) -> BranchStrategy:
    return BranchStrategy(
        type=str(task_type),
        branch_prefix=prefix,
        start_point=start,
        protection_level=protection,
        auto_merge=auto_merge,
        requires_review=review,
        merge_target=target,
        description=description,
    )


DEFAULT_STRATEGY = _strategy(
    TaskType.GENERIC,
    "task",
    "main",
    ProtectionLevel.MEDIUM,
    False,
    True,
    "main",
    "General task branch",
)

# fmt: off
DEFAULT_STRATEGIES: dict[TaskType, BranchStrategy] = {
    TaskType.REFACTOR: _strategy(
        TaskType.REFACTOR, "refactor", "main", ProtectionLevel.MEDIUM, False, True, "develop",
        "Code refactoring branch",
    ),
    TaskType.FEATURE: _strategy(
        TaskType.FEATURE, "feature", "features", ProtectionLevel.MEDIUM, False, True, "features",
        "Feature development branch",
    ),
    TaskType.BUGFIX: _strategy(
        TaskType.BUGFIX, "fix", "main", ProtectionLevel.HIGH, False, True, "main",
        "Bug fix branch",
    ),
    TaskType.HOTFIX: _strategy(
        TaskType.HOTFIX, "hotfix", "main", ProtectionLevel.CRITICAL, False, True, "main",
        "Production hotfix branch",
    ),
    TaskType.ANALYSIS: _strategy(
        TaskType.ANALYSIS, "analyze", "main", ProtectionLevel.LOW, True, False, "main",
        "Code analysis branch",
    ),
    TaskType.TESTING: _strategy(
        TaskType.TESTING, "test", "agent", ProtectionLevel.LOW, True, False, "agent",
        "Test fixing branch",
    ),
    TaskType.DOCUMENTATION: _strategy(
        TaskType.DOCUMENTATION, "docs", "main", ProtectionLevel.LOW, False, False, "main",
        "Documentation branch",
    ),
    TaskType.DEBUG: _strategy(
        TaskType.DEBUG, "debug", "main", ProtectionLevel.LOW, False, False, "main",
        "Debugging branch",
    ),
    TaskType.OPTIMIZATION: _strategy(
        TaskType.OPTIMIZATION, "optimize", "develop", ProtectionLevel.MEDIUM, False, True, "develop",
        "Performance optimization branch",
    ),
    TaskType.CODE_REVIEW: _strategy(
        TaskType.CODE_REVIEW, "review", "main", ProtectionLevel.HIGH, False, True, "main",
        "Code review branch",
    ),
    TaskType.GENERIC: DEFAULT_STRATEGY,
}
# fmt: on


class BranchStrategyResolver:
    """Resolve task types to branch strategies.

    Args:
        strategies: Strategy table keyed by task type; the built-in table
            when None.
        default: Strategy for unknown types. With None, unknown types raise
            PreconditionError.
    """

    def __init__(
        self,
        strategies: dict[TaskType, BranchStrategy] | None = None,
        default: BranchStrategy | None = DEFAULT_STRATEGY,
    ) -> None:
        self.strategies = dict(DEFAULT_STRATEGIES if strategies is None else strategies)
        self.default = default

    def resolve(
        self,
        task_type: TaskType | str | None,
        overrides: StrategyOverrides | None = None,
    ) -> BranchStrategy:
        """Return the strategy for ``task_type`` with ``overrides`` applied.

        Raises:
            PreconditionError: The type is unknown and no default is configured
        """
        normalized = TaskType.from_value(task_type)
        strategy = self.strategies.get(normalized) if normalized is not None else None

        if strategy is None:
            if self.default is None:
                raise PreconditionError(f"No branch strategy for task type: {task_type!r}")
            strategy = self.default

        if overrides is None:
            return strategy
        return self._apply_overrides(strategy, overrides)

    @staticmethod
    def _apply_overrides(strategy: BranchStrategy, overrides: StrategyOverrides) -> BranchStrategy:
        updates: dict[str, Any] = {}
        if overrides.start_point:
            updates["start_point"] = overrides.start_point
        if overrides.merge_target:
            updates["merge_target"] = overrides.merge_target
        if overrides.disable_auto_merge:
            updates["auto_merge"] = False
        if overrides.protection_level is not None:
            updates["protection_level"] = strategy.protection_level.stronger(overrides.protection_level)
        if overrides.require_review:
            updates["requires_review"] = True

        if not updates:
            return strategy
        # model_copy skips validation; rebuild so the critical/review rule holds.
        data = strategy.model_dump()
        data.update(updates)
        if data["protection_level"] == ProtectionLevel.CRITICAL:
            data["requires_review"] = True
        return BranchStrategy(**data)


PROTECTION_POLICIES: dict[ProtectionLevel, dict[str, Any]] = {
    ProtectionLevel.LOW: {
        "allow_force_push": True,
        "allow_deletion": True,
        "required_approvals": 0,
    },
    ProtectionLevel.MEDIUM: {
        "allow_force_push": False,
        "allow_deletion": True,
        "required_approvals": 1,
    },
    ProtectionLevel.HIGH: {
        "allow_force_push": False,
        "allow_deletion": False,
        "required_approvals": 1,
    },
    ProtectionLevel.CRITICAL: {
        "allow_force_push": False,
        "allow_deletion": False,
        "required_approvals": 2,
    },
}


def protection_policy(strategy: BranchStrategy) -> dict[str, Any]:
    """Concrete protection rules for a strategy's protection level."""
    policy = dict(PROTECTION_POLICIES[strategy.protection_level])
    policy["level"] = strategy.protection_level.value
    policy["requires_review"] = strategy.requires_review
    return policy
