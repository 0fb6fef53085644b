"""Tests for branchpilot.engine.strategy."""

import pytest
from pydantic import ValidationError

from branchpilot.engine.strategy import (
    DEFAULT_STRATEGY,
    BranchStrategy,
    BranchStrategyResolver,
    StrategyOverrides,
    protection_policy,
)
from branchpilot.enums import ProtectionLevel, TaskType
from branchpilot.exceptions import PreconditionError


@pytest.fixture
def resolver() -> BranchStrategyResolver:
    return BranchStrategyResolver()


class TestStrategyTable:
    """Built-in strategy table."""

    @pytest.mark.parametrize(
        "task_type,prefix,start,protection,auto_merge,review,target",
        [
            ("refactor", "refactor", "main", "medium", False, True, "develop"),
            ("feature", "feature", "features", "medium", False, True, "features"),
            ("bugfix", "fix", "main", "high", False, True, "main"),
            ("hotfix", "hotfix", "main", "critical", False, True, "main"),
            ("analysis", "analyze", "main", "low", True, False, "main"),
            ("testing", "test", "agent", "low", True, False, "agent"),
            ("documentation", "docs", "main", "low", False, False, "main"),
            ("debug", "debug", "main", "low", False, False, "main"),
            ("optimization", "optimize", "develop", "medium", False, True, "develop"),
            ("code-review", "review", "main", "high", False, True, "main"),
            ("generic", "task", "main", "medium", False, True, "main"),
        ],
    )
    def test_table_entries(self, resolver, task_type, prefix, start, protection, auto_merge, review, target):
        strategy = resolver.resolve(task_type)

        assert strategy.branch_prefix == prefix
        assert strategy.start_point == start
        assert strategy.protection_level == ProtectionLevel(protection)
        assert strategy.auto_merge is auto_merge
        assert strategy.requires_review is review
        assert strategy.merge_target == target

    def test_every_task_type_has_a_strategy(self, resolver):
        for task_type in TaskType:
            assert resolver.resolve(task_type).type == task_type.value

    def test_resolution_is_deterministic(self, resolver):
        assert resolver.resolve("bugfix") == resolver.resolve("bugfix")
        assert resolver.resolve(TaskType.BUGFIX) == resolver.resolve("BUGFIX")


class TestUnknownTypes:
    """Unknown and aliased task types."""

    def test_unknown_type_uses_default(self, resolver):
        strategy = resolver.resolve("migration")

        assert strategy == DEFAULT_STRATEGY
        assert strategy.branch_prefix == "task"
        assert strategy.protection_level == ProtectionLevel.MEDIUM
        assert strategy.requires_review is True
        assert strategy.auto_merge is False

    def test_none_uses_default(self, resolver):
        assert resolver.resolve(None) == DEFAULT_STRATEGY

    @pytest.mark.parametrize(
        "alias,expected",
        [
            ("bug", "fix"),
            ("security", "hotfix"),
            ("review", "review"),
            ("test", "test"),
            ("test-status", "debug"),
            ("docs", "docs"),
            ("code_review", "review"),
        ],
    )
    def test_aliases(self, resolver, alias, expected):
        assert resolver.resolve(alias).branch_prefix == expected

    def test_resolver_without_default_raises(self):
        resolver = BranchStrategyResolver(default=None)

        with pytest.raises(PreconditionError):
            resolver.resolve("migration")

    def test_resolver_without_default_still_resolves_known_types(self):
        resolver = BranchStrategyResolver(default=None)

        assert resolver.resolve("hotfix").branch_prefix == "hotfix"


class TestOverrides:
    """Per-invocation overrides."""

    def test_start_point_and_target(self, resolver):
        strategy = resolver.resolve(
            "feature", StrategyOverrides(start_point="release", merge_target="release")
        )

        assert strategy.start_point == "release"
        assert strategy.merge_target == "release"
        assert strategy.branch_prefix == "feature"

    def test_disable_auto_merge(self, resolver):
        strategy = resolver.resolve("analysis", StrategyOverrides(disable_auto_merge=True))

        assert strategy.auto_merge is False

    def test_protection_can_be_raised(self, resolver):
        strategy = resolver.resolve("documentation", StrategyOverrides(protection_level=ProtectionLevel.HIGH))

        assert strategy.protection_level == ProtectionLevel.HIGH

    def test_protection_is_never_lowered(self, resolver):
        strategy = resolver.resolve("hotfix", StrategyOverrides(protection_level=ProtectionLevel.LOW))

        assert strategy.protection_level == ProtectionLevel.CRITICAL

    def test_raising_to_critical_forces_review(self, resolver):
        strategy = resolver.resolve("debug", StrategyOverrides(protection_level=ProtectionLevel.CRITICAL))

        assert strategy.protection_level == ProtectionLevel.CRITICAL
        assert strategy.requires_review is True

    def test_require_review(self, resolver):
        strategy = resolver.resolve("documentation", StrategyOverrides(require_review=True))

        assert strategy.requires_review is True

    def test_overrides_do_not_mutate_table(self, resolver):
        resolver.resolve("refactor", StrategyOverrides(merge_target="main"))

        assert resolver.resolve("refactor").merge_target == "develop"


class TestBranchStrategyModel:
    """BranchStrategy validation."""

    def test_frozen(self):
        with pytest.raises(ValidationError):
            DEFAULT_STRATEGY.branch_prefix = "other"

    def test_critical_requires_review(self):
        with pytest.raises(ValidationError):
            BranchStrategy(
                type="hotfix",
                branch_prefix="hotfix",
                start_point="main",
                protection_level=ProtectionLevel.CRITICAL,
                requires_review=False,
                merge_target="main",
            )


class TestProtectionPolicy:
    """Protection level to concrete rules."""

    def test_low_allows_force_push(self, resolver):
        policy = protection_policy(resolver.resolve("analysis"))

        assert policy["level"] == "low"
        assert policy["allow_force_push"] is True
        assert policy["required_approvals"] == 0

    def test_critical_requires_two_approvals(self, resolver):
        policy = protection_policy(resolver.resolve("hotfix"))

        assert policy["allow_deletion"] is False
        assert policy["required_approvals"] == 2
        assert policy["requires_review"] is True
