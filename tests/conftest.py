"""Pytest configuration and shared fixtures."""

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from branchpilot.config.settings import BranchPilotSettings
from branchpilot.engine.naming import BranchNameGenerator
from branchpilot.enums import TaskType
from branchpilot.models.domain import BuildResult, Task
from branchpilot.providers.base import AutomationChannel, BuildValidator, VCSProvider

FIXED_EPOCH_MS = 1_700_000_000_000
PROJECT_PATH = "/work/shop"


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """Factory for tasks with a project path."""

    def _make(
        task_id: str = "42",
        task_type: TaskType | str = TaskType.REFACTOR,
        title: str = "Split the payment service",
        description: str = "",
        project_path: str | None = PROJECT_PATH,
        **metadata: Any,
    ) -> Task:
        if project_path is not None:
            metadata["projectPath"] = project_path
        return Task(id=task_id, type=task_type, title=title, description=description, metadata=metadata)

    return _make


@pytest.fixture
def sample_task(make_task: Callable[..., Task]) -> Task:
    """Refactor task for testing."""
    return make_task()


@pytest.fixture
def fast_settings() -> BranchPilotSettings:
    """Settings with no settle delay and short polling bounds."""
    return BranchPilotSettings(
        automation={
            "session_settle_delay": 0,
            "completion_timeout": 0.05,
            "poll_interval": 0.01,
            "response_timeout": 5,
        },
    )


@pytest.fixture
def fixed_naming() -> BranchNameGenerator:
    """Branch name generator with a frozen clock."""
    return BranchNameGenerator(clock=lambda: FIXED_EPOCH_MS)


@pytest.fixture
def mock_vcs() -> AsyncMock:
    """Create a mock VCSProvider where every operation succeeds."""
    vcs = AsyncMock(spec=VCSProvider)
    vcs.branch_exists.return_value = True
    vcs.get_current_branch.return_value = "main"
    vcs.get_commit_sha.return_value = "abc123"
    vcs.commit_changes.return_value = "def456"
    vcs.merge_branch.return_value = "fed789"
    return vcs


@pytest.fixture
def mock_channel() -> AsyncMock:
    """Create a mock AutomationChannel that always answers."""
    channel = AsyncMock(spec=AutomationChannel)
    channel.send_message.return_value = "Changes applied. done"
    channel.poll_response.return_value = "done"
    return channel


@pytest.fixture
def mock_validator() -> AsyncMock:
    """Create a mock BuildValidator whose build passes."""
    validator = AsyncMock(spec=BuildValidator)
    validator.validate.return_value = BuildResult(success=True, command="npm run build")
    validator.run_tests.return_value = BuildResult(success=True, command="npm test")
    return validator
