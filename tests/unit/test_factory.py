"""Tests for building the engine from settings."""

import json

import pytest
import structlog

from branchpilot.config.settings import BranchPilotSettings
from branchpilot.engine.orchestrator import WorkflowOrchestrator
from branchpilot.engine.sequential import SequentialPipelineExecutor
from branchpilot.engine.validation import CommandBuildValidator
from branchpilot.factory import create_orchestrator, create_sequential_executor, setup_logging
from branchpilot.providers.external_agent import ExternalAgentChannel
from branchpilot.providers.git_cli import GitCLIProvider
from branchpilot.utils.logging_config import get_logger


@pytest.fixture
def settings() -> BranchPilotSettings:
    return BranchPilotSettings(
        git={"remote": "upstream", "command_timeout": 15},
        validation={"commands": ["make check"], "test_command": "make test", "command_timeout": 90},
        automation={"agent_command": ["agent", "--print", "--model", "large"], "response_timeout": 45},
        logging={"level": "WARNING", "renderer": "json"},
    )


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


class TestAdaptersFromSettings:
    """Each adapter reads its own settings section."""

    def test_git_provider(self, settings):
        provider = GitCLIProvider.from_settings(settings)

        assert provider.remote == "upstream"
        assert provider.timeout == 15

    def test_build_validator(self, settings):
        validator = CommandBuildValidator.from_settings(settings)

        assert validator.commands == ["make check"]
        assert validator.test_command == "make test"
        assert validator.timeout == 90

    def test_agent_channel(self, settings):
        channel = ExternalAgentChannel.from_settings(settings, working_dir="/work/shop")

        assert channel.command == ["agent", "--print", "--model", "large"]
        assert channel.response_timeout == 45
        assert channel.working_dir == "/work/shop"

    def test_defaults(self):
        settings = BranchPilotSettings()

        assert GitCLIProvider.from_settings(settings).remote == "origin"
        assert CommandBuildValidator.from_settings(settings).commands == settings.validation.commands


class TestFactories:
    """Orchestrator and executor wiring."""

    def test_create_orchestrator(self, settings):
        orchestrator = create_orchestrator(settings, working_dir="/work/shop", configure_log=False)

        assert isinstance(orchestrator, WorkflowOrchestrator)
        assert orchestrator.settings is settings
        assert isinstance(orchestrator.vcs, GitCLIProvider)
        assert orchestrator.vcs.remote == "upstream"
        assert isinstance(orchestrator.channel, ExternalAgentChannel)
        assert orchestrator.channel.working_dir == "/work/shop"
        assert isinstance(orchestrator.validator, CommandBuildValidator)
        assert orchestrator.validator.test_command == "make test"

    def test_create_sequential_executor(self, settings):
        executor = create_sequential_executor(settings, working_dir="/work/shop", configure_log=False)

        assert isinstance(executor, SequentialPipelineExecutor)
        assert executor.settings is settings
        assert executor.vcs.timeout == 15
        assert executor.channel.response_timeout == 45

    def test_logging_section_is_applied(self, settings, capsys):
        create_orchestrator(settings, working_dir="/work/shop")

        log = get_logger("branchpilot.test")
        log.info("hidden")
        log.warning("branch_protection_failed", branch="fix/a-1-1")

        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["event"] == "branch_protection_failed"

    def test_setup_logging(self, settings, capsys):
        setup_logging(settings)

        get_logger().error("merge_failed", task_id="7")

        assert json.loads(capsys.readouterr().out.strip())["task_id"] == "7"
