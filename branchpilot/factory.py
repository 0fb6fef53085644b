"""Wiring of the engine from settings.

Builds the concrete adapters (git CLI, agent CLI, shell build validator)
from a :class:`BranchPilotSettings` and hands them to the orchestrator or
the sequential executor. Logging is configured from the ``logging``
section unless the caller opts out.

Example:
    >>> settings = BranchPilotSettings.from_yaml("branchpilot.yaml")
    >>> orchestrator = create_orchestrator(settings, working_dir="/work/shop")
    >>> result = await orchestrator.execute_workflow(task)
"""

import structlog

from branchpilot.config.settings import BranchPilotSettings
from branchpilot.engine.orchestrator import WorkflowOrchestrator
from branchpilot.engine.sequential import SequentialPipelineExecutor
from branchpilot.engine.validation import CommandBuildValidator
from branchpilot.events import EventSink
from branchpilot.providers.external_agent import ExternalAgentChannel
from branchpilot.providers.git_cli import GitCLIProvider
from branchpilot.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)


def setup_logging(settings: BranchPilotSettings) -> None:
    """Apply the ``logging`` settings section."""
    configure_logging(settings.logging.level, settings.logging.renderer)


def create_orchestrator(
    settings: BranchPilotSettings | None = None,
    working_dir: str | None = None,
    events: EventSink | None = None,
    configure_log: bool = True,
) -> WorkflowOrchestrator:
    """Create an orchestrator over the git CLI and the agent CLI.

    Args:
        settings: Engine settings; defaults when None
        working_dir: Directory the agent runs in (the project path)
        events: Optional event sink
        configure_log: Install the structlog configuration from settings

    Returns:
        WorkflowOrchestrator ready to execute tasks
    """
    settings = settings or BranchPilotSettings()
    if configure_log:
        setup_logging(settings)

    log.debug("creating_orchestrator", working_dir=working_dir)
    return WorkflowOrchestrator(
        GitCLIProvider.from_settings(settings),
        ExternalAgentChannel.from_settings(settings, working_dir=working_dir),
        CommandBuildValidator.from_settings(settings),
        settings=settings,
        events=events,
    )


def create_sequential_executor(
    settings: BranchPilotSettings | None = None,
    working_dir: str | None = None,
    events: EventSink | None = None,
    configure_log: bool = True,
) -> SequentialPipelineExecutor:
    """Create a sequential executor over the git CLI and the agent CLI."""
    settings = settings or BranchPilotSettings()
    if configure_log:
        setup_logging(settings)

    return SequentialPipelineExecutor(
        GitCLIProvider.from_settings(settings),
        ExternalAgentChannel.from_settings(settings, working_dir=working_dir),
        settings=settings,
        events=events,
    )
