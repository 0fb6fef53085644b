"""Workflow event publishing.

The orchestrator and the sequential executor announce lifecycle changes
through an optional :class:`EventSink`. Publishing is fire-and-forget: with
no sink configured nothing happens, and a sink that raises is logged and
ignored so that observers can never change a workflow's outcome.

Event names:
    - workflow.branch.created
    - workflow.completed
    - workflow.rolled_back
    - workflow.merge.completed
    - workflow.merge.failed
    - task.sequential.completed
    - task.sequential.failed
"""

import inspect
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog

log = structlog.get_logger(__name__)

BRANCH_CREATED = "workflow.branch.created"
WORKFLOW_COMPLETED = "workflow.completed"
WORKFLOW_ROLLED_BACK = "workflow.rolled_back"
MERGE_COMPLETED = "workflow.merge.completed"
MERGE_FAILED = "workflow.merge.failed"
SEQUENTIAL_TASK_COMPLETED = "task.sequential.completed"
SEQUENTIAL_TASK_FAILED = "task.sequential.failed"


class EventSink(Protocol):
    """Protocol for workflow event consumers.

    ``publish`` may be a plain method or a coroutine function.
    """

    def publish(self, name: str, payload: dict[str, Any]) -> Any:
        """Receive one event.

        Args:
            name: Dotted event name, e.g. ``workflow.completed``
            payload: Event data (task id, branch names, result details)
        """
        ...


@dataclass
class PublishedEvent:
    """An event captured by :class:`InMemoryEventSink`."""

    name: str
    payload: dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class InMemoryEventSink:
    """Event sink that keeps every event in a list.

    Useful for tests and for embedding applications that inspect events
    after a run.

    Example:
        >>> sink = InMemoryEventSink()
        >>> orchestrator = WorkflowOrchestrator(vcs, channel, validator, events=sink)
        >>> await orchestrator.execute_workflow(task)
        >>> sink.names()
        ['workflow.branch.created', 'workflow.completed']
    """

    def __init__(self) -> None:
        self.events: list[PublishedEvent] = []

    def publish(self, name: str, payload: dict[str, Any]) -> None:
        self.events.append(PublishedEvent(name=name, payload=dict(payload)))

    def names(self) -> list[str]:
        return [event.name for event in self.events]

    def of(self, name: str) -> list[PublishedEvent]:
        return [event for event in self.events if event.name == name]

    def clear(self) -> None:
        self.events.clear()


class EventPublisher:
    """Null-safe, failure-isolated wrapper around an optional sink."""

    def __init__(self, sink: EventSink | None = None) -> None:
        self.sink = sink

    async def publish(self, name: str, payload: dict[str, Any]) -> None:
        if self.sink is None:
            return

        try:
            outcome = self.sink.publish(name, payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            log.warning("event_publish_failed", event=name, error=str(e), exc_info=True)
