"""Data-driven dispatch of per-type step pipelines.

The dispatcher looks up the pipeline for a task type, runs its steps in
order and records each one as an :class:`ExecutionStep` on the workflow
context. A pipeline only advances when a step succeeds; the first failure
halts it. There is no pipeline-level retry: steps that need retries use the
retry loop themselves.
"""

from dataclasses import dataclass, field

import structlog

from branchpilot.engine.steps import PIPELINES, StepContext, StepDescriptor
from branchpilot.enums import StepStatus, TaskType
from branchpilot.exceptions import StepFailedError, WorkflowCancelled
from branchpilot.models.domain import ExecutionStep

log = structlog.get_logger(__name__)


@dataclass
class DispatchResult:
    """Outcome of running one pipeline."""

    success: bool
    steps: list[ExecutionStep] = field(default_factory=list)
    error: BaseException | None = None
    failed_step: str | None = None


class WorkflowDispatcher:
    """Run the pipeline registered for a task type.

    Args:
        pipelines: Pipeline table; the built-in table when None. Task types
            without an entry fall back to the ``generic`` pipeline.
    """

    def __init__(self, pipelines: dict[TaskType, tuple[StepDescriptor, ...]] | None = None) -> None:
        self.pipelines = dict(PIPELINES if pipelines is None else pipelines)

    def pipeline_for(self, task_type: TaskType | str | None) -> tuple[StepDescriptor, ...]:
        normalized = TaskType.from_value(task_type)
        if normalized is not None and normalized in self.pipelines:
            return self.pipelines[normalized]
        return self.pipelines.get(TaskType.GENERIC, ())

    async def dispatch(self, task_type: TaskType | str | None, ctx: StepContext) -> DispatchResult:
        """Run every step of the pipeline for ``task_type``.

        Cancellation is checked before each step. A cancelled or failed run
        is returned as an unsuccessful DispatchResult, never raised.
        """
        pipeline = self.pipeline_for(task_type)
        task_id = ctx.task.id
        recorded: list[ExecutionStep] = []

        log.info("pipeline_started", task_id=task_id, steps=[step.name for step in pipeline])

        for descriptor in pipeline:
            if ctx.cancel_token is not None:
                try:
                    ctx.cancel_token.raise_if_cancelled(phase=descriptor.name, task_id=task_id)
                except WorkflowCancelled as e:
                    log.warning("pipeline_cancelled", task_id=task_id, step=descriptor.name)
                    return DispatchResult(False, recorded, e, descriptor.name)

            step = ExecutionStep(
                name=descriptor.name,
                status=StepStatus.RUNNING,
                started_at=ctx.context.now(),
            )
            ctx.context.add_step(step)
            recorded.append(step)
            log.info("step_started", task_id=task_id, step=descriptor.name)

            try:
                outcome = await descriptor.handler(ctx)
            except Exception as e:
                outcome = None
                error: BaseException | None = e
                log.error("step_raised", task_id=task_id, step=descriptor.name, error=str(e), exc_info=True)
            else:
                error = outcome.error
                step.data = outcome.data

            step.completed_at = ctx.context.now()

            if outcome is not None and outcome.success:
                step.status = StepStatus.COMPLETED
                log.info("step_completed", task_id=task_id, step=descriptor.name)
                continue

            if error is None:
                error = StepFailedError(
                    f"Step {descriptor.name} failed", task_id=task_id, phase=descriptor.name
                )
            step.status = StepStatus.FAILED
            step.error = error
            log.warning("step_failed", task_id=task_id, step=descriptor.name, error=str(error))
            return DispatchResult(False, recorded, error, descriptor.name)

        log.info("pipeline_completed", task_id=task_id, steps=len(recorded))
        return DispatchResult(True, recorded)
