"""Pipeline step handlers and the per-type pipeline table.

A pipeline is a tuple of :class:`StepDescriptor` objects. Each descriptor
names a step and points at an async handler that receives the shared
:class:`StepContext` and returns a :class:`StepOutcome`. Adding a task type
means adding a row to :data:`PIPELINES`; the dispatcher itself never changes.

Steps that validate the project run through the retry-with-feedback loop.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from branchpilot.engine.cancellation import CancellationToken, cancellable_sleep
from branchpilot.engine.context import WorkflowContext
from branchpilot.engine.parallel_executor import FixJob, ParallelFixExecutor
from branchpilot.engine.retry import RetryValidationLoop
from branchpilot.enums import TaskType
from branchpilot.exceptions import StepFailedError, ValidationFailure
from branchpilot.models.domain import BuildResult, RetryAttempt, Task
from branchpilot.providers.base import AutomationChannel, BuildValidator
from branchpilot.rendering.prompts import PromptRenderer

log = structlog.get_logger(__name__)


@dataclass
class StepContext:
    """Everything a step handler may use.

    One StepContext exists per workflow run and is owned by it.
    """

    task: Task
    context: WorkflowContext
    project_path: str
    channel: AutomationChannel
    validator: BuildValidator
    renderer: PromptRenderer
    retry_loop: RetryValidationLoop
    fix_executor: ParallelFixExecutor
    cancel_token: CancellationToken | None = None
    session_settle_delay: float = 2.0
    response_timeout: float | None = None
    fix_timeout: float = 600.0
    attempts: list[RetryAttempt] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)

    async def send(self, prompt: str) -> str:
        return await self.channel.send_message(prompt, wait_for_response=True, timeout=self.response_timeout)

    def prompt(self, template: str, **extra: Any) -> str:
        return self.renderer.task_prompt(template, self.task, self.project_path, **extra)

    @property
    def analysis(self) -> str:
        """Response of the most recent analysis-style step."""
        return self.outputs.get("analysis", "")


@dataclass
class StepOutcome:
    """Result of one step handler."""

    success: bool
    data: Any = None
    error: BaseException | None = None


StepHandler = Callable[[StepContext], Awaitable[StepOutcome]]


@dataclass(frozen=True)
class StepDescriptor:
    """A named step in a pipeline."""

    name: str
    handler: StepHandler


# ----------------------------------------------------------------------
# Handlers
# ----------------------------------------------------------------------


async def create_session(ctx: StepContext) -> StepOutcome:
    """Open a fresh automation session and let it settle."""
    await ctx.channel.start_new_session()
    await cancellable_sleep(ctx.session_settle_delay, ctx.cancel_token)
    return StepOutcome(success=True)


def prompt_step(template: str, keep_as_analysis: bool = False) -> StepHandler:
    """Handler that sends one rendered prompt and records the response."""

    async def handler(ctx: StepContext) -> StepOutcome:
        response = await ctx.send(ctx.prompt(template, analysis=ctx.analysis))
        ctx.outputs[template] = response
        if keep_as_analysis:
            ctx.outputs["analysis"] = response
        return StepOutcome(success=True, data={"response_length": len(response)})

    return handler


async def _run_validated(
    ctx: StepContext,
    initial_prompt: str | None,
    validate: Callable[[], Awaitable[BuildResult]],
) -> StepOutcome:
    """Run the retry loop; without an initial prompt the first attempt only validates."""

    async def apply_change(feedback: str | None) -> str | None:
        prompt = feedback if feedback is not None else initial_prompt
        if prompt is None:
            return None
        return await ctx.send(prompt)

    outcome = await ctx.retry_loop.run(
        apply_change=apply_change,
        validate=validate,
        build_feedback_prompt=ctx.renderer.build_error_prompt,
        cancel_token=ctx.cancel_token,
        task_id=ctx.task.id,
    )
    ctx.attempts.extend(outcome.attempts)
    data = {"attempts": len(outcome.attempts)}

    if outcome.success:
        return StepOutcome(success=True, data=data)

    last = outcome.last_result
    error = ValidationFailure(
        f"Validation failed after {len(outcome.attempts)} attempt(s): {last.error if last else 'no result'}",
        command=last.command if last else None,
        output=last.output if last else None,
    )
    return StepOutcome(success=False, data=data, error=error)


def validated_edit_step(template: str) -> StepHandler:
    """Handler that sends an edit prompt and validates it with retries."""

    async def handler(ctx: StepContext) -> StepOutcome:
        return await _run_validated(
            ctx,
            ctx.prompt(template, analysis=ctx.analysis),
            lambda: ctx.validator.validate(ctx.project_path),
        )

    return handler


async def validate_build(ctx: StepContext) -> StepOutcome:
    """Validate the changes made by earlier steps, asking for fixes on failure."""
    return await _run_validated(ctx, None, lambda: ctx.validator.validate(ctx.project_path))


async def complete_edit(ctx: StepContext) -> StepOutcome:
    """Record the outcome of the edit loop."""
    ctx.context.set("edit_attempts", len(ctx.attempts))
    ctx.context.set("edit_validated", bool(ctx.attempts) and ctx.attempts[-1].build_result.success)
    return StepOutcome(success=True, data={"attempts": len(ctx.attempts)})


async def run_tests(ctx: StepContext) -> StepOutcome:
    """Run the test suite; the failing tests drive the rest of the pipeline."""
    result = await ctx.validator.run_tests(ctx.project_path)
    ctx.outputs["test_result"] = result
    ctx.context.set("initial_failures", list(result.failures))
    log.info("tests_run", task_id=ctx.task.id, passed=result.success, failures=len(result.failures))
    return StepOutcome(success=True, data={"passed": result.success, "failures": len(result.failures)})


async def analyze_failures(ctx: StepContext) -> StepOutcome:
    result: BuildResult | None = ctx.outputs.get("test_result")
    if result is None or result.success:
        return StepOutcome(success=True, data={"skipped": True})

    response = await ctx.send(
        ctx.prompt(
            "analyze_failures",
            failures=result.failures or [result.command or "test suite"],
            output=result.output[-4000:],
        )
    )
    ctx.outputs["analysis"] = response
    return StepOutcome(success=True, data={"response_length": len(response)})


async def apply_fixes(ctx: StepContext) -> StepOutcome:
    """Apply one correction per failing test with bounded concurrency."""
    result: BuildResult | None = ctx.outputs.get("test_result")
    if result is None or result.success:
        return StepOutcome(success=True, data={"fixes": 0})

    failures = result.failures or [result.command or "test suite"]

    async def fix(failure: str) -> str:
        return await ctx.send(ctx.prompt("apply_fix", failure=failure, analysis=ctx.analysis))

    jobs = [FixJob(id=failure, func=fix, args=(failure,), timeout=ctx.fix_timeout) for failure in failures]
    results = await ctx.fix_executor.execute(jobs, cancel_token=ctx.cancel_token)

    failed = [r.fix_id for r in results if not r.success]
    for index, fix_result in enumerate(results, start=1):
        log.info(
            "fix_progress",
            task_id=ctx.task.id,
            completed=index,
            total=len(results),
            fix_id=fix_result.fix_id,
            success=fix_result.success,
        )

    data = {"fixes": len(results), "failed": failed}
    if failed:
        return StepOutcome(
            success=False,
            data=data,
            error=StepFailedError(
                f"{len(failed)} of {len(results)} fixes failed",
                task_id=ctx.task.id,
                phase="apply-fixes",
            ),
        )
    return StepOutcome(success=True, data=data)


async def verify_tests(ctx: StepContext) -> StepOutcome:
    """Re-run the tests, asking for further fixes while they fail."""
    return await _run_validated(ctx, None, lambda: ctx.validator.run_tests(ctx.project_path))


# ----------------------------------------------------------------------
# Pipeline table
# ----------------------------------------------------------------------

CREATE_SESSION = StepDescriptor("create-session", create_session)
VALIDATE = StepDescriptor("validate", validate_build)
GENERATE_REPORT = StepDescriptor("generate-report", prompt_step("generate_report"))
ANALYZE = StepDescriptor("analyze", prompt_step("analyze", keep_as_analysis=True))

PIPELINES: dict[TaskType, tuple[StepDescriptor, ...]] = {
    TaskType.REFACTOR: (
        CREATE_SESSION,
        StepDescriptor("ai-edit-with-retry-loop", validated_edit_step("refactor")),
        StepDescriptor("completion", complete_edit),
    ),
    TaskType.FEATURE: (
        CREATE_SESSION,
        StepDescriptor("implement", prompt_step("implement")),
        StepDescriptor("generate-tests", prompt_step("generate_tests")),
        VALIDATE,
    ),
    TaskType.BUGFIX: (
        CREATE_SESSION,
        StepDescriptor("analyze-bug", prompt_step("analyze_bug", keep_as_analysis=True)),
        StepDescriptor("implement-fix", prompt_step("implement_fix")),
        VALIDATE,
    ),
    TaskType.HOTFIX: (
        CREATE_SESSION,
        StepDescriptor("analyze-issue", prompt_step("analyze_issue", keep_as_analysis=True)),
        StepDescriptor("implement-fix", prompt_step("implement_fix")),
        VALIDATE,
    ),
    TaskType.ANALYSIS: (CREATE_SESSION, ANALYZE, GENERATE_REPORT),
    TaskType.TESTING: (
        StepDescriptor("run-tests", run_tests),
        StepDescriptor("analyze-failures", analyze_failures),
        StepDescriptor("apply-fixes", apply_fixes),
        StepDescriptor("verify", verify_tests),
    ),
    TaskType.DOCUMENTATION: (
        CREATE_SESSION,
        StepDescriptor("generate-docs", prompt_step("generate_docs")),
        VALIDATE,
    ),
    TaskType.DEBUG: (CREATE_SESSION, ANALYZE, GENERATE_REPORT),
    TaskType.OPTIMIZATION: (
        CREATE_SESSION,
        StepDescriptor("analyze-performance", prompt_step("analyze_performance", keep_as_analysis=True)),
        StepDescriptor("implement-optimizations", prompt_step("implement_optimizations")),
        VALIDATE,
    ),
    TaskType.CODE_REVIEW: (
        CREATE_SESSION,
        StepDescriptor("review", prompt_step("review", keep_as_analysis=True)),
        GENERATE_REPORT,
    ),
    TaskType.GENERIC: (
        CREATE_SESSION,
        StepDescriptor("execute", prompt_step("execute")),
    ),
}
