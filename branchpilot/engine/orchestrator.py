"""
Workflow orchestrator: one task from branch creation to merge or rollback.

This module provides the WorkflowOrchestrator class, the central coordination
point for executing a single task. The orchestrator manages:

- Strategy resolution and branch naming for the task type
- Branch preparation (start point, rollback point, protection)
- Pipeline dispatch through the WorkflowDispatcher
- Completion (commit, push and optional auto-merge)
- Rollback to the captured rollback point on failure

Workflow Lifecycle:
    1. Resolve strategy, create and check out the task branch
    2. Dispatch the task type's pipeline
    3. On success commit, push and merge (or record a pending merge)
    4. On failure reset to the rollback point, return to the base branch and
       delete the task branch
    5. Complete the context and return a WorkflowResult

Error Policy:
    A task without a project path raises PreconditionError. Every other
    failure is returned in the WorkflowResult; ``result.raise_for_error()``
    re-raises it. Rollback problems are warnings and never replace the
    original error. A failed merge keeps the branch and is not rolled back.

Example:
    >>> orchestrator = WorkflowOrchestrator(GitCLIProvider(), ExternalAgentChannel(), CommandBuildValidator())
    >>> result = await orchestrator.execute_workflow(task)
    >>> result.success, result.branch_name
    (True, 'refactor/split-payment-service-42-1700000000000')
"""

from dataclasses import dataclass

import structlog

from branchpilot.config.settings import BranchPilotSettings
from branchpilot.engine.cancellation import CancellationToken
from branchpilot.engine.context import WorkflowContext
from branchpilot.engine.dispatcher import WorkflowDispatcher
from branchpilot.engine.naming import BranchNameGenerator, generate_commit_message, generate_merge_message
from branchpilot.engine.parallel_executor import ParallelFixExecutor
from branchpilot.engine.retry import RetryValidationLoop
from branchpilot.engine.steps import StepContext
from branchpilot.engine.strategy import (
    BranchStrategy,
    BranchStrategyResolver,
    StrategyOverrides,
    protection_policy,
)
from branchpilot.enums import MergeStrategy
from branchpilot.events import (
    BRANCH_CREATED,
    MERGE_COMPLETED,
    MERGE_FAILED,
    WORKFLOW_COMPLETED,
    WORKFLOW_ROLLED_BACK,
    EventPublisher,
    EventSink,
)
from branchpilot.exceptions import (
    BranchOperationError,
    BranchPilotError,
    PreconditionError,
    RollbackFailure,
    WorkflowCancelled,
)
from branchpilot.models.domain import MergeResult, Task, WorkflowResult
from branchpilot.providers.base import AutomationChannel, BuildValidator, VCSProvider
from branchpilot.rendering.prompts import PromptRenderer

log = structlog.get_logger(__name__)


@dataclass
class WorkflowOptions:
    """Per-invocation options for :meth:`WorkflowOrchestrator.execute_workflow`.

    Attributes:
        overrides: Strategy adjustments (start point, merge target, ...)
        max_attempts: Retry budget for validating steps; settings when None
        cancel_token: Token observed at step, attempt and poll boundaries
        push: Push branches; settings when None
        merge_strategy: Strategy used for auto-merges
    """

    overrides: StrategyOverrides | None = None
    max_attempts: int | None = None
    cancel_token: CancellationToken | None = None
    push: bool | None = None
    merge_strategy: MergeStrategy = MergeStrategy.SQUASH


@dataclass
class _Run:
    """Mutable bookkeeping for one execute_workflow call."""

    task: Task
    project_path: str
    strategy: BranchStrategy
    context: WorkflowContext
    push: bool
    branch_name: str | None = None
    rollback_point: str | None = None
    error: BaseException | None = None
    rolled_back: bool = False
    merge: MergeResult | None = None


class WorkflowOrchestrator:
    """Execute tasks as branch-isolated workflows.

    Attributes:
        vcs: Version control provider.
        channel: AI automation channel.
        validator: Build/test validator.
        settings: Engine configuration.
        resolver: Task type to branch strategy resolver.
        naming: Branch name generator.
        renderer: Prompt renderer.
        dispatcher: Pipeline dispatcher.
        events: Null-safe event publisher.
    """

    def __init__(
        self,
        vcs: VCSProvider,
        channel: AutomationChannel,
        validator: BuildValidator,
        settings: BranchPilotSettings | None = None,
        resolver: BranchStrategyResolver | None = None,
        naming: BranchNameGenerator | None = None,
        renderer: PromptRenderer | None = None,
        dispatcher: WorkflowDispatcher | None = None,
        events: EventSink | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            vcs: Provider for branch, commit and merge operations.
            channel: Channel that delivers prompts to the AI assistant.
            validator: Build/test gate used by validating steps.
            settings: Engine configuration; defaults when None.
            resolver: Strategy resolver; the built-in strategy table when None.
            naming: Branch name generator.
            renderer: Prompt renderer.
            dispatcher: Pipeline dispatcher; the built-in pipelines when None.
            events: Optional event sink.
        """
        self.vcs = vcs
        self.channel = channel
        self.validator = validator
        self.settings = settings or BranchPilotSettings()
        self.resolver = resolver or BranchStrategyResolver()
        self.naming = naming or BranchNameGenerator()
        self.renderer = renderer or PromptRenderer()
        self.dispatcher = dispatcher or WorkflowDispatcher()
        self.events = EventPublisher(events)

    async def execute_workflow(self, task: Task, options: WorkflowOptions | None = None) -> WorkflowResult:
        """Execute one task end to end.

        Args:
            task: The task to execute. ``metadata["projectPath"]`` is required.
            options: Per-invocation options.

        Returns:
            WorkflowResult describing the outcome. ``success`` is True only
            when the pipeline and its completion (commit, push and any
            auto-merge) all succeeded.

        Raises:
            PreconditionError: If the task has no project path, the retry
                budget is not positive, or the task type has no strategy
        """
        options = options or WorkflowOptions()

        project_path = task.project_path
        if not project_path:
            raise PreconditionError(f"Task {task.id} has no project path")

        max_attempts = options.max_attempts
        if max_attempts is None:
            max_attempts = self.settings.retry.max_attempts
        retry_loop = RetryValidationLoop(max_attempts)
        strategy = self.resolver.resolve(task.type, options.overrides)

        run = _Run(
            task=task,
            project_path=project_path,
            strategy=strategy,
            context=WorkflowContext(task, project_path),
            push=self.settings.git.push if options.push is None else options.push,
        )
        run.context.set("strategy", strategy.model_dump(mode="json"))
        log.info("workflow_started", task_id=task.id, task_type=task.type_value, project_path=project_path)

        step_ctx: StepContext | None = None
        try:
            if options.cancel_token is not None:
                options.cancel_token.raise_if_cancelled(phase="branch", task_id=task.id)
            branch = await self._prepare_branch(run)
        except Exception as e:
            error = e if isinstance(e, WorkflowCancelled) else _as_branch_error(e, "prepare", run.branch_name)
            run.error = error
            run.context.add_error(str(error), phase="branch", error=error)
            log.error("branch_preparation_failed", task_id=task.id, error=str(error))
        else:
            step_ctx = StepContext(
                task=task,
                context=run.context,
                project_path=project_path,
                channel=self.channel,
                validator=self.validator,
                renderer=self.renderer,
                retry_loop=retry_loop,
                fix_executor=ParallelFixExecutor(self.settings.pipeline.max_concurrent_fixes),
                cancel_token=options.cancel_token,
                session_settle_delay=self.settings.automation.session_settle_delay,
                response_timeout=self.settings.automation.response_timeout,
                fix_timeout=self.settings.pipeline.fix_timeout,
            )
            dispatch = await self.dispatcher.dispatch(task.task_type, step_ctx)

            if not dispatch.success:
                run.error = dispatch.error
                run.context.add_error(str(dispatch.error), phase=dispatch.failed_step, error=dispatch.error)
                await self._rollback(run)
            else:
                await self._complete(run, branch, options.merge_strategy)

        run.context.mark_completed()
        success = run.error is None
        duration = run.context.get_duration()

        log.info(
            "workflow_finished",
            task_id=task.id,
            success=success,
            branch=run.branch_name,
            rolled_back=run.rolled_back,
            duration=duration,
        )

        return WorkflowResult(
            success=success,
            task_id=task.id,
            branch_name=run.branch_name,
            strategy=strategy.model_dump(mode="json"),
            steps=list(run.context.steps),
            attempts=list(step_ctx.attempts) if step_ctx else [],
            error=run.error,
            rolled_back=run.rolled_back,
            merge=run.merge,
            duration=duration,
            context=run.context.summary(),
        )

    async def merge_to_branch(
        self,
        task: Task,
        branch: str,
        target: str | None = None,
        strategy: MergeStrategy = MergeStrategy.SQUASH,
        push: bool | None = None,
        delete_branch: bool = True,
        context: WorkflowContext | None = None,
    ) -> MergeResult:
        """Merge a task branch into a target branch.

        Completes a merge that a workflow left pending (strategies without
        auto-merge) or retries one that failed. The target is checked out,
        created from the default branch first if missing.

        Args:
            task: Task the branch belongs to; ``metadata["projectPath"]`` is required
            branch: Branch to merge
            target: Target branch; the task type's merge target when None
            strategy: Merge strategy
            push: Push the target afterwards; settings when None
            delete_branch: Delete the merged branch on success
            context: Context to record the merge in; a fresh one when None

        Returns:
            MergeResult; ``success`` is False with ``error`` set when the merge failed

        Raises:
            PreconditionError: If the task has no project path
        """
        project_path = task.project_path
        if not project_path:
            raise PreconditionError(f"Task {task.id} has no project path")

        target = target or self.resolver.resolve(task.type).merge_target
        push = self.settings.git.push if push is None else push
        if context is None:
            context = WorkflowContext(task, project_path)

        result, _ = await self._merge(
            task, project_path, branch, target, strategy, push, context, delete_branch=delete_branch
        )
        return result

    # ------------------------------------------------------------------
    # Branch preparation
    # ------------------------------------------------------------------

    async def ensure_branch(self, project_path: str, branch: str, push: bool) -> bool:
        """Create ``branch`` from the default branch when it does not exist.

        Returns:
            True if the branch had to be created
        """
        if await self.vcs.branch_exists(project_path, branch):
            return False

        source = self.settings.git.default_branch
        log.info("creating_missing_branch", branch=branch, source=source)
        await self.vcs.create_branch(project_path, branch, source, checkout=False)
        if push:
            await self.vcs.push_changes(project_path, branch, set_upstream=True)
        return True

    async def _prepare_branch(self, run: _Run) -> str:
        strategy, path, context = run.strategy, run.project_path, run.context
        base = strategy.start_point

        await self.ensure_branch(path, base, run.push)
        run.rollback_point = await self.vcs.get_commit_sha(path, base)

        branch_name = self.naming.generate(run.task, strategy)
        await self.vcs.create_branch(path, branch_name, base, checkout=True)
        run.branch_name = branch_name

        try:
            await self.vcs.set_branch_protection(path, branch_name, protection_policy(strategy))
        except Exception as e:
            context.add_warning(f"Could not apply branch protection: {e}", phase="branch", error=e)
            log.warning("branch_protection_failed", branch=branch_name, error=str(e))

        context.set_branch_info(
            branch_name,
            base,
            rollback_point=run.rollback_point,
            protection_level=strategy.protection_level.value,
        )
        log.info("task_branch_created", task_id=run.task.id, branch=branch_name, base=base)
        await self.events.publish(
            BRANCH_CREATED,
            {
                "task_id": run.task.id,
                "branch": branch_name,
                "base_branch": base,
                "strategy": strategy.type,
            },
        )
        return branch_name

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _complete(self, run: _Run, branch: str, merge_strategy: MergeStrategy) -> None:
        task, strategy, path, context = run.task, run.strategy, run.project_path, run.context

        try:
            await self.vcs.add_files(path)
            commit_sha = await self.vcs.commit_changes(path, generate_commit_message(task))
            if run.push:
                await self.vcs.push_changes(path, branch, set_upstream=True)
        except Exception as e:
            error = _as_branch_error(e, "commit", branch)
            run.error = error
            context.add_error(str(error), phase="commit", error=error)
            log.error("completion_failed", task_id=task.id, branch=branch, error=str(error))
            await self._rollback(run)
            return

        context.set("commit_sha", commit_sha, category="git_data")

        if strategy.auto_merge:
            run.merge, merge_error = await self._merge(
                task, path, branch, strategy.merge_target, merge_strategy, run.push, context
            )
            if merge_error is not None:
                run.error = merge_error
                return
        else:
            context.set_merge_info(branch, strategy.merge_target, merge_strategy.value, completed=False)
            if strategy.requires_review:
                context.set_review_info(required=True, protection_level=strategy.protection_level.value)

        await self.events.publish(
            WORKFLOW_COMPLETED,
            {
                "task_id": task.id,
                "branch": branch,
                "commit_sha": commit_sha,
                "merged": run.merge is not None and run.merge.success,
                "merge_target": strategy.merge_target,
                "requires_review": strategy.requires_review,
            },
        )

    async def _merge(
        self,
        task: Task,
        path: str,
        source: str,
        target: str,
        merge_strategy: MergeStrategy,
        push: bool,
        context: WorkflowContext,
        delete_branch: bool = True,
    ) -> tuple[MergeResult, BranchOperationError | None]:
        result = MergeResult(
            success=False,
            source_branch=source,
            target_branch=target,
            strategy=merge_strategy.value,
        )
        try:
            await self.ensure_branch(path, target, push)
            await self.vcs.checkout_branch(path, target)
            result.commit_sha = await self.vcs.merge_branch(
                path,
                source,
                strategy=merge_strategy,
                message=generate_merge_message(task, target),
            )
            if push:
                await self.vcs.push_changes(path, target, set_upstream=False)
        except Exception as e:
            error = _as_branch_error(e, "merge", source)
            result.error = str(error)
            context.add_error(f"Merge into {target} failed: {error}", phase="merge", error=error)
            log.error("merge_failed", task_id=task.id, source=source, target=target, error=str(error))
            await self.events.publish(
                MERGE_FAILED,
                {"task_id": task.id, "source": source, "target": target, "error": str(error)},
            )
            return result, error

        result.success = True
        if delete_branch:
            try:
                await self.vcs.delete_branch(path, source, force=True)
                result.branch_deleted = True
            except Exception as e:
                context.add_warning(f"Could not delete merged branch {source}: {e}", phase="merge", error=e)

        context.set_merge_info(
            source,
            target,
            merge_strategy.value,
            completed=True,
            commit_sha=result.commit_sha,
            branch_deleted=result.branch_deleted,
        )
        log.info("merge_completed", task_id=task.id, source=source, target=target)
        await self.events.publish(
            MERGE_COMPLETED,
            {
                "task_id": task.id,
                "source": source,
                "target": target,
                "strategy": merge_strategy.value,
                "commit_sha": result.commit_sha,
            },
        )
        return result, None

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    async def _rollback(self, run: _Run) -> None:
        path, context = run.project_path, run.context
        branch = run.branch_name
        base = run.strategy.start_point
        run.rolled_back = True
        log.warning(
            "workflow_rolling_back",
            task_id=run.task.id,
            branch=branch,
            rollback_point=run.rollback_point,
        )

        operations = []
        if run.rollback_point:
            operations.append(("reset", branch, lambda: self.vcs.reset_to_commit(path, run.rollback_point)))
        operations.append(("checkout", base, lambda: self.vcs.checkout_branch(path, base)))
        if branch:
            operations.append(("delete", branch, lambda: self.vcs.delete_branch(path, branch, force=True)))

        for operation, target, action in operations:
            try:
                await action()
            except Exception as e:
                reason = e.message if isinstance(e, BranchPilotError) else str(e)
                failure = RollbackFailure(
                    f"Rollback {operation} failed: {reason}", operation=operation, branch=target
                )
                failure.__cause__ = e
                context.add_warning(str(failure), phase="rollback", error=failure)
                log.warning("rollback_step_failed", operation=operation, branch=target, error=str(e))

        await self.events.publish(
            WORKFLOW_ROLLED_BACK,
            {
                "task_id": run.task.id,
                "branch": branch,
                "base_branch": base,
                "rollback_point": run.rollback_point,
                "error": str(run.error) if run.error else None,
                "warnings": len(context.warnings),
            },
        )


def _as_branch_error(error: Exception, operation: str, branch: str | None = None) -> BranchOperationError:
    """Map a VCS collaborator failure into the branch-operation taxonomy."""
    if isinstance(error, BranchOperationError):
        return error
    wrapped = BranchOperationError(f"{operation} failed: {error}", operation=operation, branch=branch)
    wrapped.__cause__ = error
    return wrapped
