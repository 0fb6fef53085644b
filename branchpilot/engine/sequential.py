"""Sequential multi-task pipeline.

Runs a list of tasks one after another through the automation channel,
chaining their branches through a shared integration branch (``agent`` by
default):

1. Check out the task's branch, pre-created by the previous iteration when
   possible, otherwise cut from the integration branch
2. Open a new automation session and wait for it to settle
3. Send the task prompt and poll until the response contains a completion
   marker (``done``, ``completed``, ``finished``) or the deadline passes
4. Commit the work and merge the task branch into the integration branch
5. Pre-create the next task's branch from the updated integration branch

A failed task does not stop the run unless fail-fast is requested, in which
case the remaining tasks are recorded as skipped.
"""

import time
from dataclasses import dataclass

import structlog

from branchpilot.config.settings import BranchPilotSettings
from branchpilot.engine.cancellation import CancellationToken, cancellable_sleep
from branchpilot.engine.naming import BranchNameGenerator, generate_commit_message, generate_merge_message
from branchpilot.engine.strategy import BranchStrategyResolver
from branchpilot.enums import MergeStrategy
from branchpilot.events import (
    SEQUENTIAL_TASK_COMPLETED,
    SEQUENTIAL_TASK_FAILED,
    EventPublisher,
    EventSink,
)
from branchpilot.exceptions import AutomationTimeout, BranchPilotError, PreconditionError, WorkflowCancelled
from branchpilot.models.domain import MergeResult, PipelineRun, PipelineTaskResult, Task
from branchpilot.providers.base import AutomationChannel, VCSProvider
from branchpilot.rendering.prompts import PromptRenderer

log = structlog.get_logger(__name__)

@dataclass
class SequentialOptions:
    """Options for :meth:`SequentialPipelineExecutor.run_sequential`.

    Unset values fall back to the executor's settings.
    """

    fail_fast: bool | None = None
    integration_branch: str | None = None
    completion_timeout: float | None = None
    poll_interval: float | None = None
    push: bool | None = None
    cancel_token: CancellationToken | None = None


class SequentialPipelineExecutor:
    """Execute tasks strictly one at a time, merging each into the integration branch."""

    def __init__(
        self,
        vcs: VCSProvider,
        channel: AutomationChannel,
        settings: BranchPilotSettings | None = None,
        resolver: BranchStrategyResolver | None = None,
        naming: BranchNameGenerator | None = None,
        renderer: PromptRenderer | None = None,
        events: EventSink | None = None,
    ) -> None:
        self.vcs = vcs
        self.channel = channel
        self.settings = settings or BranchPilotSettings()
        self.resolver = resolver or BranchStrategyResolver()
        self.naming = naming or BranchNameGenerator()
        self.renderer = renderer or PromptRenderer()
        self.events = EventPublisher(events)

    async def run_sequential(
        self,
        tasks: list[Task],
        options: SequentialOptions | None = None,
    ) -> PipelineRun:
        """Run ``tasks`` in order.

        Returns:
            PipelineRun with exactly one entry per task, in input order
        """
        options = options or SequentialOptions()
        fail_fast = (
            not self.settings.pipeline.continue_on_error if options.fail_fast is None else options.fail_fast
        )
        integration = options.integration_branch or self.settings.git.integration_branch
        push = self.settings.git.push if options.push is None else options.push

        run = PipelineRun()
        pre_created: dict[str, str] = {}
        started = time.monotonic()

        log.info(
            "sequential_run_started",
            tasks=len(tasks),
            integration_branch=integration,
            fail_fast=fail_fast,
        )

        for index, task in enumerate(tasks):
            entry = PipelineTaskResult(task=task, index=index)
            run.entries.append(entry)
            task_started = time.monotonic()

            try:
                if options.cancel_token is not None:
                    options.cancel_token.raise_if_cancelled(phase="sequential", task_id=task.id)
                await self._run_task(entry, tasks, integration, push, pre_created, options)
            except Exception as e:
                entry.error = e
                entry.success = False
                log.error("sequential_task_failed", task_id=task.id, index=index, error=str(e))
                await self.events.publish(
                    SEQUENTIAL_TASK_FAILED,
                    {
                        "task_id": task.id,
                        "index": index,
                        "branch": entry.branch_name,
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "warnings": list(entry.warnings),
                    },
                )
            finally:
                entry.duration = time.monotonic() - task_started

            if entry.error is not None and (fail_fast or isinstance(entry.error, WorkflowCancelled)):
                for skipped_index, skipped_task in enumerate(tasks[index + 1 :], start=index + 1):
                    run.entries.append(
                        PipelineTaskResult(task=skipped_task, index=skipped_index, skipped=True)
                    )
                log.warning("sequential_run_halted", task_id=task.id, skipped=len(tasks) - index - 1)
                break

        run.total_duration = time.monotonic() - started
        log.info("sequential_run_finished", **{k: v for k, v in run.summary().items() if k != "durations"})
        return run

    async def _run_task(
        self,
        entry: PipelineTaskResult,
        tasks: list[Task],
        integration: str,
        push: bool,
        pre_created: dict[str, str],
        options: SequentialOptions,
    ) -> None:
        task = entry.task
        path = self._project_path(task)
        restore_point: str | None = None

        try:
            branch = pre_created.pop(task.id, None)
            if branch is not None:
                await self.vcs.checkout_branch(path, branch)
            else:
                branch = await self.create_task_branch(task, integration, push)
            entry.branch_name = branch
            restore_point = await self.vcs.get_commit_sha(path, integration)

            await self.channel.start_new_session()
            await cancellable_sleep(self.settings.automation.session_settle_delay, options.cancel_token)

            prompt = self.renderer.task_prompt("sequential_task", task, path)
            await self.channel.send_message(prompt, wait_for_response=False)
            entry.response = await self.wait_for_completion(
                task_id=task.id,
                timeout=options.completion_timeout,
                poll_interval=options.poll_interval,
                cancel_token=options.cancel_token,
            )

            entry.merge_result = await self.merge_into_integration(task, branch, integration, push)
        except Exception:
            await self._restore_workspace(entry, path, integration, restore_point)
            raise
        entry.success = True

        if entry.index + 1 < len(tasks):
            next_task = tasks[entry.index + 1]
            try:
                entry.next_branch = await self.create_task_branch(next_task, integration, push)
                pre_created[next_task.id] = entry.next_branch
            except Exception as e:
                # The next iteration creates its own branch.
                log.warning("next_branch_precreate_failed", task_id=next_task.id, error=str(e))

        await self.events.publish(
            SEQUENTIAL_TASK_COMPLETED,
            {
                "task_id": task.id,
                "index": entry.index,
                "branch": branch,
                "integration_branch": integration,
                "next_branch": entry.next_branch,
            },
        )

    async def _restore_workspace(
        self,
        entry: PipelineTaskResult,
        path: str,
        integration: str,
        restore_point: str | None,
    ) -> None:
        """Return the checkout to the integration branch after a failed task.

        Uncommitted edits are discarded and the integration branch is reset
        to where it stood before the task, so the next task starts clean.
        Failures are recorded as warnings on the entry.
        """
        steps = [
            ("discard", lambda: self.vcs.discard_changes(path)),
            ("checkout", lambda: self.vcs.checkout_branch(path, integration)),
        ]
        if restore_point:
            steps.append(("reset", lambda: self.vcs.reset_to_commit(path, restore_point)))

        for operation, action in steps:
            try:
                await action()
            except Exception as e:
                reason = e.message if isinstance(e, BranchPilotError) else str(e)
                entry.warnings.append(f"Workspace {operation} failed: {reason}")
                log.warning(
                    "workspace_restore_failed", task_id=entry.task.id, operation=operation, error=reason
                )
                # Resetting whatever branch is checked out would rewrite the task branch.
                if operation == "checkout":
                    break
        log.info("workspace_restored", task_id=entry.task.id, integration_branch=integration)

    @staticmethod
    def _project_path(task: Task) -> str:
        path = task.project_path
        if not path:
            raise PreconditionError(f"Task {task.id} has no project path")
        return path

    async def create_task_branch(self, task: Task, integration: str, push: bool) -> str:
        """Cut a branch for ``task`` from the integration branch and check it out."""
        path = self._project_path(task)
        strategy = self.resolver.resolve(task.type)

        if not await self.vcs.branch_exists(path, integration):
            await self.vcs.create_branch(path, integration, self.settings.git.default_branch, checkout=False)
            if push:
                await self.vcs.push_changes(path, integration, set_upstream=True)

        branch = self.naming.generate(task, strategy)
        await self.vcs.create_branch(path, branch, integration, checkout=True)
        log.info("sequential_branch_created", task_id=task.id, branch=branch, base=integration)
        return branch

    async def merge_into_integration(
        self,
        task: Task,
        branch: str,
        integration: str,
        push: bool,
    ) -> MergeResult:
        """Commit the task's work and merge its branch into the integration branch."""
        path = self._project_path(task)

        await self.vcs.add_files(path)
        await self.vcs.commit_changes(path, generate_commit_message(task))
        await self.vcs.checkout_branch(path, integration)
        commit_sha = await self.vcs.merge_branch(
            path,
            branch,
            strategy=MergeStrategy.MERGE,
            no_ff=True,
            message=generate_merge_message(task, integration),
        )
        if push:
            await self.vcs.push_changes(path, integration, set_upstream=False)

        log.info("merged_into_integration", task_id=task.id, branch=branch, integration_branch=integration)
        return MergeResult(
            success=True,
            source_branch=branch,
            target_branch=integration,
            strategy=MergeStrategy.MERGE.value,
            commit_sha=commit_sha,
        )

    async def wait_for_completion(
        self,
        task_id: str | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        """Poll the channel until a response contains a completion marker.

        Args:
            task_id: Task being waited on, for errors and logs
            timeout: Deadline in seconds; settings when None
            poll_interval: Seconds between polls; settings when None
            cancel_token: Checked at every poll boundary

        Returns:
            The response that contained the marker

        Raises:
            AutomationTimeout: If no marker is seen before the deadline
            WorkflowCancelled: If cancellation is observed between polls
        """
        automation = self.settings.automation
        timeout = automation.completion_timeout if timeout is None else timeout
        poll_interval = automation.poll_interval if poll_interval is None else poll_interval
        markers = automation.completion_markers
        deadline = time.monotonic() + timeout

        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(phase="completion", task_id=task_id)

            response = await self.channel.poll_response()
            if response and any(marker in response.lower() for marker in markers):
                log.info("task_completion_detected", task_id=task_id)
                return response

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AutomationTimeout(
                    "Task did not signal completion",
                    timeout_seconds=timeout,
                    task_id=task_id,
                )
            await cancellable_sleep(min(poll_interval, remaining), cancel_token)
