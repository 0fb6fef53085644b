"""Custom exception hierarchy for the branchpilot workflow engine.

This module defines a structured exception hierarchy that separates fatal
precondition problems from branch-operation failures, retryable validation
failures, automation timeouts and rollback problems.

Exception Hierarchy:
    BranchPilotError (base)
    ├── ConfigurationError
    ├── PreconditionError
    ├── BranchOperationError
    ├── ValidationFailure
    ├── AutomationError
    │   └── AutomationTimeout
    ├── RollbackFailure
    ├── TemplateError
    └── WorkflowError
        ├── StepFailedError
        └── WorkflowCancelled

Propagation Policy:
    - PreconditionError: fatal, never retried, raised to the caller.
    - BranchOperationError: fatal for the task; triggers rollback when the
      task branch already exists.
    - ValidationFailure: absorbed by the retry loop until the attempt budget
      is exhausted.
    - AutomationTimeout: fatal for one task of a sequential run; the batch
      continues unless fail-fast is requested.
    - RollbackFailure: recorded as a warning, never replaces the original error.

Example Usage:
    >>> from branchpilot.exceptions import BranchOperationError
    >>> try:
    ...     await vcs.create_branch(path, name, start_point="main")
    ... except subprocess.CalledProcessError as e:
    ...     raise BranchOperationError("Branch creation failed", operation="create", branch=name) from e
"""


class BranchPilotError(Exception):
    """Base exception for all branchpilot errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(BranchPilotError):
    """Configuration file is missing, unreadable or invalid."""

    pass


class PreconditionError(BranchPilotError):
    """A required precondition for running a workflow does not hold.

    Raised for a task without a resolvable project path, an invalid
    ``max_attempts`` value, or a task type that cannot be resolved because
    no default strategy is configured. Never retried.
    """

    pass


class BranchOperationError(BranchPilotError):
    """A version-control operation failed.

    Attributes:
        operation: Name of the failed operation (create, checkout, push, ...)
        branch: Branch the operation targeted, if any
        stderr: Captured stderr of the underlying command, if any
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        branch: str | None = None,
        stderr: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            operation: Name of the failed VCS operation
            branch: Branch involved in the operation
            stderr: Command error output
        """
        self.operation = operation
        self.branch = branch
        self.stderr = stderr

        parts = []
        if operation:
            parts.append(f"operation: {operation}")
        if branch:
            parts.append(f"branch: {branch}")

        full_message = f"{message} ({', '.join(parts)})" if parts else message
        super().__init__(full_message)
        # Preserve original message
        self.message = message


class ValidationFailure(BranchPilotError):
    """Build or test validation did not pass.

    Attributes:
        command: The last validation command that was attempted
        output: Output captured from the failing command
    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        output: str | None = None,
    ) -> None:
        self.command = command
        self.output = output
        super().__init__(message)


class AutomationError(BranchPilotError):
    """The AI automation channel failed to process a prompt.

    Attributes:
        task_id: Task being executed when the error occurred
    """

    def __init__(self, message: str, task_id: str | None = None) -> None:
        self.task_id = task_id
        full_message = f"{message} (task: {task_id})" if task_id else message
        super().__init__(full_message)
        self.message = message


class AutomationTimeout(AutomationError):
    """A completion signal or response was not observed within its bound.

    Attributes:
        timeout_seconds: The bound that was exceeded
    """

    def __init__(
        self,
        message: str,
        timeout_seconds: float | None = None,
        task_id: str | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        if timeout_seconds is not None and "timeout" not in message.lower():
            message = f"{message} (timeout: {timeout_seconds}s)"
        super().__init__(message, task_id=task_id)


class RollbackFailure(BranchPilotError):
    """A reset, checkout or delete failed while rolling back a workflow.

    Attributes:
        operation: Rollback operation that failed
        branch: Branch involved
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        branch: str | None = None,
    ) -> None:
        self.operation = operation
        self.branch = branch
        super().__init__(message)


class TemplateError(BranchPilotError):
    """Prompt template lookup or rendering failed."""

    pass


class WorkflowError(BranchPilotError):
    """Workflow execution errors.

    Attributes:
        task_id: Identifier of the affected task
        phase: Workflow phase where the failure occurred
    """

    def __init__(
        self,
        message: str,
        task_id: str | None = None,
        phase: str | None = None,
    ) -> None:
        self.task_id = task_id
        self.phase = phase

        parts = []
        if task_id:
            parts.append(f"task: {task_id}")
        if phase:
            parts.append(f"phase: {phase}")

        full_message = f"{message} ({', '.join(parts)})" if parts else message
        super().__init__(full_message)
        self.message = message


class StepFailedError(WorkflowError):
    """A pipeline step reported failure without raising its own error."""

    pass


class WorkflowCancelled(WorkflowError):
    """A running workflow was cancelled at a step, attempt or poll boundary."""

    pass
