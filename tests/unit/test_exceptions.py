"""Tests for the exception hierarchy."""

import pytest

from branchpilot.exceptions import (
    AutomationError,
    AutomationTimeout,
    BranchOperationError,
    BranchPilotError,
    ConfigurationError,
    PreconditionError,
    RollbackFailure,
    StepFailedError,
    TemplateError,
    ValidationFailure,
    WorkflowCancelled,
    WorkflowError,
)


@pytest.mark.parametrize(
    "exc_class",
    [
        ConfigurationError,
        PreconditionError,
        BranchOperationError,
        ValidationFailure,
        AutomationError,
        AutomationTimeout,
        RollbackFailure,
        TemplateError,
        WorkflowError,
        StepFailedError,
        WorkflowCancelled,
    ],
)
def test_all_errors_share_a_base(exc_class):
    error = exc_class("something went wrong")

    assert isinstance(error, BranchPilotError)
    assert error.message == "something went wrong"


class TestContextualMessages:
    """str() carries context; .message keeps the original text."""

    def test_branch_operation_error(self):
        error = BranchOperationError("merge failed", operation="merge", branch="fix/x", stderr="CONFLICT")

        assert str(error) == "merge failed (operation: merge, branch: fix/x)"
        assert error.message == "merge failed"
        assert error.stderr == "CONFLICT"

    def test_branch_operation_error_without_context(self):
        assert str(BranchOperationError("failed")) == "failed"

    def test_workflow_error(self):
        error = StepFailedError("Step validate failed", task_id="42", phase="validate")

        assert str(error) == "Step validate failed (task: 42, phase: validate)"
        assert isinstance(error, WorkflowError)

    def test_automation_timeout(self):
        error = AutomationTimeout("Task did not signal completion", timeout_seconds=300, task_id="7")

        assert str(error) == "Task did not signal completion (timeout: 300s) (task: 7)"
        assert isinstance(error, AutomationError)
        assert error.timeout_seconds == 300

    def test_validation_failure_fields(self):
        error = ValidationFailure("build broke", command="npm run build", output="TS2304")

        assert error.command == "npm run build"
        assert error.output == "TS2304"
