"""Tests for cooperative cancellation."""

import asyncio
import time

import pytest

from branchpilot.engine.cancellation import CancellationToken, cancellable_sleep
from branchpilot.exceptions import WorkflowCancelled


class TestCancellationToken:
    """CancellationToken behavior."""

    def test_initial_state(self):
        token = CancellationToken()

        assert token.is_cancelled is False
        token.raise_if_cancelled()

    def test_cancel_keeps_first_reason(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")

        assert token.is_cancelled
        assert token.reason == "first"

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.cancel("shutdown")

        with pytest.raises(WorkflowCancelled) as exc_info:
            token.raise_if_cancelled(phase="validate", task_id="42")

        assert exc_info.value.phase == "validate"
        assert exc_info.value.task_id == "42"
        assert "shutdown" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_sleep_wakes_on_cancel(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        started = time.monotonic()
        interrupted = await token.sleep(5)

        assert interrupted is True
        assert time.monotonic() - started < 1

    @pytest.mark.asyncio
    async def test_sleep_runs_to_completion(self):
        token = CancellationToken()

        assert await token.sleep(0.01) is False

    @pytest.mark.asyncio
    async def test_cancellable_sleep_without_token(self):
        await cancellable_sleep(0)
