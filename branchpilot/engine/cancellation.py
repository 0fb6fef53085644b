"""Cooperative cancellation for running workflows.

A :class:`CancellationToken` is shared between the caller and a running
workflow. The engine checks it only at boundaries: between pipeline steps,
between retry attempts and between completion polls. A step that is
already running is allowed to finish.
"""

import asyncio
import contextlib

from branchpilot.exceptions import WorkflowCancelled


class CancellationToken:
    """Signal that a workflow should stop at its next boundary."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Only the first reason is kept."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self, phase: str | None = None, task_id: str | None = None) -> None:
        """Raise WorkflowCancelled when cancellation has been requested."""
        if self._event.is_set():
            message = "Workflow cancelled"
            if self.reason:
                message = f"{message}: {self.reason}"
            raise WorkflowCancelled(message, task_id=task_id, phase=phase)

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early on cancellation.

        Returns:
            True if the sleep was cut short by cancellation
        """
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        return self._event.is_set()


async def cancellable_sleep(seconds: float, token: CancellationToken | None = None) -> None:
    """Sleep that returns early when ``token`` is cancelled."""
    if token is None:
        await asyncio.sleep(seconds)
    else:
        await token.sleep(seconds)
