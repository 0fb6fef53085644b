"""
Bounded concurrent execution of independent fixes.

The testing pipeline derives one correction per failing test. Corrections
are independent of each other and never touch branch state, so they are
the one place where the engine runs work concurrently. A semaphore bounds
concurrency (3 by default) and each fix has its own timeout.

Error Handling:
    - A failing or timed-out fix is captured in its FixResult
    - Other fixes keep running
    - Cancellation is checked before a fix acquires a slot

Example:
    >>> executor = ParallelFixExecutor(max_concurrent=3)
    >>> fixes = [FixJob(id=name, func=apply_fix, args=(name,)) for name in failures]
    >>> results = await executor.execute(fixes)
    >>> sum(r.success for r in results)
    4
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from branchpilot.engine.cancellation import CancellationToken
from branchpilot.exceptions import WorkflowCancelled

log = structlog.get_logger(__name__)


@dataclass
class FixJob:
    """One independent fix to apply.

    Attributes:
        id: Identifier used in logs and results (usually the failing test).
        func: Async callable applying the fix.
        args: Positional arguments for the callable.
        kwargs: Keyword arguments for the callable.
        timeout: Seconds allowed for this fix.
    """

    id: str
    func: Callable[..., Any]
    args: tuple = field(default_factory=tuple)
    kwargs: dict = field(default_factory=dict)
    timeout: float = 600.0


@dataclass
class FixResult:
    """Outcome of a single fix."""

    fix_id: str
    success: bool
    result: Any = None
    error: Exception | None = None
    execution_time: float = 0.0


class ParallelFixExecutor:
    """Apply independent fixes with a concurrency limit.

    Attributes:
        max_concurrent: Maximum number of fixes running at once.
        semaphore: Asyncio semaphore enforcing the limit.
    """

    def __init__(self, max_concurrent: int = 3) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.semaphore = asyncio.Semaphore(max_concurrent)

    async def execute(
        self,
        jobs: list[FixJob],
        cancel_token: CancellationToken | None = None,
    ) -> list[FixResult]:
        """Run all jobs, returning results in input order."""
        if not jobs:
            return []

        log.info("fixes_started", total=len(jobs), max_concurrent=self.max_concurrent)
        results = await asyncio.gather(*(self._run(job, cancel_token) for job in jobs))

        succeeded = sum(1 for result in results if result.success)
        log.info("fixes_completed", total=len(jobs), succeeded=succeeded, failed=len(jobs) - succeeded)
        return list(results)

    async def _run(self, job: FixJob, cancel_token: CancellationToken | None) -> FixResult:
        async with self.semaphore:
            if cancel_token is not None and cancel_token.is_cancelled:
                cancelled = WorkflowCancelled("Cancelled before start", phase="apply-fixes")
                return FixResult(fix_id=job.id, success=False, error=cancelled)

            start_time = time.monotonic()
            log.debug("fix_started", fix_id=job.id)
            try:
                result = await asyncio.wait_for(job.func(*job.args, **job.kwargs), timeout=job.timeout)
            except TimeoutError as e:
                log.error("fix_timeout", fix_id=job.id, timeout=job.timeout)
                return FixResult(job.id, False, error=e, execution_time=time.monotonic() - start_time)
            except Exception as e:
                log.error("fix_failed", fix_id=job.id, error=str(e), exc_info=True)
                return FixResult(job.id, False, error=e, execution_time=time.monotonic() - start_time)

            execution_time = time.monotonic() - start_time
            log.info("fix_applied", fix_id=job.id, execution_time=execution_time)
            return FixResult(job.id, True, result=result, execution_time=execution_time)
