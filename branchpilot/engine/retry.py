"""Retry-with-feedback validation loop.

The loop alternates between applying a change (usually an AI edit) and
validating it. After a failed validation the failure is turned into a
feedback prompt that is handed to the next ``apply_change`` call. The loop
knows nothing about what the callables actually do.

Example:
    >>> loop = RetryValidationLoop(max_attempts=3)
    >>> outcome = await loop.run(
    ...     apply_change=lambda feedback: channel.send_message(feedback or initial_prompt),
    ...     validate=lambda: validator.validate(project_path),
    ...     build_feedback_prompt=renderer.build_error_prompt,
    ... )
    >>> outcome.success, len(outcome.attempts)
    (True, 2)
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from branchpilot.engine.cancellation import CancellationToken
from branchpilot.exceptions import PreconditionError, ValidationFailure
from branchpilot.models.domain import BuildResult, RetryAttempt

log = structlog.get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

ApplyChange = Callable[[str | None], Awaitable[Any]]
Validate = Callable[[], Awaitable[BuildResult]]
BuildFeedbackPrompt = Callable[[BuildResult], str]


@dataclass
class RetryOutcome:
    """Result of a retry loop run."""

    success: bool
    attempts: list[RetryAttempt] = field(default_factory=list)

    @property
    def last_result(self) -> BuildResult | None:
        return self.attempts[-1].build_result if self.attempts else None


class RetryValidationLoop:
    """Bounded apply/validate loop with feedback between attempts."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        if max_attempts <= 0:
            raise PreconditionError(f"max_attempts must be positive, got {max_attempts}")
        self.max_attempts = max_attempts

    async def run(
        self,
        apply_change: ApplyChange,
        validate: Validate,
        build_feedback_prompt: BuildFeedbackPrompt,
        max_attempts: int | None = None,
        cancel_token: CancellationToken | None = None,
        task_id: str | None = None,
    ) -> RetryOutcome:
        """Run the loop until validation passes or the attempt budget is spent.

        Args:
            apply_change: Called with None on the first attempt and with the
                feedback prompt on later attempts. Its return value is kept
                as the attempt's AI response.
            validate: Returns a BuildResult. A raised ValidationFailure
                counts as a failed attempt; other exceptions propagate.
            build_feedback_prompt: Turns a failed BuildResult into a prompt.
            max_attempts: Overrides the loop's bound for this run.
            cancel_token: Checked before every attempt after the first.
            task_id: Used for logging and cancellation errors.

        Returns:
            RetryOutcome with one RetryAttempt per apply/validate iteration

        Raises:
            PreconditionError: If the effective max_attempts is not positive
            WorkflowCancelled: If cancellation is observed between attempts
        """
        bound = self.max_attempts if max_attempts is None else max_attempts
        if bound <= 0:
            raise PreconditionError(f"max_attempts must be positive, got {bound}")

        attempts: list[RetryAttempt] = []
        feedback: str | None = None
        count = 0

        while True:
            if cancel_token is not None and count > 0:
                cancel_token.raise_if_cancelled(phase="retry", task_id=task_id)

            count += 1
            log.debug("retry_attempt_started", task_id=task_id, attempt=count, max_attempts=bound)

            response = await apply_change(feedback)
            result = await self._validate(validate)
            attempt = RetryAttempt(
                attempt_number=count,
                build_result=result,
                ai_response=response if isinstance(response, str) or response is None else str(response),
                feedback_prompt=feedback,
            )
            attempts.append(attempt)

            if result.success:
                log.info("validation_passed", task_id=task_id, attempt=count, command=result.command)
                return RetryOutcome(success=True, attempts=attempts)

            if count >= bound:
                log.warning(
                    "validation_attempts_exhausted",
                    task_id=task_id,
                    attempts=count,
                    error=result.error,
                )
                return RetryOutcome(success=False, attempts=attempts)

            log.info("validation_failed_retrying", task_id=task_id, attempt=count, error=result.error)
            feedback = build_feedback_prompt(result)

    @staticmethod
    async def _validate(validate: Validate) -> BuildResult:
        try:
            return await validate()
        except ValidationFailure as e:
            return BuildResult(
                success=False,
                command=e.command,
                output=e.output or "",
                error=e.message,
            )
