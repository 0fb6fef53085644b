"""Build and test validation.

:class:`CommandBuildValidator` tries an ordered list of candidate commands
(``npm run build``, ``yarn build``, ...) in the project directory. The first
command that exits successfully wins. When none succeeds the result carries
the last observed error, which becomes the feedback for the next AI attempt.
"""

import re
import subprocess
import time
from pathlib import Path

import structlog

from branchpilot.config.settings import DEFAULT_VALIDATION_COMMANDS, BranchPilotSettings
from branchpilot.models.domain import BuildResult
from branchpilot.providers.base import BuildValidator
from branchpilot.utils.async_subprocess import run_shell_command

log = structlog.get_logger(__name__)

# pytest: "FAILED tests/test_x.py::test_name - AssertionError"
_PYTEST_FAILED = re.compile(r"^FAILED\s+(\S+)", re.MULTILINE)
# jest: "  ● Suite name › test name"
_JEST_FAILED = re.compile(r"^\s*●\s+(.+?)\s*$", re.MULTILINE)

MAX_ERROR_LENGTH = 4000


def extract_failures(output: str) -> list[str]:
    """Pull failing test identifiers out of pytest or jest output.

    Duplicates are dropped while preserving first-seen order.
    """
    found = _PYTEST_FAILED.findall(output) + _JEST_FAILED.findall(output)
    return list(dict.fromkeys(found))


class CommandBuildValidator(BuildValidator):
    """Validate a project by running build/test commands.

    Args:
        commands: Candidate commands in priority order
        test_command: Command run by :meth:`run_tests`
        timeout: Seconds allowed per command
    """

    def __init__(
        self,
        commands: list[str] | None = None,
        test_command: str = "npm test",
        timeout: float = 60.0,
    ) -> None:
        self.commands = list(commands) if commands is not None else list(DEFAULT_VALIDATION_COMMANDS)
        self.test_command = test_command
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: BranchPilotSettings) -> "CommandBuildValidator":
        """Build a validator from the ``validation`` settings section."""
        validation = settings.validation
        return cls(
            commands=validation.commands,
            test_command=validation.test_command,
            timeout=validation.command_timeout,
        )

    async def validate(self, project_path: str | Path) -> BuildResult:
        """Run candidate commands until one passes."""
        started = time.monotonic()
        last_command: str | None = None
        last_error: str | None = "No validation commands configured"
        last_output = ""

        for command in self.commands:
            last_command = command
            log.debug("validation_command_started", command=command, project_path=str(project_path))
            try:
                result = await run_shell_command(
                    command, cwd=project_path, check=True, timeout=self.timeout
                )
            except subprocess.CalledProcessError as e:
                last_output = e.stdout or ""
                last_error = (e.stderr or e.stdout or f"exit code {e.returncode}").strip()
                log.debug("validation_command_failed", command=command, returncode=e.returncode)
                continue
            except TimeoutError:
                last_output = ""
                last_error = f"Command timed out after {self.timeout}s"
                log.warning("validation_command_timeout", command=command, timeout=self.timeout)
                continue
            except OSError as e:
                last_output = ""
                last_error = str(e)
                log.debug("validation_command_unavailable", command=command, error=str(e))
                continue

            log.info("validation_command_passed", command=command)
            return BuildResult(
                success=True,
                command=command,
                output=result.stdout,
                duration=time.monotonic() - started,
            )

        return BuildResult(
            success=False,
            command=last_command,
            output=last_output,
            error=(last_error or "")[-MAX_ERROR_LENGTH:],
            failures=extract_failures(last_output),
            duration=time.monotonic() - started,
        )

    async def run_tests(self, project_path: str | Path) -> BuildResult:
        """Run the test command and report failing tests.

        A failing test run is reported in the result, never raised.
        """
        started = time.monotonic()
        try:
            result = await run_shell_command(
                self.test_command, cwd=project_path, check=False, timeout=self.timeout
            )
        except TimeoutError:
            return BuildResult(
                success=False,
                command=self.test_command,
                error=f"Command timed out after {self.timeout}s",
                duration=time.monotonic() - started,
            )

        output = result.combined_output
        failures = extract_failures(output)
        log.info(
            "tests_completed",
            command=self.test_command,
            returncode=result.returncode,
            failures=len(failures),
        )
        return BuildResult(
            success=result.ok,
            command=self.test_command,
            output=output,
            error=None if result.ok else (result.stderr or result.stdout).strip()[-MAX_ERROR_LENGTH:],
            failures=failures,
            duration=time.monotonic() - started,
        )
