"""Async subprocess helpers.

The git provider, the build validator and the agent channel all shell out.
These helpers run the child process without blocking the event loop, bound
it with a timeout and decode its output.

Two entry points:
    - run_command: argument vector, no shell (git, agent CLI)
    - run_shell_command: a command string through the shell (build scripts)

Both return a :class:`CommandResult`, which unpacks like the
``(stdout, stderr, returncode)`` tuple it is.

Example:
    >>> from branchpilot.utils.async_subprocess import run_command
    >>> stdout, stderr, code = await run_command("git", "status", cwd="/repo")
    >>> result = await run_shell_command("npm run build", cwd="/repo", check=False)
    >>> result.ok
    True
"""

import asyncio
import contextlib
import os
import signal
import subprocess
from pathlib import Path
from typing import NamedTuple


class CommandResult(NamedTuple):
    """Decoded output and exit status of a finished command."""

    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def combined_output(self) -> str:
        """stdout and stderr joined, skipping empty streams."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    # Children run in their own session; kill the whole group so that
    # grandchildren (agent tool calls, build steps) go down with them.
    with contextlib.suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGKILL)


async def _communicate(
    process: asyncio.subprocess.Process,
    input_text: str | None,
    timeout: float | None,
) -> tuple[str, str]:
    payload = input_text.encode("utf-8") if input_text is not None else None
    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(payload),
            timeout=timeout,
        )
    except (TimeoutError, asyncio.CancelledError):
        # The child must not outlive its bound or its caller.
        _kill(process)
        await process.wait()
        raise

    return (
        (stdout_bytes or b"").decode("utf-8", errors="replace"),
        (stderr_bytes or b"").decode("utf-8", errors="replace"),
    )


async def run_command(
    *args: str,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
    input_text: str | None = None,
) -> CommandResult:
    """Run a command asynchronously without shell interpolation.

    Args:
        *args: Executable followed by its arguments, e.g. ``"git", "checkout", "main"``.
        cwd: Working directory; the parent's when None.
        check: Raise CalledProcessError on a non-zero exit code.
        timeout: Seconds to wait before the process is killed. None waits forever.
        input_text: Text written to the child's stdin.

    Returns:
        CommandResult with decoded stdout, stderr and the exit code.

    Raises:
        subprocess.CalledProcessError: If check is True and the command fails.
        TimeoutError: If the timeout is exceeded. The process is killed first.
        FileNotFoundError: If the executable does not exist.
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdin=asyncio.subprocess.PIPE if input_text is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=True,
    )
    stdout, stderr = await _communicate(process, input_text, timeout)
    returncode = process.returncode or 0

    if check and returncode != 0:
        raise subprocess.CalledProcessError(returncode, list(args), stdout, stderr)

    return CommandResult(stdout, stderr, returncode)


async def run_shell_command(
    command: str,
    *,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
) -> CommandResult:
    """Run a shell command string asynchronously.

    Used for configured build/test commands such as ``npm run build``, which
    may rely on shell features.

    Args:
        command: Command string passed to the system shell.
        cwd: Working directory; the parent's when None.
        check: Raise CalledProcessError on a non-zero exit code.
        timeout: Seconds to wait before the process is killed.

    Returns:
        CommandResult with decoded stdout, stderr and the exit code.

    Raises:
        subprocess.CalledProcessError: If check is True and the command fails.
        TimeoutError: If the timeout is exceeded.
    """
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=True,
    )
    stdout, stderr = await _communicate(process, None, timeout)
    returncode = process.returncode or 0

    if check and returncode != 0:
        raise subprocess.CalledProcessError(returncode, command, stdout, stderr)

    return CommandResult(stdout, stderr, returncode)
