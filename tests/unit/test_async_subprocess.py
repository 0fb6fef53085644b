"""Tests for branchpilot.utils.async_subprocess module."""

import asyncio
import subprocess
import time
from pathlib import Path

import pytest

from branchpilot.utils.async_subprocess import CommandResult, run_command, run_shell_command


class TestRunCommand:
    """Argument-vector commands."""

    @pytest.mark.asyncio
    async def test_run_simple_command(self):
        """Test running a simple command that succeeds."""
        stdout, stderr, returncode = await run_command("echo", "hello")

        assert stdout.strip() == "hello"
        assert stderr == ""
        assert returncode == 0

    @pytest.mark.asyncio
    async def test_result_properties(self):
        result = await run_command("bash", "-c", "echo out; echo err >&2")

        assert result.ok
        assert result.combined_output == "out\nerr"

    @pytest.mark.asyncio
    async def test_cwd(self):
        result = await run_command("pwd", cwd=Path("/tmp"))

        assert result.stdout.strip() == "/tmp"

    @pytest.mark.asyncio
    async def test_input_text_goes_to_stdin(self):
        result = await run_command("cat", input_text="prompt text")

        assert result.stdout == "prompt text"

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_when_checked(self):
        """Test CalledProcessError carries the command and stderr."""
        with pytest.raises(subprocess.CalledProcessError) as exc_info:
            await run_command("bash", "-c", "echo broken >&2; exit 3")

        assert exc_info.value.returncode == 3
        assert exc_info.value.cmd == ["bash", "-c", "echo broken >&2; exit 3"]
        assert exc_info.value.stderr.strip() == "broken"

    @pytest.mark.asyncio
    async def test_non_zero_exit_without_check(self):
        result = await run_command("false", check=False)

        assert not result.ok

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        """Test the process is killed when the timeout expires."""
        started = time.monotonic()

        with pytest.raises(TimeoutError):
            await run_command("sleep", "5", timeout=0.1)

        assert time.monotonic() - started < 2

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        with pytest.raises(FileNotFoundError):
            await run_command("definitely-not-a-real-binary-7f3a")


class TestRunShellCommand:
    """Shell command strings."""

    @pytest.mark.asyncio
    async def test_shell_features(self):
        result = await run_shell_command("echo one && echo two")

        assert result.stdout.split() == ["one", "two"]

    @pytest.mark.asyncio
    async def test_failure_raises(self):
        with pytest.raises(subprocess.CalledProcessError) as exc_info:
            await run_shell_command("exit 2")

        assert exc_info.value.cmd == "exit 2"

    @pytest.mark.asyncio
    async def test_failure_without_check(self):
        result = await run_shell_command("echo nope >&2; exit 1", check=False)

        assert result == CommandResult("", "nope\n", 1)


class TestCancellation:
    """Children of a cancelled call are killed with it."""

    @pytest.mark.asyncio
    async def test_cancelled_command_leaves_no_background_work(self, tmp_path):
        marker = tmp_path / "late_edit"
        script = f"(sleep 1; echo edit > {marker}) & sleep 1; echo edit > {marker}"
        task = asyncio.create_task(run_command("sh", "-c", script))
        await asyncio.sleep(0.2)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(1.3)

        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_timeout_kills_grandchildren(self, tmp_path):
        marker = tmp_path / "late_edit"

        with pytest.raises(TimeoutError):
            await run_shell_command(f"(sleep 1; echo edit > {marker}) & wait", timeout=0.2)
        await asyncio.sleep(1.3)

        assert not marker.exists()
