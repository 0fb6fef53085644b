"""Tests for branchpilot.engine.validation."""

import subprocess
from unittest.mock import AsyncMock, patch

import pytest

from branchpilot.engine.validation import CommandBuildValidator, extract_failures
from branchpilot.utils.async_subprocess import CommandResult

PYTEST_OUTPUT = """\
============================= short test summary info ==============================
FAILED tests/test_cart.py::test_total - AssertionError: 3 != 4
FAILED tests/test_cart.py::test_discount - KeyError: 'code'
FAILED tests/test_cart.py::test_total - AssertionError: 3 != 4
========================= 2 failed, 10 passed in 0.42s =========================
"""

JEST_OUTPUT = """\
 FAIL  src/cart.test.js
  ● Cart › computes the total
  ● Cart › applies discounts
"""


def failed(command: str, stderr: str = "", stdout: str = "", code: int = 1) -> subprocess.CalledProcessError:
    return subprocess.CalledProcessError(code, command, stdout, stderr)


class TestExtractFailures:
    """Failing test extraction."""

    def test_pytest_output(self):
        assert extract_failures(PYTEST_OUTPUT) == [
            "tests/test_cart.py::test_total",
            "tests/test_cart.py::test_discount",
        ]

    def test_jest_output(self):
        assert extract_failures(JEST_OUTPUT) == ["Cart › computes the total", "Cart › applies discounts"]

    def test_no_failures(self):
        assert extract_failures("All 12 tests passed") == []


class TestValidate:
    """Candidate command fallback."""

    @pytest.mark.asyncio
    async def test_first_passing_command_wins(self):
        validator = CommandBuildValidator(commands=["npm run build", "yarn build"])

        with patch("branchpilot.engine.validation.run_shell_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult("built", "", 0)
            result = await validator.validate("/work/shop")

        assert result.success is True
        assert result.command == "npm run build"
        assert result.output == "built"
        assert mock_run.await_count == 1
        mock_run.assert_awaited_once_with("npm run build", cwd="/work/shop", check=True, timeout=60.0)

    @pytest.mark.asyncio
    async def test_falls_back_to_next_command(self):
        validator = CommandBuildValidator(commands=["npm run build", "yarn build"])

        with patch("branchpilot.engine.validation.run_shell_command", new_callable=AsyncMock) as mock_run:
            mock_run.side_effect = [
                failed("npm run build", stderr="npm: missing script"),
                CommandResult("", "", 0),
            ]
            result = await validator.validate("/work/shop")

        assert result.success is True
        assert result.command == "yarn build"

    @pytest.mark.asyncio
    async def test_all_commands_fail_reports_last_error(self):
        validator = CommandBuildValidator(commands=["npm run build", "yarn build"])

        with patch("branchpilot.engine.validation.run_shell_command", new_callable=AsyncMock) as mock_run:
            mock_run.side_effect = [
                failed("npm run build", stderr="missing script"),
                failed("yarn build", stderr="src/app.ts(3,1): error TS2304\n"),
            ]
            result = await validator.validate("/work/shop")

        assert result.success is False
        assert result.command == "yarn build"
        assert result.error == "src/app.ts(3,1): error TS2304"

    @pytest.mark.asyncio
    async def test_timeout_and_missing_binary_are_failures(self):
        validator = CommandBuildValidator(commands=["make", "ninja"], timeout=1)

        with patch("branchpilot.engine.validation.run_shell_command", new_callable=AsyncMock) as mock_run:
            mock_run.side_effect = [TimeoutError(), OSError("No such file")]
            result = await validator.validate("/work/shop")

        assert result.success is False
        assert result.error == "No such file"

    @pytest.mark.asyncio
    async def test_exit_code_used_when_no_output(self):
        validator = CommandBuildValidator(commands=["make"])

        with patch("branchpilot.engine.validation.run_shell_command", new_callable=AsyncMock) as mock_run:
            mock_run.side_effect = failed("make", code=2)
            result = await validator.validate("/work/shop")

        assert result.error == "exit code 2"

    @pytest.mark.asyncio
    async def test_no_commands(self):
        result = await CommandBuildValidator(commands=[]).validate("/work/shop")

        assert result.success is False
        assert result.command is None
        assert result.error == "No validation commands configured"

    def test_default_commands(self):
        validator = CommandBuildValidator()

        assert validator.commands[0] == "npm run build"
        assert "yarn test" in validator.commands


class TestRunTests:
    """Test suite execution."""

    @pytest.mark.asyncio
    async def test_passing_suite(self):
        validator = CommandBuildValidator(test_command="pytest")

        with patch("branchpilot.engine.validation.run_shell_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult("12 passed", "", 0)
            result = await validator.run_tests("/work/shop")

        assert result.success is True
        assert result.failures == []
        assert mock_run.await_args.kwargs["check"] is False

    @pytest.mark.asyncio
    async def test_failing_suite_reports_failures(self):
        validator = CommandBuildValidator(test_command="pytest")

        with patch("branchpilot.engine.validation.run_shell_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult(PYTEST_OUTPUT, "", 1)
            result = await validator.run_tests("/work/shop")

        assert result.success is False
        assert result.command == "pytest"
        assert len(result.failures) == 2
        assert "2 failed" in result.error

    @pytest.mark.asyncio
    async def test_timeout(self):
        validator = CommandBuildValidator(test_command="pytest", timeout=5)

        with patch("branchpilot.engine.validation.run_shell_command", new_callable=AsyncMock) as mock_run:
            mock_run.side_effect = TimeoutError()
            result = await validator.run_tests("/work/shop")

        assert result.success is False
        assert "timed out" in result.error
