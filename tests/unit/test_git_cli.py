"""Tests for the git command-line VCS provider."""

import subprocess
from pathlib import Path
from unittest.mock import AsyncMock, call, patch

import pytest

from branchpilot.enums import MergeStrategy
from branchpilot.exceptions import BranchOperationError
from branchpilot.providers.git_cli import GitCLIProvider
from branchpilot.utils.async_subprocess import CommandResult

REPO = "/work/shop"


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(stdout, "", 0)


def exit_code(code: int) -> CommandResult:
    return CommandResult("", "", code)


@pytest.fixture
def provider() -> GitCLIProvider:
    return GitCLIProvider(timeout=10)


@pytest.fixture
def mock_run():
    with patch("branchpilot.providers.git_cli.run_command", new_callable=AsyncMock) as mock:
        mock.return_value = ok()
        yield mock


def git_args(mock_run) -> list[tuple[str, ...]]:
    """Arguments after the git binary for every call."""
    return [c.args[1:] for c in mock_run.await_args_list]


class TestQueries:
    """Branch and ref queries."""

    @pytest.mark.asyncio
    async def test_branch_exists(self, provider, mock_run):
        assert await provider.branch_exists(REPO, "develop") is True

        mock_run.assert_awaited_once_with(
            "git",
            "rev-parse",
            "--verify",
            "--quiet",
            "refs/heads/develop",
            cwd=Path(REPO),
            check=False,
            timeout=10,
        )

    @pytest.mark.asyncio
    async def test_branch_missing(self, provider, mock_run):
        mock_run.return_value = exit_code(1)

        assert await provider.branch_exists(REPO, "develop") is False

    @pytest.mark.asyncio
    async def test_current_branch_and_sha(self, provider, mock_run):
        mock_run.side_effect = [ok("feature/x\n"), ok("0123abcd\n")]

        assert await provider.get_current_branch(REPO) == "feature/x"
        assert await provider.get_commit_sha(REPO, "main") == "0123abcd"
        assert git_args(mock_run)[1] == ("rev-parse", "--verify", "main")


class TestBranchOperations:
    """Create, checkout, delete, reset."""

    @pytest.mark.asyncio
    async def test_create_and_checkout(self, provider, mock_run):
        await provider.create_branch(REPO, "fix/crash-7-1", "main")

        assert git_args(mock_run) == [("checkout", "-b", "fix/crash-7-1", "main")]

    @pytest.mark.asyncio
    async def test_create_without_checkout(self, provider, mock_run):
        await provider.create_branch(REPO, "agent", "main", checkout=False)

        assert git_args(mock_run) == [("branch", "agent", "main")]

    @pytest.mark.asyncio
    async def test_delete(self, provider, mock_run):
        await provider.delete_branch(REPO, "old")
        await provider.delete_branch(REPO, "squashed", force=True)

        assert git_args(mock_run) == [("branch", "-d", "old"), ("branch", "-D", "squashed")]

    @pytest.mark.asyncio
    async def test_reset(self, provider, mock_run):
        await provider.reset_to_commit(REPO, "abc123")
        await provider.reset_to_commit(REPO, "abc123", hard=False)

        assert git_args(mock_run) == [("reset", "--hard", "abc123"), ("reset", "--mixed", "abc123")]

    @pytest.mark.asyncio
    async def test_discard_changes(self, provider, mock_run):
        await provider.discard_changes(REPO)

        assert git_args(mock_run) == [("reset", "--hard", "HEAD"), ("clean", "-fd")]

    @pytest.mark.asyncio
    async def test_failure_is_wrapped(self, provider, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(
            128, ["git", "checkout"], "", "fatal: a branch named 'x' already exists\n"
        )

        with pytest.raises(BranchOperationError) as exc_info:
            await provider.create_branch(REPO, "x", "main")

        error = exc_info.value
        assert error.operation == "create"
        assert error.branch == "x"
        assert error.stderr == "fatal: a branch named 'x' already exists"
        assert isinstance(error.__cause__, subprocess.CalledProcessError)

    @pytest.mark.asyncio
    async def test_timeout_is_wrapped(self, provider, mock_run):
        mock_run.side_effect = TimeoutError()

        with pytest.raises(BranchOperationError, match="timed out"):
            await provider.checkout_branch(REPO, "main")

    @pytest.mark.asyncio
    async def test_missing_binary_is_wrapped(self, mock_run):
        mock_run.side_effect = FileNotFoundError("git")

        with pytest.raises(BranchOperationError, match="Cannot run"):
            await GitCLIProvider(git_binary="/opt/git").checkout_branch(REPO, "main")


class TestCommitAndPush:
    """Staging, committing and pushing."""

    @pytest.mark.asyncio
    async def test_add_all(self, provider, mock_run):
        await provider.add_files(REPO)
        await provider.add_files(REPO, ["a.py", "b.py"])

        assert git_args(mock_run) == [("add", "-A"), ("add", "--", "a.py", "b.py")]

    @pytest.mark.asyncio
    async def test_commit_with_staged_changes(self, provider, mock_run):
        mock_run.side_effect = [exit_code(1), ok(), ok("def456\n")]

        sha = await provider.commit_changes(REPO, "refactor: split")

        assert sha == "def456"
        assert git_args(mock_run)[1] == ("commit", "-m", "refactor: split")

    @pytest.mark.asyncio
    async def test_nothing_to_commit(self, provider, mock_run):
        mock_run.return_value = exit_code(0)

        assert await provider.commit_changes(REPO, "msg") is None
        assert git_args(mock_run) == [("diff", "--cached", "--quiet")]

    @pytest.mark.asyncio
    async def test_push(self, provider, mock_run):
        await provider.push_changes(REPO, "feature/x")
        await provider.push_changes(REPO, "main", set_upstream=False)

        assert git_args(mock_run) == [
            ("push", "--set-upstream", "origin", "feature/x"),
            ("push", "origin", "main"),
        ]


class TestMerge:
    """Merge strategies."""

    @pytest.mark.asyncio
    async def test_squash_merge_commits(self, provider, mock_run):
        mock_run.side_effect = [ok(), exit_code(1), ok(), ok("fed789\n")]

        sha = await provider.merge_branch(REPO, "feature/x", message="Merge task 1")

        assert sha == "fed789"
        assert git_args(mock_run)[:3] == [
            ("merge", "--squash", "feature/x"),
            ("diff", "--cached", "--quiet"),
            ("commit", "-m", "Merge task 1"),
        ]

    @pytest.mark.asyncio
    async def test_no_ff_merge(self, provider, mock_run):
        mock_run.side_effect = [ok(), ok("fed789\n")]

        sha = await provider.merge_branch(
            REPO, "feature/x", strategy=MergeStrategy.MERGE, no_ff=True, message="Merge it"
        )

        assert sha == "fed789"
        assert git_args(mock_run)[0] == ("merge", "--no-ff", "-m", "Merge it", "feature/x")

    @pytest.mark.asyncio
    async def test_rebase_merge(self, provider, mock_run):
        mock_run.side_effect = [ok("main\n"), ok(), ok(), ok(), ok("fed789\n")]

        await provider.merge_branch(REPO, "feature/x", strategy="rebase")

        assert git_args(mock_run)[1:4] == [
            ("rebase", "main", "feature/x"),
            ("checkout", "main"),
            ("merge", "--ff-only", "feature/x"),
        ]

    @pytest.mark.asyncio
    async def test_conflict_raises(self, provider, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(1, ["git"], "", "CONFLICT (content)")

        with pytest.raises(BranchOperationError) as exc_info:
            await provider.merge_branch(REPO, "feature/x", strategy=MergeStrategy.MERGE)

        assert exc_info.value.operation == "merge"


class TestProtection:
    """Protection policy recorded in git config."""

    @pytest.mark.asyncio
    async def test_policy_written_to_config(self, provider, mock_run):
        policy = {"level": "high", "allow_force_push": False, "required_approvals": 1}

        await provider.set_branch_protection(REPO, "fix/x", policy)

        assert mock_run.await_args_list == [
            call(
                "git",
                "config",
                "branch.fix/x.protection-level",
                "high",
                cwd=Path(REPO),
                check=True,
                timeout=10,
            ),
            call(
                "git",
                "config",
                "branch.fix/x.protection-allow-force-push",
                "false",
                cwd=Path(REPO),
                check=True,
                timeout=10,
            ),
            call(
                "git",
                "config",
                "branch.fix/x.protection-required-approvals",
                "1",
                cwd=Path(REPO),
                check=True,
                timeout=10,
            ),
        ]
