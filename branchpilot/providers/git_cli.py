"""VCS provider backed by the ``git`` command line.

Every operation runs ``git`` through :func:`run_command` in the repository
directory. A failed or timed-out command is wrapped in
:class:`BranchOperationError` carrying the operation name, the branch and
the captured stderr.

Branch protection is a hosting-service feature; locally the policy is
recorded in the repository config under ``branch.<name>.protection-*`` so
tooling and hooks can consult it.
"""

import subprocess
from pathlib import Path
from typing import Any

import structlog

from branchpilot.config.settings import BranchPilotSettings
from branchpilot.enums import MergeStrategy
from branchpilot.exceptions import BranchOperationError
from branchpilot.providers.base import PathLike, VCSProvider
from branchpilot.utils.async_subprocess import CommandResult, run_command

log = structlog.get_logger(__name__)


class GitCLIProvider(VCSProvider):
    """VCSProvider implementation over the git binary.

    Args:
        remote: Remote that branches are pushed to
        timeout: Seconds allowed per git command
        git_binary: Executable name or path
    """

    def __init__(self, remote: str = "origin", timeout: float = 60.0, git_binary: str = "git") -> None:
        self.remote = remote
        self.timeout = timeout
        self.git_binary = git_binary

    @classmethod
    def from_settings(cls, settings: BranchPilotSettings) -> "GitCLIProvider":
        """Build a provider from the ``git`` settings section."""
        return cls(remote=settings.git.remote, timeout=settings.git.command_timeout)

    async def _git(
        self,
        path: PathLike,
        *args: str,
        operation: str,
        branch: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        try:
            return await run_command(
                self.git_binary,
                *args,
                cwd=Path(path),
                check=check,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            log.debug("git_command_failed", operation=operation, branch=branch, stderr=stderr)
            raise BranchOperationError(
                f"git {args[0]} failed: {stderr or f'exit code {e.returncode}'}",
                operation=operation,
                branch=branch,
                stderr=stderr,
            ) from e
        except TimeoutError as e:
            raise BranchOperationError(
                f"git {args[0]} timed out after {self.timeout}s",
                operation=operation,
                branch=branch,
            ) from e
        except OSError as e:
            raise BranchOperationError(
                f"Cannot run {self.git_binary}: {e}",
                operation=operation,
                branch=branch,
            ) from e

    async def branch_exists(self, path: PathLike, name: str) -> bool:
        result = await self._git(
            path,
            "rev-parse",
            "--verify",
            "--quiet",
            f"refs/heads/{name}",
            operation="branch_exists",
            branch=name,
            check=False,
        )
        return result.ok

    async def get_current_branch(self, path: PathLike) -> str:
        result = await self._git(path, "rev-parse", "--abbrev-ref", "HEAD", operation="current_branch")
        return result.stdout.strip()

    async def get_commit_sha(self, path: PathLike, ref: str = "HEAD") -> str:
        result = await self._git(path, "rev-parse", "--verify", ref, operation="rev_parse", branch=ref)
        return result.stdout.strip()

    async def create_branch(
        self,
        path: PathLike,
        name: str,
        start_point: str,
        checkout: bool = True,
    ) -> None:
        if checkout:
            await self._git(path, "checkout", "-b", name, start_point, operation="create", branch=name)
        else:
            await self._git(path, "branch", name, start_point, operation="create", branch=name)
        log.info("branch_created", branch=name, start_point=start_point)

    async def checkout_branch(self, path: PathLike, name: str) -> None:
        await self._git(path, "checkout", name, operation="checkout", branch=name)

    async def add_files(self, path: PathLike, files: list[str] | None = None) -> None:
        if files:
            await self._git(path, "add", "--", *files, operation="add")
        else:
            await self._git(path, "add", "-A", operation="add")

    async def _has_staged_changes(self, path: PathLike) -> bool:
        result = await self._git(path, "diff", "--cached", "--quiet", operation="diff", check=False)
        return not result.ok

    async def commit_changes(self, path: PathLike, message: str) -> str | None:
        if not await self._has_staged_changes(path):
            log.info("nothing_to_commit", path=str(path))
            return None
        await self._git(path, "commit", "-m", message, operation="commit")
        return await self.get_commit_sha(path)

    async def push_changes(self, path: PathLike, branch: str, set_upstream: bool = True) -> None:
        args = ["push"]
        if set_upstream:
            args.append("--set-upstream")
        args.extend([self.remote, branch])
        await self._git(path, *args, operation="push", branch=branch)
        log.info("branch_pushed", branch=branch, remote=self.remote)

    async def merge_branch(
        self,
        path: PathLike,
        name: str,
        strategy: MergeStrategy = MergeStrategy.SQUASH,
        no_ff: bool = False,
        message: str | None = None,
    ) -> str | None:
        strategy = MergeStrategy(strategy)
        message = message or f"Merge branch '{name}'"

        if strategy == MergeStrategy.SQUASH:
            await self._git(path, "merge", "--squash", name, operation="merge", branch=name)
            # A squash merge only stages the result.
            return await self.commit_changes(path, message)

        if strategy == MergeStrategy.REBASE:
            current = await self.get_current_branch(path)
            await self._git(path, "rebase", current, name, operation="rebase", branch=name)
            await self._git(path, "checkout", current, operation="checkout", branch=current)
            await self._git(path, "merge", "--ff-only", name, operation="merge", branch=name)
            return await self.get_commit_sha(path)

        args = ["merge"]
        if no_ff:
            args.append("--no-ff")
        args.extend(["-m", message, name])
        await self._git(path, *args, operation="merge", branch=name)
        return await self.get_commit_sha(path)

    async def delete_branch(self, path: PathLike, name: str, force: bool = False) -> None:
        # Squash-merged branches are never "fully merged" in git's eyes.
        await self._git(path, "branch", "-D" if force else "-d", name, operation="delete", branch=name)

    async def reset_to_commit(self, path: PathLike, sha: str, hard: bool = True) -> None:
        await self._git(path, "reset", "--hard" if hard else "--mixed", sha, operation="reset")

    async def discard_changes(self, path: PathLike) -> None:
        # reset --hard also clears MERGE_HEAD left by a conflicted merge.
        await self._git(path, "reset", "--hard", "HEAD", operation="discard")
        await self._git(path, "clean", "-fd", operation="discard")
        log.info("working_tree_discarded", path=str(path))

    async def set_branch_protection(self, path: PathLike, name: str, policy: dict[str, Any]) -> None:
        for key, value in policy.items():
            config_key = f"branch.{name}.protection-{key.replace('_', '-')}"
            if isinstance(value, bool):
                value = "true" if value else "false"
            await self._git(path, "config", config_key, str(value), operation="protect", branch=name)
        log.debug("branch_protection_recorded", branch=name, level=policy.get("level"))
