"""
Abstract base classes for providers.

This module defines the interfaces the workflow engine depends on: version
control operations, the AI automation channel and build validation. The
engine only talks to these abstractions; concrete adapters (the git CLI, an
agent CLI, shell build commands) live alongside in this package.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from branchpilot.enums import MergeStrategy
from branchpilot.models.domain import BuildResult

PathLike = str | Path


class VCSProvider(ABC):
    """Abstract base class for version control operations.

    Every method takes the repository path explicitly so a single provider
    instance can serve several projects. Implementations raise
    :class:`~branchpilot.exceptions.BranchOperationError` on failure; they
    never return error codes.

    All methods are async so command execution does not block the event loop.
    """

    @abstractmethod
    async def branch_exists(self, path: PathLike, name: str) -> bool:
        """Check whether a local branch exists.

        Args:
            path: Repository root
            name: Branch name without ``refs/heads/``

        Returns:
            True if the branch exists locally
        """
        pass

    @abstractmethod
    async def get_current_branch(self, path: PathLike) -> str:
        """Name of the checked-out branch."""
        pass

    @abstractmethod
    async def get_commit_sha(self, path: PathLike, ref: str = "HEAD") -> str:
        """Resolve ``ref`` to a full commit SHA.

        Raises:
            BranchOperationError: If the ref does not exist
        """
        pass

    @abstractmethod
    async def create_branch(
        self,
        path: PathLike,
        name: str,
        start_point: str,
        checkout: bool = True,
    ) -> None:
        """Create ``name`` from ``start_point``.

        Args:
            path: Repository root
            name: New branch name
            start_point: Branch or commit the new branch starts at
            checkout: Check the new branch out after creating it

        Raises:
            BranchOperationError: If the branch exists or the start point is missing
        """
        pass

    @abstractmethod
    async def checkout_branch(self, path: PathLike, name: str) -> None:
        """Check out an existing branch."""
        pass

    @abstractmethod
    async def add_files(self, path: PathLike, files: list[str] | None = None) -> None:
        """Stage ``files``, or every change when None."""
        pass

    @abstractmethod
    async def commit_changes(self, path: PathLike, message: str) -> str | None:
        """Commit staged changes.

        Returns:
            SHA of the new commit, or None when there was nothing to commit
        """
        pass

    @abstractmethod
    async def push_changes(self, path: PathLike, branch: str, set_upstream: bool = True) -> None:
        """Push ``branch`` to the configured remote."""
        pass

    @abstractmethod
    async def merge_branch(
        self,
        path: PathLike,
        name: str,
        strategy: MergeStrategy = MergeStrategy.SQUASH,
        no_ff: bool = False,
        message: str | None = None,
    ) -> str | None:
        """Merge ``name`` into the checked-out branch.

        Args:
            path: Repository root
            name: Branch to merge
            strategy: squash, merge or rebase
            no_ff: Always create a merge commit (merge strategy only)
            message: Commit message for the merge or squash commit

        Returns:
            SHA of the resulting HEAD, or None if nothing changed

        Raises:
            BranchOperationError: On conflicts or other merge failures
        """
        pass

    @abstractmethod
    async def delete_branch(self, path: PathLike, name: str, force: bool = False) -> None:
        """Delete a local branch."""
        pass

    @abstractmethod
    async def reset_to_commit(self, path: PathLike, sha: str, hard: bool = True) -> None:
        """Reset the checked-out branch to ``sha``."""
        pass

    @abstractmethod
    async def discard_changes(self, path: PathLike) -> None:
        """Drop uncommitted edits, staged changes and untracked files.

        Also abandons an in-progress merge. Ignored files are kept.
        """
        pass

    @abstractmethod
    async def set_branch_protection(self, path: PathLike, name: str, policy: dict[str, Any]) -> None:
        """Apply a protection policy to a branch.

        Args:
            path: Repository root
            name: Branch to protect
            policy: Output of :func:`branchpilot.engine.strategy.protection_policy`
        """
        pass


class AutomationChannel(ABC):
    """Abstract base class for the AI automation channel.

    A channel delivers prompts to an AI assistant that edits the working
    tree and returns its textual response. Conversations are grouped in
    sessions: :meth:`start_new_session` discards prior context.
    """

    @abstractmethod
    async def start_new_session(self) -> None:
        """Begin a fresh conversation."""
        pass

    @abstractmethod
    async def send_message(
        self,
        prompt: str,
        wait_for_response: bool = True,
        timeout: float | None = None,
    ) -> str:
        """Send a prompt.

        Args:
            prompt: Prompt text
            wait_for_response: Block until the assistant answers. When False
                the prompt is dispatched and an empty string returned; use
                :meth:`poll_response` to collect the answer.
            timeout: Seconds to wait for the answer

        Returns:
            The assistant's response text

        Raises:
            AutomationTimeout: If no response arrives within ``timeout``
            AutomationError: If the channel fails
        """
        pass

    @abstractmethod
    async def poll_response(self) -> str | None:
        """Latest response text, or None while none is available yet."""
        pass


class BuildValidator(ABC):
    """Abstract base class for build/test validation."""

    @abstractmethod
    async def validate(self, project_path: PathLike) -> BuildResult:
        """Validate the project; the first passing candidate command wins."""
        pass

    @abstractmethod
    async def run_tests(self, project_path: PathLike) -> BuildResult:
        """Run the test suite and report failing tests."""
        pass
