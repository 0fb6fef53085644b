"""Automation channel that runs an AI agent CLI (Claude Code by default).

Prompts are passed on stdin to avoid argument length limits. The agent runs
in the project directory and edits files directly. Within a session every
message after the first adds ``--continue`` so the agent keeps its
conversation; :meth:`start_new_session` drops it.

Messages sent with ``wait_for_response=False`` run in a background task;
:meth:`poll_response` returns the response once the agent has finished.
"""

import asyncio
import os
import subprocess

import structlog

from branchpilot.config.settings import BranchPilotSettings
from branchpilot.exceptions import AutomationError, AutomationTimeout
from branchpilot.providers.base import AutomationChannel
from branchpilot.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

DEFAULT_AGENT_COMMAND = ["claude", "--print", "--dangerously-skip-permissions"]
CONTINUE_FLAG = "--continue"


class ExternalAgentChannel(AutomationChannel):
    """AutomationChannel that shells out to an agent CLI."""

    def __init__(
        self,
        command: list[str] | None = None,
        working_dir: str | None = None,
        response_timeout: float = 120.0,
    ) -> None:
        """Initialize the channel.

        Args:
            command: Agent invocation without the prompt
            working_dir: Directory the agent runs in (defaults to cwd)
            response_timeout: Seconds to wait for a response when the
                caller gives no timeout
        """
        self.command = list(command) if command else list(DEFAULT_AGENT_COMMAND)
        self.working_dir = working_dir or os.getcwd()
        self.response_timeout = response_timeout
        self.messages_in_session = 0
        self.last_response: str | None = None
        self._pending: asyncio.Task[str] | None = None

    @classmethod
    def from_settings(
        cls,
        settings: BranchPilotSettings,
        working_dir: str | None = None,
    ) -> "ExternalAgentChannel":
        """Build a channel from the ``automation`` settings section."""
        return cls(
            command=settings.automation.agent_command,
            working_dir=working_dir,
            response_timeout=settings.automation.response_timeout,
        )

    async def start_new_session(self) -> None:
        await self._discard_pending()
        self.messages_in_session = 0
        self.last_response = None
        log.info("agent_session_started", command=self.command[0], cwd=self.working_dir)

    def _build_command(self) -> list[str]:
        if self.messages_in_session > 0 and CONTINUE_FLAG not in self.command:
            return [*self.command, CONTINUE_FLAG]
        return list(self.command)

    async def _execute(self, prompt: str, timeout: float) -> str:
        cmd = self._build_command()
        self.messages_in_session += 1
        log.debug("agent_prompt_sent", cwd=self.working_dir, prompt_length=len(prompt))

        try:
            result = await run_command(
                *cmd,
                cwd=self.working_dir,
                check=True,
                timeout=timeout,
                input_text=prompt,
            )
        except TimeoutError as e:
            raise AutomationTimeout("Agent did not respond", timeout_seconds=timeout) from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise AutomationError(f"Agent exited with code {e.returncode}: {stderr}") from e
        except FileNotFoundError as e:
            raise AutomationError(f"{cmd[0]} CLI not found in PATH") from e

        self.last_response = result.stdout
        log.info("agent_response_received", output_length=len(result.stdout))
        return result.stdout

    async def send_message(
        self,
        prompt: str,
        wait_for_response: bool = True,
        timeout: float | None = None,
    ) -> str:
        effective_timeout = timeout if timeout is not None else self.response_timeout
        await self._discard_pending()

        if wait_for_response:
            return await self._execute(prompt, effective_timeout)

        self.last_response = None
        self._pending = asyncio.create_task(self._execute(prompt, effective_timeout))
        return ""

    async def poll_response(self) -> str | None:
        if self._pending is None:
            return self.last_response
        if not self._pending.done():
            return None

        task, self._pending = self._pending, None
        # Re-raises the agent's failure to the poller.
        return task.result()

    async def _discard_pending(self) -> None:
        if self._pending is None:
            return
        task, self._pending = self._pending, None
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except (AutomationError, OSError) as e:
            log.warning("agent_pending_message_discarded", error=str(e))
