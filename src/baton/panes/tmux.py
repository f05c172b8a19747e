"""tmux implementation of the pane capability."""

import asyncio
import logging
import shlex
import uuid
from typing import Optional

from ..context.identity import agent_type_long, format_pane_name
from .base import Pane, PaneError

logger = logging.getLogger(__name__)

DEFAULT_AGENT_COMMANDS = {
    "claude": "claude",
    "codex": "codex",
    "gemini": "gemini",
}

# Separates fields in list-panes output; pane titles may contain spaces
FIELD_SEP = "\t"
PANE_FORMAT = FIELD_SEP.join(["#{pane_id}", "#{pane_index}", "#{pane_title}"])


class TmuxPaneSpawner:
    """Drives the tmux binary with asyncio subprocesses."""

    def __init__(
        self,
        agent_commands: Optional[dict[str, str]] = None,
        tmux_bin: str = "tmux",
        timeout: float = 10.0,
    ) -> None:
        self._agent_commands = dict(DEFAULT_AGENT_COMMANDS)
        if agent_commands:
            self._agent_commands.update({k: v for k, v in agent_commands.items() if v})
        self._tmux_bin = tmux_bin
        self._timeout = timeout

    def agent_command(self, agent_type: str) -> str:
        long_type = agent_type_long(agent_type)
        command = self._agent_commands.get(long_type)
        if not command:
            raise PaneError(f"no launch command configured for agent type '{agent_type}'")
        return command

    async def _run(self, *args: str) -> str:
        """Run one tmux command and return its stdout.

        Raises:
            PaneError: tmux is missing, timed out, or exited non-zero.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self._tmux_bin,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise PaneError(f"{self._tmux_bin} not found") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise PaneError(f"tmux {args[0]} timed out after {self._timeout}s") from e

        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"exit code {proc.returncode}"
            raise PaneError(f"tmux {args[0]} failed: {message}")
        return stdout.decode(errors="replace")

    async def spawn_agent(self, session: str, agent_type: str, index: int, work_dir: str) -> str:
        command = self.agent_command(agent_type)
        output = await self._run(
            "split-window", "-t", session, "-c", work_dir, "-P", "-F", "#{pane_id}"
        )
        pane_id = output.strip()
        if not pane_id:
            raise PaneError("split-window did not report a pane id")

        try:
            await self._run("select-pane", "-t", pane_id, "-T", format_pane_name(session, agent_type, index))
            await self.send_keys(pane_id, f"cd {shlex.quote(work_dir)} && {command}")
        except PaneError:
            # Don't leave a half-started pane behind
            try:
                await self.kill_pane(pane_id)
            except PaneError as e:
                logger.warning(f"Could not clean up pane {pane_id}: {e}")
            raise

        try:
            await self._run("select-layout", "-t", session, "tiled")
        except PaneError as e:
            logger.debug(f"Could not retile {session}: {e}")

        logger.info(f"Spawned {agent_type} agent {index} in pane {pane_id}")
        return pane_id

    async def kill_pane(self, pane_id: str) -> None:
        await self._run("kill-pane", "-t", pane_id)

    async def send_keys(self, pane_id: str, text: str, submit: bool = True) -> None:
        if "\n" in text:
            # Multi-line text goes through a paste buffer so newlines are not
            # taken as Enter presses
            buffer = f"baton-{uuid.uuid4().hex[:8]}"
            await self._run("set-buffer", "-b", buffer, "--", text)
            await self._run("paste-buffer", "-d", "-p", "-b", buffer, "-t", pane_id)
        else:
            await self._run("send-keys", "-t", pane_id, "-l", text)
        if submit:
            await self._run("send-keys", "-t", pane_id, "Enter")

    async def get_panes(self, session: str) -> list[Pane]:
        output = await self._run("list-panes", "-s", "-t", session, "-F", PANE_FORMAT)
        panes = []
        for line in output.splitlines():
            fields = line.split(FIELD_SEP, 2)
            if len(fields) != 3:
                continue
            pane_id, index, title = fields
            try:
                pane_index = int(index)
            except ValueError:
                continue
            panes.append(Pane.from_title(pane_id, pane_index, title))
        return panes

    async def capture_output(self, pane_id: str, lines: int) -> str:
        # -J joins wrapped lines so long answers are not split mid-sentence
        return await self._run("capture-pane", "-p", "-J", "-t", pane_id, "-S", f"-{lines}")
