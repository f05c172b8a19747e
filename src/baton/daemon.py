"""Main daemon supervising the agents of one terminal session."""

import asyncio
import logging
import os
import signal
import time
from dataclasses import asdict
from typing import Optional

from .config import Config
from .context.compactor import Compactor
from .context.condenser import HandoffCondenser
from .context.estimators import default_estimators
from .context.identity import agent_type_long
from .context.monitor import ContextMonitor
from .context.rotation import RotationEvent, RotationResult, Rotator
from .context.summary import SummaryGenerator
from .ipc.protocol import (
    Command,
    CommandType,
    DataResponse,
    DebugDumpResponse,
    ResponseStatus,
    SimpleResponse,
    StatusResponse,
)
from .ipc.server import IPCServer
from .llm.claude import ClaudeClient
from .logging import get_debug_log_contents, get_debug_log_path, get_filtered_logs
from .panes.base import PaneError, PaneSpawner
from .panes.tmux import TmuxPaneSpawner
from .state import RotationState

logger = logging.getLogger(__name__)


class BatonDaemon:
    """Polls a session's agent panes and rotates agents that run out of context.

    Builds the whole object graph explicitly; nothing is global.
    """

    def __init__(self, config: Config, spawner: Optional[PaneSpawner] = None) -> None:
        self._config = config
        self._start_time = time.time()

        self._monitor = ContextMonitor(
            estimators=default_estimators(**asdict(config.estimator)),
            warning_threshold=config.rotation.warning_percent,
            rotate_threshold=config.rotation.rotate_percent,
        )
        self._summary = SummaryGenerator(max_tokens=config.rotation.summary_max_tokens)
        self._spawner = spawner or TmuxPaneSpawner(agent_commands=config.agents.commands())
        self._rotator = Rotator(
            monitor=self._monitor,
            spawner=self._spawner,
            config=config.rotation,
            compactor=Compactor(self._monitor, **asdict(config.compaction)),
            summary=self._summary,
        )
        self._rotator.on_rotation(self._on_rotation)
        self._rotator.on_transition(self._on_transition)

        # Agents already warned about, so each crossing is logged once
        self._warned: set[str] = set()
        # Agents with a rotation underway
        self._rotating: set[str] = set()

        self._ipc_server = IPCServer(
            socket_path=config.ipc.get_socket_path(),
            command_handler=self._handle_command,
        )

        self._shutdown_event = asyncio.Event()

    @property
    def monitor(self) -> ContextMonitor:
        return self._monitor

    @property
    def rotator(self) -> Rotator:
        return self._rotator

    def _on_rotation(self, event: RotationEvent) -> None:
        self._warned.discard(event.old_agent_id)
        logger.info(
            f"Rotation recorded: {event.old_agent_id} -> {event.new_agent_id} "
            f"({event.method.value}, was {event.context_before:.1f}%)"
        )

    def _on_transition(self, agent_id: str, old: RotationState, new: RotationState) -> None:
        if new == RotationState.IN_PROGRESS:
            self._rotating.add(agent_id)
        elif new.is_terminal:
            self._rotating.discard(agent_id)
            logger.info(f"Rotation of {agent_id} ended: {new.value}")

    def _ensure_condenser(self) -> None:
        """Attach the LLM condenser when enabled and an API key is available."""
        cfg = self._config.condenser
        if not cfg.enabled:
            return
        try:
            client = ClaudeClient(
                model=cfg.model,
                max_tokens=cfg.max_tokens,
                timeout=cfg.timeout,
                max_retries=cfg.max_retries,
            )
        except ValueError as e:
            logger.warning(f"Condenser disabled: {e}")
            return
        self._rotator.set_condenser(HandoffCondenser(client, self._summary))
        logger.info(f"Handoff condenser enabled ({cfg.model})")

    async def discover_agents(self) -> int:
        """Sync the monitor with the agent panes currently in the session.

        Returns:
            Number of agent panes found.
        """
        session = self._config.daemon.session
        try:
            panes = await self._spawner.get_panes(session)
        except PaneError as e:
            logger.warning(f"Could not list panes of {session}: {e}")
            return 0

        seen = set()
        for pane in panes:
            if not pane.is_agent:
                continue
            seen.add(pane.title)
            model = self._config.agents.model_for(agent_type_long(pane.type))
            self._monitor.register_agent(pane.title, pane.id, model)

        for agent_id in self._monitor.agent_ids():
            if agent_id not in seen:
                self._monitor.unregister_agent(agent_id)
                self._warned.discard(agent_id)
        return len(seen)

    async def poll_once(self) -> list[RotationResult]:
        """One supervision pass: discover, warn, rotate."""
        await self.discover_agents()

        warn_ids, reason = self._rotator.needs_warning()
        new_warnings = [a for a in warn_ids if a not in self._warned]
        if new_warnings:
            logger.warning(f"Context warning for {', '.join(new_warnings)} ({reason})")
            self._warned.update(new_warnings)

        rotation = self._config.rotation
        if rotation.require_confirm and not self._rotator.has_confirm:
            pending, reason = self._rotator.needs_rotation()
            if pending:
                logger.warning(
                    f"Rotation awaiting confirmation for {', '.join(pending)} ({reason}); "
                    f"run 'baton-ctl rotate <agent>' to proceed"
                )
            return []

        results = await self._rotator.check_and_rotate(
            self._config.daemon.session, self._config.daemon.work_dir
        )
        for result in results:
            log = logger.info if result.success else logger.warning
            log(result.format_for_display().rstrip())
        return results

    async def _handle_command(self, command: Command):
        """Handle IPC commands.

        Args:
            command: Command to process.

        Returns:
            Response object.
        """
        args = command.args

        if command.type == CommandType.STATUS:
            pending, _ = self._rotator.needs_rotation()
            return StatusResponse(
                status=ResponseStatus.OK,
                session=self._config.daemon.session,
                uptime_seconds=time.time() - self._start_time,
                rotation_enabled=self._config.rotation.enabled,
                agents_tracked=self._monitor.count(),
                rotations=len(self._rotator.get_history()),
                agents_needing_rotation=pending,
            )

        elif command.type == CommandType.AGENTS:
            estimates = self._monitor.get_all_estimates()
            agents = {}
            for agent_id in self._monitor.agent_ids():
                state = self._monitor.get_state(agent_id)
                if state is None:
                    continue
                estimate = estimates.get(agent_id)
                agents[agent_id] = {
                    "pane_id": state.pane_id,
                    "model": state.model,
                    "message_count": state.message_count,
                    "session_age": round(state.session_age(), 1),
                    "rotating": agent_id in self._rotating,
                    "estimate": estimate.to_dict() if estimate else None,
                }
            return DataResponse(status=ResponseStatus.OK, data=agents)

        elif command.type == CommandType.ROTATE:
            agent_id = args.get("agent_id")
            if not agent_id:
                return SimpleResponse(
                    status=ResponseStatus.ERROR, message="Rotate failed", error="agent_id is required"
                )
            result = await self._rotator.manual_rotate(
                self._config.daemon.session, agent_id, self._config.daemon.work_dir
            )
            return DataResponse(
                status=ResponseStatus.OK if result.success else ResponseStatus.ERROR,
                data=result.to_dict(),
                message=result.format_for_display(),
                error=None if result.success else result.error,
            )

        elif command.type == CommandType.HISTORY:
            return DataResponse(
                status=ResponseStatus.OK,
                data=[event.to_dict() for event in self._rotator.get_history()],
            )

        elif command.type == CommandType.CLEAR_HISTORY:
            self._rotator.clear_history()
            return SimpleResponse(status=ResponseStatus.OK, message="Rotation history cleared")

        elif command.type == CommandType.RECORD:
            agent_id = args.get("agent_id", "")
            if self._monitor.get_state(agent_id) is None:
                return SimpleResponse(
                    status=ResponseStatus.ERROR,
                    message="Record failed",
                    error=f"Unknown agent: {agent_id}",
                )
            self._monitor.record_message(
                agent_id,
                input_tokens=int(args.get("input_tokens", 0)),
                output_tokens=int(args.get("output_tokens", 0)),
            )
            return SimpleResponse(status=ResponseStatus.OK, message=f"Recorded message for {agent_id}")

        elif command.type == CommandType.REPORT:
            agent_id = args.get("agent_id", "")
            if self._monitor.get_state(agent_id) is None:
                return SimpleResponse(
                    status=ResponseStatus.ERROR,
                    message="Report failed",
                    error=f"Unknown agent: {agent_id}",
                )
            estimate = self._monitor.update_from_robot_mode(agent_id, args.get("text", ""))
            if estimate is None:
                return SimpleResponse(
                    status=ResponseStatus.ERROR,
                    message="Report failed",
                    error="No context report found in text",
                )
            return DataResponse(status=ResponseStatus.OK, data=estimate.to_dict())

        elif command.type == CommandType.SHUTDOWN:
            self._shutdown_event.set()
            return SimpleResponse(status=ResponseStatus.OK, message="Shutting down")

        elif command.type == CommandType.DEBUG_DUMP:
            lines = int(args.get("lines", 200))
            filters = {k: args.get(k) for k in ("component", "level", "agent")}
            if any(filters.values()):
                content = get_filtered_logs(lines=lines, **filters)
            else:
                content = get_debug_log_contents(lines=lines)
            return DebugDumpResponse(
                status=ResponseStatus.OK,
                log_path=str(get_debug_log_path()),
                lines=content.count("\n"),
                content=content,
            )

        return SimpleResponse(
            status=ResponseStatus.ERROR,
            message="Unknown command",
            error=f"Unknown command type: {command.type}",
        )

    async def run(self) -> None:
        """Main daemon loop."""
        logger.info(f"Starting baton daemon for session {self._config.daemon.session}")

        # Load .env before building anything that needs ANTHROPIC_API_KEY
        from dotenv import load_dotenv
        env_path = os.path.expanduser("~/.config/baton/.env")
        if os.path.exists(env_path):
            load_dotenv(env_path)
            logger.info(f"Loaded environment from {env_path}")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._shutdown_event.set)

        self._ensure_condenser()
        await self._ipc_server.start()

        found = await self.discover_agents()
        logger.info(f"baton daemon ready - tracking {found} agent pane(s)")

        try:
            while not self._shutdown_event.is_set():
                try:
                    await self.poll_once()
                except PaneError as e:
                    logger.warning(f"Poll failed: {e}")
                except Exception as e:
                    logger.error(f"Error in poll loop: {e}", exc_info=True)

                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=self._config.daemon.poll_interval
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info("Shutting down baton daemon")
            await self._ipc_server.stop()
