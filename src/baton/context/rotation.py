"""Agent rotation: replace an agent whose context window is nearly full.

A rotation asks the old agent for a handoff summary, spawns a fresh
agent of the same type in the same slot, hands it the summary, and
kills the old pane. In-place compaction is tried first when enabled.
"""

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from ..config import RotationConfig
from ..logging import current_agent
from ..panes.base import Pane, PaneError, PaneSpawner
from ..state import RotationAttempt, RotationState, TransitionCallback
from .compactor import CompactionError, CompactionResult, Compactor
from .condenser import HandoffCondenser
from .identity import (
    agent_type_long,
    derive_agent_type,
    extract_agent_index,
    format_pane_name,
)
from .monitor import AgentContextInfo, ContextMonitor
from .summary import (
    HandoffSummary,
    SummaryGenerator,
    remove_prompt_echo,
    split_output_chunks,
    strip_prompt_echo,
)

logger = logging.getLogger(__name__)


class RotationConfigError(Exception):
    """The rotator is missing a collaborator it cannot work without."""


class RotationMethod(str, Enum):
    """What triggered a rotation."""

    THRESHOLD_EXCEEDED = "threshold_exceeded"
    MANUAL = "manual"
    COMPACTION_FAILED = "compaction_failed"


@dataclass(frozen=True)
class RotationResult:
    """Outcome of one rotation attempt, returned to the caller."""

    success: bool
    old_agent_id: str
    method: RotationMethod
    state: RotationState
    new_agent_id: str = ""
    old_pane_id: str = ""
    new_pane_id: str = ""
    summary_tokens: int = 0
    summary_source: str = ""
    duration: float = 0.0
    error: str = ""
    timestamp: float = field(default_factory=time.time)

    def format_for_display(self) -> str:
        lines = ["✓ Rotation completed" if self.success else "✗ Rotation failed"]
        lines.append(f"  Old Agent: {self.old_agent_id}")
        if self.new_agent_id:
            lines.append(f"  New Agent: {self.new_agent_id}")
        lines.append(f"  Method: {self.method.value}")
        lines.append(f"  State: {self.state.value}")
        if self.summary_tokens > 0:
            lines.append(f"  Summary Tokens: {self.summary_tokens}")
        lines.append(f"  Duration: {self.duration:.3f}s")
        if self.error:
            lines.append(f"  Error: {self.error}")
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "old_agent_id": self.old_agent_id,
            "new_agent_id": self.new_agent_id,
            "old_pane_id": self.old_pane_id,
            "new_pane_id": self.new_pane_id,
            "method": self.method.value,
            "state": self.state.value,
            "summary_tokens": self.summary_tokens,
            "summary_source": self.summary_source,
            "duration": self.duration,
            "error": self.error,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class RotationEvent:
    """Audit record of a completed swap."""

    session: str
    old_agent_id: str
    new_agent_id: str
    agent_type: str
    method: RotationMethod
    context_before: float  # Usage percent of the old agent
    summary_tokens: int
    duration: float
    timestamp: float
    context_after: float = 0.0  # Fresh agent
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "session": self.session,
            "old_agent_id": self.old_agent_id,
            "new_agent_id": self.new_agent_id,
            "agent_type": self.agent_type,
            "method": self.method.value,
            "context_before": self.context_before,
            "context_after": self.context_after,
            "summary_tokens": self.summary_tokens,
            "duration": self.duration,
            "timestamp": self.timestamp,
            "error": self.error,
        }


RotationCallback = Callable[[RotationEvent], None]
ConfirmCallback = Callable[[AgentContextInfo], Union[bool, Awaitable[bool]]]


class _RotationFailed(Exception):
    """Ends the pipeline for the current agent with a FAILED result."""


class Rotator:
    """Coordinates compaction, handoff and replacement of agents.

    Rotations are serialized: a batch is processed one agent at a time and
    a manual rotation waits for any rotation already running.

    Example:
        rotator = Rotator(monitor, TmuxPaneSpawner(), RotationConfig())
        results = await rotator.check_and_rotate("proj", "/src/proj")
    """

    def __init__(
        self,
        monitor: Optional[ContextMonitor],
        spawner: Optional[PaneSpawner],
        config: Optional[RotationConfig] = None,
        compactor: Optional[Compactor] = None,
        summary: Optional[SummaryGenerator] = None,
        condenser: Optional[HandoffCondenser] = None,
        confirm: Optional[ConfirmCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config or RotationConfig()
        self._monitor = monitor
        self._spawner = spawner
        if compactor is None and monitor is not None:
            compactor = Compactor(monitor)
        self._compactor = compactor
        self._summary = summary or SummaryGenerator(max_tokens=self._config.summary_max_tokens)
        self._condenser = condenser
        self._confirm = confirm
        self._sleep = sleep

        self._lock = asyncio.Lock()
        self._history: list[RotationEvent] = []
        self._history_lock = threading.Lock()
        self._listeners: list[RotationCallback] = []
        self._transition_listeners: list[TransitionCallback] = []

    @property
    def config(self) -> RotationConfig:
        return self._config

    @property
    def has_confirm(self) -> bool:
        return self._confirm is not None

    def set_condenser(self, condenser: Optional[HandoffCondenser]) -> None:
        self._condenser = condenser

    def on_rotation(self, callback: RotationCallback) -> None:
        """Register a callback for completed rotations."""
        self._listeners.append(callback)

    def on_transition(self, callback: TransitionCallback) -> None:
        """Register a callback for every state change of every rotation attempt."""
        self._transition_listeners.append(callback)

    def get_history(self) -> list[RotationEvent]:
        with self._history_lock:
            return list(self._history)

    def clear_history(self) -> None:
        with self._history_lock:
            self._history.clear()

    # --- read-only checks ---

    def needs_rotation(self) -> tuple[list[str], str]:
        if self._monitor is None:
            return [], "no monitor available"
        if not self._config.enabled:
            return [], "rotation disabled"
        infos = self._monitor.agents_above_threshold(self._config.rotate_percent)
        if not infos:
            return [], "no agents above threshold"
        ids = [info.agent_id for info in infos]
        return ids, f"{len(ids)} agent(s) above {self._config.rotate_percent:.0f}% threshold"

    def needs_warning(self) -> tuple[list[str], str]:
        if self._monitor is None:
            return [], "no monitor available"
        if not self._config.enabled:
            return [], "rotation disabled"
        infos = self._monitor.agents_above_threshold(self._config.warning_percent)
        if not infos:
            return [], "no agents above warning threshold"
        ids = [info.agent_id for info in infos]
        return ids, f"{len(ids)} agent(s) above {self._config.warning_percent:.0f}% warning threshold"

    # --- rotation ---

    def _check_configured(self) -> None:
        if self._monitor is None:
            raise RotationConfigError("no monitor available")
        if self._spawner is None:
            raise RotationConfigError("no spawner available")

    async def check_and_rotate(self, session: str, work_dir: str) -> list[RotationResult]:
        """Rotate every eligible agent above the rotate threshold, one at a time.

        Raises:
            RotationConfigError: Monitor or spawner missing.
        """
        if not self._config.enabled:
            return []
        self._check_configured()

        candidates = self._monitor.agents_above_threshold(self._config.rotate_percent)
        results = []
        for info in candidates:
            if not await self._is_eligible(info):
                continue
            result = await self._rotate(
                session, info.agent_id, work_dir, RotationMethod.THRESHOLD_EXCEEDED
            )
            if not result.success:
                logger.warning(f"Rotation of {info.agent_id} failed: {result.error}")
            results.append(result)
        return results

    async def rotate_agent(self, session: str, agent_id: str, work_dir: str) -> RotationResult:
        """Rotate one agent that crossed the threshold, compacting first if configured.

        Raises:
            RotationConfigError: Monitor or spawner missing.
        """
        self._check_configured()
        return await self._rotate(
            session, agent_id, work_dir, RotationMethod.THRESHOLD_EXCEEDED
        )

    async def manual_rotate(self, session: str, agent_id: str, work_dir: str) -> RotationResult:
        """Rotate one agent now, regardless of usage and session age.

        Raises:
            RotationConfigError: Monitor or spawner missing.
        """
        self._check_configured()
        return await self._rotate(session, agent_id, work_dir, RotationMethod.MANUAL)

    async def _is_eligible(self, info: AgentContextInfo) -> bool:
        state = self._monitor.get_state(info.agent_id)
        if state is None:
            return False
        age = state.session_age()
        if age < self._config.min_session_age_sec:
            logger.info(
                f"Skipping {info.agent_id}: session age {age:.0f}s < "
                f"{self._config.min_session_age_sec:.0f}s"
            )
            return False

        if self._config.require_confirm:
            if self._confirm is None:
                logger.warning(f"Rotation of {info.agent_id} needs confirmation; no confirmer set")
                return False
            try:
                approved = self._confirm(info)
                if inspect.isawaitable(approved):
                    approved = await approved
            except Exception as e:
                logger.error(f"Confirmation for {info.agent_id} failed: {e}", exc_info=True)
                return False
            if not approved:
                logger.info(f"Rotation of {info.agent_id} declined")
                return False
        return True

    async def _rotate(
        self, session: str, agent_id: str, work_dir: str, method: RotationMethod
    ) -> RotationResult:
        async with self._lock:
            token = current_agent.set(agent_id)
            attempt = RotationAttempt(agent_id)
            for listener in self._transition_listeners:
                attempt.on_transition(listener)
            attempt.transition(RotationState.IN_PROGRESS)
            started = time.monotonic()
            timestamp = time.time()
            try:
                return await self._run_pipeline(
                    session, agent_id, work_dir, method, attempt, started, timestamp
                )
            except _RotationFailed as e:
                failure = e
            except Exception as e:
                logger.exception(f"Unexpected error rotating {agent_id}")
                failure = _RotationFailed(f"unexpected error: {e}")
            finally:
                current_agent.reset(token)

        attempt.transition(RotationState.FAILED)
        return RotationResult(
            success=False,
            old_agent_id=agent_id,
            method=method,
            state=attempt.state,
            duration=time.monotonic() - started,
            error=str(failure),
            timestamp=timestamp,
        )

    async def _run_pipeline(
        self,
        session: str,
        agent_id: str,
        work_dir: str,
        method: RotationMethod,
        attempt: RotationAttempt,
        started: float,
        timestamp: float,
    ) -> RotationResult:
        state = self._monitor.get_state(agent_id)
        if state is None:
            raise _RotationFailed("agent not found in monitor")

        old_pane = await self._find_pane(session, agent_id)
        estimate_before = self._monitor.get_estimate(agent_id)
        context_before = estimate_before.usage_percent if estimate_before else 0.0
        agent_type = agent_type_long(old_pane.type) if old_pane.is_agent else derive_agent_type(agent_id)

        logger.info(f"Rotating {agent_id} ({method.value}, usage {context_before:.1f}%)")

        # Manual rotations skip compaction: its check would veto them below threshold
        if method != RotationMethod.MANUAL and self._config.try_compact_first and self._compactor:
            compaction = await self._try_compaction(agent_id, agent_type, old_pane)
            should_rotate, reason = self._compactor.pre_rotation_check(
                agent_id, self._config.rotate_threshold, compaction
            )
            if not should_rotate:
                logger.info(f"Rotation of {agent_id} not needed: {reason}")
                attempt.transition(RotationState.ABORTED)
                return RotationResult(
                    success=True,
                    old_agent_id=agent_id,
                    method=method,
                    state=attempt.state,
                    old_pane_id=old_pane.id,
                    duration=time.monotonic() - started,
                    error=reason,
                    timestamp=timestamp,
                )
            logger.info(f"Proceeding with rotation of {agent_id}: {reason}")
            method = RotationMethod.COMPACTION_FAILED

        handoff = await self._collect_summary(session, agent_id, agent_type, old_pane)

        index = extract_agent_index(agent_id)
        try:
            new_pane_id = await self._spawner.spawn_agent(session, agent_type, index, work_dir)
        except PaneError as e:
            raise _RotationFailed(f"failed to spawn replacement: {e}") from e
        new_agent_id = format_pane_name(session, agent_type, index)

        warnings = []
        await self._sleep(self._config.spawn_warmup_seconds)
        try:
            await self._spawner.send_keys(new_pane_id, handoff.format_for_new_agent(), True)
        except PaneError as e:
            logger.warning(f"Handoff to {new_agent_id} failed: {e}")
            warnings.append(f"warning: failed to send handoff context: {e}")

        try:
            await self._spawner.kill_pane(old_pane.id)
        except PaneError as e:
            logger.warning(f"Could not kill old pane {old_pane.id}: {e}")
            warnings.append(f"warning: failed to kill old pane: {e}")

        if new_agent_id != agent_id:
            self._monitor.unregister_agent(agent_id)
        self._monitor.register_agent(new_agent_id, new_pane_id, state.model)
        self._monitor.reset_agent(new_agent_id)

        duration = time.monotonic() - started
        error = "; ".join(warnings)
        event = RotationEvent(
            session=session,
            old_agent_id=agent_id,
            new_agent_id=new_agent_id,
            agent_type=agent_type,
            method=method,
            context_before=context_before,
            summary_tokens=handoff.token_estimate,
            duration=duration,
            timestamp=timestamp,
            error=error,
        )
        with self._history_lock:
            self._history.append(event)
        self._notify(event)

        attempt.transition(RotationState.COMPLETED)
        logger.info(f"Rotated {agent_id} -> {new_agent_id} (pane {new_pane_id}) in {duration:.1f}s")
        return RotationResult(
            success=True,
            old_agent_id=agent_id,
            method=method,
            state=attempt.state,
            new_agent_id=new_agent_id,
            old_pane_id=old_pane.id,
            new_pane_id=new_pane_id,
            summary_tokens=handoff.token_estimate,
            summary_source=handoff.source.value,
            duration=duration,
            error=error,
            timestamp=timestamp,
        )

    async def _find_pane(self, session: str, agent_id: str) -> Pane:
        try:
            panes = await self._spawner.get_panes(session)
        except PaneError as e:
            raise _RotationFailed(f"failed to get panes: {e}") from e

        for pane in panes:
            if pane.title == agent_id:
                return pane
        for pane in panes:
            if agent_id in pane.title:
                return pane
        raise _RotationFailed("pane not found for agent")

    async def _try_compaction(
        self, agent_id: str, agent_type: str, pane: Pane
    ) -> Optional[CompactionResult]:
        """Send compaction commands in order until one helps enough."""
        try:
            state = self._compactor.begin(agent_id)
        except CompactionError as e:
            logger.info(f"Compaction skipped for {agent_id}: {e}")
            return CompactionResult(success=False, error=str(e))

        result: Optional[CompactionResult] = None
        for command in self._compactor.get_compaction_commands(agent_type):
            try:
                await self._spawner.send_keys(pane.id, command.text, True)
            except PaneError as e:
                logger.warning(f"Failed to send {command.description} to {agent_id}: {e}")
                return CompactionResult(
                    success=False, error=f"failed to send compaction command: {e}"
                )
            state.record(command)
            await self._sleep(command.wait_seconds)
            result = self._compactor.finish(state)
            if result.success:
                break
        return result

    async def _collect_summary(
        self, session: str, agent_id: str, agent_type: str, pane: Pane
    ) -> HandoffSummary:
        """Ask the old agent for a summary, falling back when it gives none."""
        try:
            await self._spawner.send_keys(pane.id, self._summary.generate_prompt(), True)
        except PaneError as e:
            raise _RotationFailed(f"failed to request summary: {e}") from e

        await self._sleep(self._config.summary_wait_seconds)

        try:
            captured = await self._spawner.capture_output(pane.id, self._config.capture_lines)
        except PaneError as e:
            logger.warning(f"Could not capture summary from {agent_id}: {e}")
            captured = ""

        answer = strip_prompt_echo(captured)
        if answer:
            parsed = self._summary.parse_agent_response(agent_id, agent_type, session, answer)
            if not parsed.is_empty:
                return parsed
        logger.info(f"No usable summary from {agent_id}, falling back")

        try:
            recent = await self._spawner.capture_output(pane.id, self._config.fallback_capture_lines)
        except PaneError as e:
            logger.warning(f"Could not capture recent output from {agent_id}: {e}")
            recent = captured
        recent = remove_prompt_echo(recent)

        if self._condenser is not None:
            condensed = await self._condenser.condense(agent_id, agent_type, session, recent)
            if condensed is not None:
                return condensed

        return self._summary.generate_fallback_summary(
            agent_id, agent_type, session, split_output_chunks(recent)
        )

    def _notify(self, event: RotationEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in rotation listener: {e}")
