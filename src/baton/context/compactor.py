"""In-place context compaction, tried before rotating an agent.

Compaction asks the agent to shrink its own context, either with a
builtin directive (``/compact``) or a natural-language summarization
request. The result is judged by comparing usage estimates taken
before and after.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .agent_state import ContextEstimate
from .monitor import ContextMonitor

logger = logging.getLogger(__name__)

COMPACTION_PROMPT = """\
[System Context Management]

Your context window is reaching capacity. To continue working effectively, please:

1. SUMMARIZE the key points of our conversation so far
2. NOTE any critical context that must be preserved (file paths, decisions, blockers)
3. LIST any in-progress tasks and their current state

After you provide this summary, we will use it to help you continue with fresh context.

Please provide this summary now. Be concise but comprehensive."""


class CompactionError(Exception):
    """Compaction could not be started or evaluated."""


class CompactionMethod(str, Enum):
    BUILTIN = "builtin"
    SUMMARIZE = "summarize"
    CLEAR_HISTORY = "clear_history"
    FAILED = "failed"


@dataclass(frozen=True)
class AgentCapabilities:
    """Compaction features an agent CLI supports."""

    builtin_compact_command: str = ""
    history_clear_command: str = ""

    @property
    def supports_builtin_compact(self) -> bool:
        return bool(self.builtin_compact_command)

    @property
    def supports_history_clear(self) -> bool:
        return bool(self.history_clear_command)


_CAPABILITIES = {
    "claude": AgentCapabilities(builtin_compact_command="/compact", history_clear_command="/clear"),
    "codex": AgentCapabilities(),
    "gemini": AgentCapabilities(history_clear_command="/clear"),
}

_CAPABILITY_ALIASES = {
    "claude": "claude",
    "claude-code": "claude",
    "cc": "claude",
    "codex": "codex",
    "cod": "codex",
    "openai": "codex",
    "gemini": "gemini",
    "gmi": "gemini",
    "google": "gemini",
}


def get_agent_capabilities(agent_type: str) -> AgentCapabilities:
    """Capabilities for an agent type (long or short form).

    Unknown types support nothing.
    """
    key = _CAPABILITY_ALIASES.get(agent_type.lower())
    if key is None:
        return AgentCapabilities()
    return _CAPABILITIES[key]


@dataclass(frozen=True)
class CompactionCommand:
    """One step of a compaction attempt."""

    text: str
    method: CompactionMethod
    wait_seconds: float
    description: str

    @property
    def is_prompt(self) -> bool:
        return self.method == CompactionMethod.SUMMARIZE


@dataclass(frozen=True)
class CompactionResult:
    """Outcome of a compaction attempt. Usage values are percentages."""

    success: bool
    method: CompactionMethod = CompactionMethod.FAILED
    tokens_before: int = 0
    tokens_after: int = 0
    tokens_reclaimed: int = 0
    usage_before: float = 0.0
    usage_after: float = 0.0
    duration: float = 0.0
    error: str = ""

    def format_for_display(self) -> str:
        lines = ["✓ Compaction successful" if self.success else "✗ Compaction failed"]
        lines.append(f"  Method: {self.method.value}")
        lines.append(f"  Usage: {self.usage_before:.1f}% → {self.usage_after:.1f}%")
        lines.append(f"  Tokens reclaimed: {self.tokens_reclaimed}")
        lines.append(f"  Duration: {self.duration:.3f}s")
        if self.error:
            lines.append(f"  Error: {self.error}")
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "method": self.method.value,
            "tokens_before": self.tokens_before,
            "tokens_after": self.tokens_after,
            "tokens_reclaimed": self.tokens_reclaimed,
            "usage_before": self.usage_before,
            "usage_after": self.usage_after,
            "duration": self.duration,
            "error": self.error,
        }


@dataclass
class CompactionState:
    """Tracks an in-flight compaction attempt."""

    agent_id: str
    estimate_before: ContextEstimate
    started_at: float = field(default_factory=time.monotonic)
    method: CompactionMethod = CompactionMethod.FAILED
    commands_sent: int = 0
    last_command: str = ""
    waiting_until: Optional[float] = None

    def record(self, command: CompactionCommand, method: Optional[CompactionMethod] = None) -> None:
        """Note that a command was sent to the agent."""
        self.commands_sent += 1
        self.last_command = command.text
        self.method = method if method is not None else command.method
        self.waiting_until = time.monotonic() + command.wait_seconds


class Compactor:
    """Decides on, drives the commands for, and evaluates compaction.

    Threshold arguments are fractions (0.80 means 80%) and are compared
    against the monitor's percentage estimates.
    """

    def __init__(
        self,
        monitor: Optional[ContextMonitor],
        min_reduction: float = 0.10,
        builtin_timeout: float = 10.0,
        summarize_timeout: float = 30.0,
    ) -> None:
        self._monitor = monitor
        self.min_reduction = min_reduction if min_reduction > 0 else 0.10
        self.builtin_timeout = builtin_timeout if builtin_timeout > 0 else 10.0
        self.summarize_timeout = summarize_timeout if summarize_timeout > 0 else 30.0

    def generate_compaction_prompt(self) -> str:
        return COMPACTION_PROMPT

    def get_compaction_commands(self, agent_type: str) -> list[CompactionCommand]:
        """Commands to try in order: builtin directive, then summarization."""
        caps = get_agent_capabilities(agent_type)
        commands = []
        if caps.supports_builtin_compact:
            commands.append(
                CompactionCommand(
                    text=caps.builtin_compact_command,
                    method=CompactionMethod.BUILTIN,
                    wait_seconds=self.builtin_timeout,
                    description="builtin compaction command",
                )
            )
        commands.append(
            CompactionCommand(
                text=self.generate_compaction_prompt(),
                method=CompactionMethod.SUMMARIZE,
                wait_seconds=self.summarize_timeout,
                description="summarization request",
            )
        )
        return commands

    def should_try_compaction(self, agent_id: str, warning_threshold: float) -> tuple[bool, str]:
        if self._monitor is None:
            return False, "no monitor available"
        if self._monitor.get_state(agent_id) is None:
            return False, "agent not registered"

        estimate = self._monitor.get_estimate(agent_id)
        if estimate is None:
            return False, "cannot estimate context: no estimate available"

        threshold = warning_threshold * 100
        if estimate.usage_percent >= threshold:
            return True, f"usage {estimate.usage_percent:.1f}% >= warning threshold {threshold:.1f}%"
        return False, f"usage {estimate.usage_percent:.1f}% < warning threshold {threshold:.1f}%"

    def evaluate_compaction_result(
        self,
        before: ContextEstimate,
        after: ContextEstimate,
        method: CompactionMethod = CompactionMethod.FAILED,
        duration: float = 0.0,
    ) -> CompactionResult:
        """Success iff usage dropped by at least min_reduction points."""
        reduction = before.usage_percent - after.usage_percent
        reclaimed = before.tokens_used - after.tokens_used
        needed = self.min_reduction * 100

        if reduction >= needed:
            success, error = True, ""
        elif reclaimed > 0:
            success, error = False, f"insufficient reduction: {reduction:.1f}% (need {needed:.1f}%)"
        else:
            success, error = False, "no reduction achieved"

        return CompactionResult(
            success=success,
            method=method,
            tokens_before=before.tokens_used,
            tokens_after=after.tokens_used,
            tokens_reclaimed=reclaimed,
            usage_before=before.usage_percent,
            usage_after=after.usage_percent,
            duration=duration,
            error=error,
        )

    def begin(self, agent_id: str) -> CompactionState:
        """Start an attempt by capturing the before estimate.

        Raises:
            CompactionError: No monitor, or nothing to measure against.
        """
        if self._monitor is None:
            raise CompactionError("no monitor available")
        estimate = self._monitor.get_estimate(agent_id)
        if estimate is None:
            raise CompactionError("failed to get initial estimate: agent not found or no data")
        return CompactionState(agent_id=agent_id, estimate_before=estimate)

    def finish(self, state: CompactionState) -> CompactionResult:
        """Measure again and evaluate the attempt."""
        duration = time.monotonic() - state.started_at
        if self._monitor is None:
            return CompactionResult(success=False, method=state.method, duration=duration,
                                    error="no monitor available")

        after = self._monitor.get_estimate(state.agent_id)
        if after is None:
            return CompactionResult(
                success=False,
                method=state.method,
                usage_before=state.estimate_before.usage_percent,
                tokens_before=state.estimate_before.tokens_used,
                duration=duration,
                error="failed to get post-compaction estimate: no data available",
            )

        result = self.evaluate_compaction_result(
            state.estimate_before, after, method=state.method, duration=duration
        )
        logger.info(
            f"Compaction of {state.agent_id} via {state.method.value}: "
            f"{result.usage_before:.1f}% -> {result.usage_after:.1f}% "
            f"({'ok' if result.success else result.error})"
        )
        return result

    def pre_rotation_check(
        self,
        agent_id: str,
        rotate_threshold: float,
        last_result: Optional[CompactionResult] = None,
    ) -> tuple[bool, str]:
        """Final go/no-go before a rotation. True means rotate."""
        if self._monitor is None:
            return True, "no monitor available, proceeding with rotation"

        estimate = self._monitor.get_estimate(agent_id)
        if estimate is None:
            return True, "cannot estimate context, proceeding with rotation: no estimate available"

        threshold = rotate_threshold * 100
        usage = estimate.usage_percent
        if usage >= threshold:
            if last_result is not None and last_result.success:
                freed = last_result.usage_before - last_result.usage_after
                return True, (
                    f"compaction helped ({freed:.1f}% freed) but still at "
                    f"{usage:.1f}% >= {threshold:.1f}%"
                )
            return True, f"context usage {usage:.1f}% >= rotation threshold {threshold:.1f}%"

        return False, (
            f"compaction reduced usage to {usage:.1f}% < rotation threshold "
            f"{threshold:.1f}%, rotation not needed"
        )
