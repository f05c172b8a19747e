"""Context window monitoring across tracked agents."""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

from .agent_state import ContextEstimate, ContextState, EstimationMethod
from .estimators import (
    ContextEstimator,
    DirectReportEstimator,
    default_estimators,
    parse_robot_mode_context,
)

logger = logging.getLogger(__name__)


class RWLock:
    """Reader/writer lock: many concurrent readers or a single writer.

    Writers are preferred once waiting so a steady stream of readers
    cannot starve registry updates.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class AgentContextInfo:
    """An agent matched by a threshold scan."""

    agent_id: str
    pane_id: str
    model: str
    estimate: ContextEstimate
    needs_warning: bool
    needs_rotation: bool

    def to_dict(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "pane_id": self.pane_id,
            "model": self.model,
            "estimate": self.estimate.to_dict(),
            "needs_warning": self.needs_warning,
            "needs_rotation": self.needs_rotation,
        }


class ContextMonitor:
    """Registry of tracked agents with best-available usage estimates.

    Thresholds are percentages (0-100). Every public method takes the
    registry lock; estimation runs on snapshots outside of it.

    Example:
        monitor = ContextMonitor(warning_threshold=80.0, rotate_threshold=95.0)
        monitor.register_agent("proj__cc_1", "%3", "claude-sonnet-4")
        monitor.record_message("proj__cc_1", input_tokens=1200, output_tokens=800)
        estimate = monitor.get_estimate("proj__cc_1")
    """

    # A cached direct report is trusted as-is for this long unless a
    # DirectReportEstimator in the set says otherwise
    DEFAULT_REPORT_MAX_AGE = 30.0

    def __init__(
        self,
        estimators: Optional[Sequence[ContextEstimator]] = None,
        warning_threshold: float = 80.0,
        rotate_threshold: float = 95.0,
    ) -> None:
        if estimators is None:
            estimators = default_estimators()
        # Python's sort is stable, so equal confidences keep their given order
        self._estimators = sorted(estimators, key=lambda e: e.confidence, reverse=True)
        self._report_max_age = next(
            (e.max_age for e in self._estimators if isinstance(e, DirectReportEstimator)),
            self.DEFAULT_REPORT_MAX_AGE,
        )
        self._warning_threshold = warning_threshold
        self._rotate_threshold = rotate_threshold
        self._states: dict[str, ContextState] = {}
        self._lock = RWLock()

    @property
    def warning_threshold(self) -> float:
        return self._warning_threshold

    @property
    def rotate_threshold(self) -> float:
        return self._rotate_threshold

    @property
    def estimators(self) -> list[ContextEstimator]:
        return list(self._estimators)

    # --- registry mutations ---

    def register_agent(self, agent_id: str, pane_id: str, model: str) -> ContextState:
        """Register an agent, or update pane/model of a known one.

        The session clock only starts on first registration.
        """
        with self._lock.write():
            state = self._states.get(agent_id)
            if state is None:
                state = ContextState(agent_id=agent_id, pane_id=pane_id, model=model)
                self._states[agent_id] = state
                logger.info(f"Tracking agent {agent_id} (pane {pane_id}, model {model or 'unknown'})")
            else:
                state.pane_id = pane_id
                state.model = model
            return state.snapshot()

    def unregister_agent(self, agent_id: str) -> None:
        with self._lock.write():
            if self._states.pop(agent_id, None) is not None:
                logger.info(f"Stopped tracking agent {agent_id}")

    def clear(self) -> None:
        with self._lock.write():
            self._states.clear()

    def record_message(self, agent_id: str, input_tokens: int = 0, output_tokens: int = 0) -> None:
        """Count one message exchange. Unknown agents are ignored."""
        with self._lock.write():
            state = self._states.get(agent_id)
            if state is None:
                return
            state.message_count += 1
            state.input_tokens += input_tokens
            state.output_tokens += output_tokens
            state.last_activity = time.time()

    def update_from_robot_mode(self, agent_id: str, output: str) -> Optional[ContextEstimate]:
        """Store a direct report from the agent and cache it if it parses."""
        with self._lock.write():
            state = self._states.get(agent_id)
            if state is None:
                return None
            now = time.time()
            estimate = parse_robot_mode_context(output, model=state.model, now=now)
            if estimate is None:
                logger.debug(f"No context report found in output for {agent_id}")
                return None
            state.last_report = output
            state.last_report_at = now
            state.estimate = estimate
            logger.debug(
                f"Direct report for {agent_id}: {estimate.tokens_used}/{estimate.context_limit} "
                f"({estimate.usage_percent:.1f}%)"
            )
            return estimate

    def reset_agent(self, agent_id: str) -> None:
        """Start a fresh tracking window, e.g. right after a rotation."""
        with self._lock.write():
            state = self._states.get(agent_id)
            if state is not None:
                state.reset()
                logger.debug(f"Reset context tracking for {agent_id}")

    # --- queries ---

    def get_state(self, agent_id: str) -> Optional[ContextState]:
        """Snapshot of an agent's state, or None if not tracked."""
        with self._lock.read():
            state = self._states.get(agent_id)
            return state.snapshot() if state is not None else None

    def count(self) -> int:
        with self._lock.read():
            return len(self._states)

    def agent_ids(self) -> list[str]:
        with self._lock.read():
            return sorted(self._states)

    def get_estimate(self, agent_id: str) -> Optional[ContextEstimate]:
        """Best available estimate for an agent, or None without evidence."""
        state = self.get_state(agent_id)
        if state is None:
            return None
        return self._estimate(state)

    def get_all_estimates(self) -> dict[str, ContextEstimate]:
        results = {}
        for state in self._snapshot_all():
            estimate = self._estimate(state)
            if estimate is not None:
                results[state.agent_id] = estimate
        return results

    def agents_above_threshold(self, threshold: float) -> list[AgentContextInfo]:
        """Agents whose usage is at or above `threshold` percent.

        Sorted by confidence (highest first), then agent id.
        """
        results = []
        for state in self._snapshot_all():
            estimate = self._estimate(state)
            if estimate is None or estimate.usage_percent < threshold:
                continue
            results.append(
                AgentContextInfo(
                    agent_id=state.agent_id,
                    pane_id=state.pane_id,
                    model=state.model,
                    estimate=estimate,
                    needs_warning=estimate.usage_percent >= self._warning_threshold,
                    needs_rotation=estimate.usage_percent >= self._rotate_threshold,
                )
            )
        results.sort(key=lambda info: (-info.estimate.confidence, info.agent_id))
        return results

    def _snapshot_all(self) -> list[ContextState]:
        with self._lock.read():
            return [state.snapshot() for state in self._states.values()]

    def _estimate(self, state: ContextState) -> Optional[ContextEstimate]:
        now = time.time()
        cached = state.estimate
        if (
            cached is not None
            and cached.method == EstimationMethod.ROBOT_MODE
            and cached.age(now) <= self._report_max_age
        ):
            return cached

        for estimator in self._estimators:
            estimate = estimator.estimate(state, now=now)
            if estimate is not None:
                return estimate
        return None
