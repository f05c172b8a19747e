"""Rotation lifecycle state machine."""

import logging
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class RotationState(str, Enum):
    """Lifecycle of a single rotation attempt."""

    PENDING = "pending"  # Created, nothing sent yet
    IN_PROGRESS = "in_progress"  # Compaction, summary or swap underway
    COMPLETED = "completed"  # Replacement running, old pane gone
    FAILED = "failed"  # Gave up, old agent left as it was
    ABORTED = "aborted"  # Compaction made rotation unnecessary

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({RotationState.COMPLETED, RotationState.FAILED, RotationState.ABORTED})

# Type alias for state transition callbacks
TransitionCallback = Callable[[str, RotationState, RotationState], None]


class RotationAttempt:
    """Tracks the state of one rotation for one agent.

    States only move forward: pending -> in_progress -> terminal.
    Invalid transitions are refused, not raised.
    """

    VALID_TRANSITIONS: dict[RotationState, set[RotationState]] = {
        RotationState.PENDING: {RotationState.IN_PROGRESS},
        RotationState.IN_PROGRESS: {
            RotationState.COMPLETED,
            RotationState.FAILED,
            RotationState.ABORTED,
        },
        RotationState.COMPLETED: set(),
        RotationState.FAILED: set(),
        RotationState.ABORTED: set(),
    }

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        self._state = RotationState.PENDING
        self._listeners: list[TransitionCallback] = []

    @property
    def state(self) -> RotationState:
        """Current state (read-only)."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    def transition(self, new_state: RotationState) -> bool:
        """Move to a new state.

        Returns:
            True if transition succeeded, False if invalid transition.
        """
        old_state = self._state
        if new_state not in self.VALID_TRANSITIONS.get(old_state, set()):
            logger.warning(
                f"Invalid rotation transition for {self.agent_id}: "
                f"{old_state.value} -> {new_state.value}"
            )
            return False

        self._state = new_state
        logger.debug(f"Rotation of {self.agent_id}: {old_state.value} -> {new_state.value}")

        for listener in self._listeners:
            try:
                listener(self.agent_id, old_state, new_state)
            except Exception as e:
                logger.error(f"Error in rotation state listener: {e}")
        return True

    def on_transition(self, callback: TransitionCallback) -> None:
        """Register a callback called with (agent_id, old_state, new_state)."""
        self._listeners.append(callback)
