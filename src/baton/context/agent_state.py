"""Per-agent tracking state and usage estimates."""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class EstimationMethod(str, Enum):
    """How a context estimate was produced."""

    ROBOT_MODE = "robot_mode"  # Direct report from the agent
    CUMULATIVE_TOKENS = "cumulative_tokens"
    MESSAGE_COUNT = "message_count"
    DURATION_ACTIVITY = "duration_activity"


@dataclass(frozen=True)
class ContextEstimate:
    """Point-in-time estimate of an agent's context window usage."""

    tokens_used: int
    context_limit: int
    confidence: float  # 0.0-1.0
    method: EstimationMethod
    model: str = ""
    updated_at: float = field(default_factory=time.time)

    @property
    def usage_percent(self) -> float:
        """Usage as a 0-100 percentage of the context limit."""
        if self.context_limit <= 0:
            return 0.0
        return self.tokens_used / self.context_limit * 100

    def age(self, now: Optional[float] = None) -> float:
        """Seconds since this estimate was produced."""
        return (now if now is not None else time.time()) - self.updated_at

    def to_dict(self) -> dict:
        return {
            "tokens_used": self.tokens_used,
            "context_limit": self.context_limit,
            "usage_percent": round(self.usage_percent, 1),
            "confidence": self.confidence,
            "method": self.method.value,
            "model": self.model,
            "updated_at": self.updated_at,
        }


@dataclass
class ContextState:
    """Mutable tracking state for one agent.

    Owned by the ContextMonitor. Estimators only ever see copies made
    with snapshot().
    """

    agent_id: str
    pane_id: str
    model: str
    message_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    session_start: float = field(default_factory=time.time)
    last_activity: Optional[float] = None
    estimate: Optional[ContextEstimate] = None  # Cached direct report
    last_report: Optional[str] = None
    last_report_at: Optional[float] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def session_age(self, now: Optional[float] = None) -> float:
        """Seconds since tracking started for this agent."""
        return (now if now is not None else time.time()) - self.session_start

    def snapshot(self) -> "ContextState":
        """Return a detached copy safe to read without the registry lock."""
        return replace(self)

    def reset(self, now: Optional[float] = None) -> None:
        """Start a fresh tracking window (used after a rotation)."""
        self.message_count = 0
        self.input_tokens = 0
        self.output_tokens = 0
        self.session_start = now if now is not None else time.time()
        self.last_activity = None
        self.estimate = None
        self.last_report = None
        self.last_report_at = None
