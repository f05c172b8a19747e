"""IPC protocol definitions for daemon-CLI communication.

One JSON object per line in each direction.
"""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class CommandType(str, Enum):
    """Available IPC commands."""

    STATUS = "status"
    AGENTS = "agents"  # Per-agent usage estimates
    ROTATE = "rotate"  # Manual rotation of one agent
    HISTORY = "history"
    CLEAR_HISTORY = "clear_history"
    RECORD = "record"  # Add message/token counts for an agent
    REPORT = "report"  # Feed a direct context report for an agent
    DEBUG_DUMP = "debug_dump"
    SHUTDOWN = "shutdown"


class ResponseStatus(str, Enum):
    """Response status codes."""

    OK = "ok"
    ERROR = "error"


@dataclass
class Command:
    """Command sent from CLI to daemon."""

    type: CommandType
    args: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize command to JSON."""
        return json.dumps({"type": self.type.value, "args": self.args})

    @classmethod
    def from_json(cls, data: str) -> "Command":
        """Deserialize command from JSON."""
        parsed = json.loads(data)
        return cls(type=CommandType(parsed["type"]), args=parsed.get("args") or {})


class _JSONResponse:
    """to_json/from_json shared by response dataclasses."""

    def to_json(self) -> str:
        d = asdict(self)
        d["status"] = self.status.value
        return json.dumps(d)

    @classmethod
    def from_json(cls, data: str):
        parsed = json.loads(data)
        parsed["status"] = ResponseStatus(parsed["status"])
        return cls(**parsed)


@dataclass
class StatusResponse(_JSONResponse):
    """Status information from daemon."""

    status: ResponseStatus
    session: str
    uptime_seconds: float
    rotation_enabled: bool
    agents_tracked: int
    rotations: int
    agents_needing_rotation: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class SimpleResponse(_JSONResponse):
    """Simple OK/Error response."""

    status: ResponseStatus
    message: str
    error: Optional[str] = None


@dataclass
class DataResponse(_JSONResponse):
    """Response carrying structured results (agents, history, rotation)."""

    status: ResponseStatus
    data: Any
    message: str = ""
    error: Optional[str] = None


@dataclass
class DebugDumpResponse(_JSONResponse):
    """Debug log dump response."""

    status: ResponseStatus
    log_path: str
    lines: int
    content: str
    error: Optional[str] = None


# Type alias for any response
Response = Union[StatusResponse, SimpleResponse, DataResponse, DebugDumpResponse]
