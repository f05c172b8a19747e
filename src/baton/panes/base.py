"""Terminal pane capability consumed by the rotator."""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ..context.identity import parse_pane_title

# Type of panes whose title does not follow the agent naming convention
USER_PANE_TYPE = "user"


class PaneError(Exception):
    """A pane operation failed."""


@dataclass(frozen=True)
class Pane:
    """A terminal pane in a session."""

    id: str
    index: int
    title: str
    type: str = USER_PANE_TYPE  # Short agent type (cc, cod, gmi) or "user"
    variant: str = ""

    @property
    def is_agent(self) -> bool:
        return self.type != USER_PANE_TYPE

    @classmethod
    def from_title(cls, pane_id: str, index: int, title: str) -> "Pane":
        """Build a Pane, decoding agent type and variant from its title."""
        identity = parse_pane_title(title)
        if identity is None:
            return cls(id=pane_id, index=index, title=title)
        return cls(
            id=pane_id,
            index=index,
            title=title,
            type=identity.agent_type,
            variant=identity.variant,
        )


@runtime_checkable
class PaneSpawner(Protocol):
    """What the rotator needs from a terminal multiplexer.

    Every method raises PaneError on failure.
    """

    async def spawn_agent(self, session: str, agent_type: str, index: int, work_dir: str) -> str:
        """Start a new agent pane and return its pane id."""
        ...

    async def kill_pane(self, pane_id: str) -> None:
        ...

    async def send_keys(self, pane_id: str, text: str, submit: bool = True) -> None:
        """Type text into a pane, pressing Enter afterwards when submit is set."""
        ...

    async def get_panes(self, session: str) -> list[Pane]:
        ...

    async def capture_output(self, pane_id: str, lines: int) -> str:
        """Return the last `lines` lines of a pane's scrollback."""
        ...
