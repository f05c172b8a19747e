"""Agent naming conventions.

Agent panes are titled ``session__type_index`` with an optional
``_variant`` suffix and ``[tag,...]`` list, e.g. ``proj__cc_2_opus[api]``.
The title doubles as the agent id.
"""

import re
from dataclasses import dataclass
from typing import Optional

_SHORT_TYPES = {
    "claude": "cc",
    "cc": "cc",
    "codex": "cod",
    "cod": "cod",
    "gemini": "gmi",
    "gmi": "gmi",
}

_LONG_TYPES = {
    "cc": "claude",
    "cod": "codex",
    "gmi": "gemini",
}

KNOWN_SHORT_TYPES = frozenset(_LONG_TYPES)

UNKNOWN_AGENT_TYPE = "unknown"

PANE_TITLE_RE = re.compile(
    r"^(?P<session>.+)__(?P<type>[A-Za-z][A-Za-z0-9]*)_(?P<index>\d+)"
    r"(?:_(?P<variant>[A-Za-z0-9._/@:+-]+))?"
    r"(?:\[(?P<tags>[^\]]*)\])?$"
)


@dataclass(frozen=True)
class PaneIdentity:
    """Fields decoded from an agent pane title."""

    session: str
    agent_type: str  # Short form: cc, cod, gmi
    index: int
    variant: str = ""
    tags: tuple[str, ...] = ()

    @property
    def long_type(self) -> str:
        return agent_type_long(self.agent_type)


def agent_type_short(agent_type: str) -> str:
    """claude -> cc, codex -> cod, gemini -> gmi. Unknown types pass through."""
    return _SHORT_TYPES.get(agent_type.lower(), agent_type)


def agent_type_long(agent_type: str) -> str:
    """cc -> claude, cod -> codex, gmi -> gemini. Unknown types pass through."""
    return _LONG_TYPES.get(agent_type.lower(), agent_type)


def format_pane_name(session: str, agent_type: str, index: int, variant: str = "") -> str:
    name = f"{session}__{agent_type_short(agent_type)}_{index}"
    if variant:
        name = f"{name}_{variant}"
    return name


def parse_pane_title(title: str) -> Optional[PaneIdentity]:
    """Decode an agent pane title. Returns None for non-agent panes."""
    match = PANE_TITLE_RE.match(title)
    if match is None:
        return None
    short = match.group("type")
    if short not in KNOWN_SHORT_TYPES:
        return None
    tags = tuple(t.strip() for t in (match.group("tags") or "").split(",") if t.strip())
    return PaneIdentity(
        session=match.group("session"),
        agent_type=short,
        index=int(match.group("index")),
        variant=match.group("variant") or "",
        tags=tags,
    )


def extract_agent_index(agent_id: str) -> int:
    """Slot number of an agent id: the last all-digit ``_`` segment, default 1.

    >>> extract_agent_index("myproject__cc_2")
    2
    """
    parts = agent_id.split("_")
    if len(parts) < 2:
        return 1
    for part in reversed(parts):
        if part.isdigit():
            return int(part)
    return 1


def derive_agent_type(agent_id: str) -> str:
    """Long agent type from an id, e.g. ``proj__cod_1`` -> ``codex``."""
    _, sep, rest = agent_id.partition("__")
    if not sep or not rest:
        return UNKNOWN_AGENT_TYPE
    return agent_type_long(rest.split("_")[0])
