"""Pytest configuration and fixtures for baton tests."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from baton.context.monitor import ContextMonitor
from baton.context.summary import PROMPT_CLOSING_LINE
from baton.panes.base import Pane

AGENT_REPLY = """\
## CURRENT TASK
Adding retry support to the HTTP client

## PROGRESS
- Retry loop written
- Tests still missing

## KEY DECISIONS
- Exponential backoff capped at 10s

## ACTIVE FILES
- src/client.py
- tests/test_client.py

## BLOCKERS
- None
"""


class FakeSpawner:
    """Pane spawner whose methods are AsyncMocks.

    By default the session holds one Claude agent ``proj__cc_1`` in pane %1
    that answers the summary prompt with AGENT_REPLY.
    """

    def __init__(self, panes=None, reply: str = AGENT_REPLY) -> None:
        if panes is None:
            panes = [
                Pane.from_title("%0", 0, "shell"),
                Pane.from_title("%1", 1, "proj__cc_1"),
            ]
        self.spawn_agent = AsyncMock(return_value="%9")
        self.kill_pane = AsyncMock(return_value=None)
        self.send_keys = AsyncMock(return_value=None)
        self.get_panes = AsyncMock(return_value=panes)
        self.capture_output = AsyncMock(
            return_value=f"> {PROMPT_CLOSING_LINE}\n\n{reply}" if reply else ""
        )


@pytest.fixture
def monitor() -> ContextMonitor:
    """Monitor with default estimators and 80/95% thresholds."""
    return ContextMonitor(warning_threshold=80.0, rotate_threshold=95.0)


@pytest.fixture
def fake_spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def temp_config(tmp_path: Path) -> Path:
    """Create temporary config file.

    Returns:
        Path to config file.
    """
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
rotation:
  warning_threshold: 0.7
  rotate_threshold: 0.9
  try_compact_first: false
estimator:
  tokens_per_message: 2000
agents:
  claude: claude --dangerously-skip-permissions
  models:
    claude: claude-opus-4-5
daemon:
  session: proj
  work_dir: /src/proj
logging:
  level: DEBUG
"""
    )
    return config_path
