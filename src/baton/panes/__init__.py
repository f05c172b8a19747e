"""Terminal pane capability and its tmux implementation."""

from .base import Pane, PaneError, PaneSpawner
from .tmux import TmuxPaneSpawner

__all__ = ["Pane", "PaneError", "PaneSpawner", "TmuxPaneSpawner"]
