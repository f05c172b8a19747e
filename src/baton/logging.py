"""Two-tier structured logging for baton.

Provides:
- Console: Minimal output (INFO+) for human readability
- Debug file: JSON Lines format with full context for debugging rotations

Records emitted while a rotation is running carry the id of the agent
being rotated, taken from the ``current_agent`` context variable.
"""

import contextvars
import json
import logging
import os
import platform
import sys
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

# Agent currently being rotated, injected into every record
current_agent: contextvars.ContextVar[str] = contextvars.ContextVar("current_agent", default="")

# Third-party loggers that are only interesting when something breaks
QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "asyncio")


def _component(logger_name: str) -> str:
    """"baton.context.rotation" -> "rotation"."""
    return logger_name.rsplit(".", 1)[-1]


class JSONFormatter(logging.Formatter):
    """Formats log records as JSON Lines for structured debugging.

    Output format:
    {"ts":"2026-02-04T10:15:32.123","level":"INFO","component":"rotation",
     "agent":"proj__cc_1","msg":"Spawned claude agent 1 in pane %7","ctx":{...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "component": _component(record.name),
            "msg": record.getMessage(),
        }
        agent = current_agent.get()
        if agent:
            entry["agent"] = agent
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        # extra={"ctx": {...}}
        ctx = getattr(record, "ctx", None)
        if ctx is not None:
            entry["ctx"] = ctx
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """One short line per record: ``12:00:01 [WRN] rotation[proj__cc_1]: ...``."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    LEVEL_SHORT = {
        "DEBUG": "DBG",
        "INFO": "INF",
        "WARNING": "WRN",
        "ERROR": "ERR",
        "CRITICAL": "CRT",
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        level = self.LEVEL_SHORT.get(record.levelname, record.levelname[:3])
        source = _component(record.name)
        agent = current_agent.get()
        if agent:
            source = f"{source}[{agent}]"
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        line = f"{stamp} [{level}] {source}: {record.getMessage()}"
        if self.use_colors:
            line = f"{self.COLORS.get(record.levelname, '')}{line}{self.RESET}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def get_debug_log_path() -> Path:
    """Get the path to the debug log file (XDG compliant)."""
    data_home = os.environ.get("XDG_DATA_HOME", os.path.expanduser("~/.local/share"))
    return Path(data_home) / "baton" / "logs" / "debug.log"


def rotate_debug_log(log_path: Path) -> None:
    """Keep one previous run: debug.log becomes debug.log.1."""
    if not log_path.exists():
        return
    previous = log_path.with_suffix(".log.1")
    previous.unlink(missing_ok=True)
    log_path.rename(previous)


def log_session_header(config: Any, logger: logging.Logger) -> None:
    """Log startup info so each debug log is self-contained."""
    header = {
        "session_start": datetime.now().isoformat(),
        "python_version": platform.python_version(),
        "platform": platform.system(),
        "platform_version": platform.release(),
        "config": asdict(config) if hasattr(config, "__dataclass_fields__") else str(config),
    }
    logger.info("=== baton session started ===", extra={"ctx": header})


def setup_logging(config: Any, console_level: Optional[str] = None) -> None:
    """Install the console and debug-file handlers on the root logger.

    Args:
        config: baton Config; its ``logging`` section picks level, colors
            and whether the JSON debug file is written.
        console_level: Overrides ``config.logging.level`` when given.
    """
    settings = config.logging
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)  # Handlers do the filtering
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, (console_level or settings.level).upper()))
    console.setFormatter(ConsoleFormatter(use_colors=settings.use_colors))
    root.addHandler(console)

    if settings.debug_to_file:
        log_path = get_debug_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        rotate_debug_log(log_path)

        debug_file = logging.FileHandler(log_path, mode="w", encoding="utf-8")
        debug_file.setLevel(logging.DEBUG)
        debug_file.setFormatter(JSONFormatter())
        root.addHandler(debug_file)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    log_session_header(config, logging.getLogger("baton"))


def _read_log_lines() -> Optional[list[str]]:
    log_path = get_debug_log_path()
    if not log_path.exists():
        return None
    with open(log_path, "r", encoding="utf-8") as f:
        return f.readlines()


def _matching(
    lines: list[str],
    component: Optional[str],
    level: Optional[str],
    agent: Optional[str],
) -> Iterator[str]:
    wanted = {"component": component, "level": level, "agent": agent}
    wanted = {key: value for key, value in wanted.items() if value}
    for line in lines:
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if all(entry.get(key) == value for key, value in wanted.items()):
            yield line


def get_debug_log_contents(lines: int = 200) -> str:
    """Read the last N lines of the debug log."""
    all_lines = _read_log_lines()
    if all_lines is None:
        return "No debug log found."
    return "".join(all_lines[-lines:])


def get_filtered_logs(
    component: Optional[str] = None,
    level: Optional[str] = None,
    agent: Optional[str] = None,
    lines: int = 100,
) -> str:
    """Last N debug log records matching every given filter.

    Args:
        component: e.g. "rotation", "monitor", "tmux"
        level: e.g. "ERROR", "WARNING"
        agent: Records logged while this agent was being rotated
        lines: Maximum lines to return
    """
    all_lines = _read_log_lines()
    if all_lines is None:
        return "No debug log found."
    return "".join(list(_matching(all_lines, component, level, agent))[-lines:])
