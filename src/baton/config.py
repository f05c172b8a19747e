"""Configuration loading and validation for baton."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import os

import yaml


class ConfigError(Exception):
    """Raised when configuration values are out of range or inconsistent."""


@dataclass
class RotationConfig:
    """When and how agents are rotated.

    Thresholds are fractions of the context window (0.95 means 95%).
    """

    enabled: bool = True
    warning_threshold: float = 0.80
    rotate_threshold: float = 0.95
    summary_max_tokens: int = 2000
    min_session_age_sec: float = 300.0
    try_compact_first: bool = True
    require_confirm: bool = False
    # Fixed waits in place of completion detection
    summary_wait_seconds: float = 5.0
    spawn_warmup_seconds: float = 3.0
    capture_lines: int = 100
    fallback_capture_lines: int = 300

    @property
    def warning_percent(self) -> float:
        return self.warning_threshold * 100

    @property
    def rotate_percent(self) -> float:
        return self.rotate_threshold * 100


@dataclass
class EstimatorConfig:
    """Tuning for the fallback estimation strategies."""

    tokens_per_message: int = 1500
    compaction_discount: float = 0.7
    tokens_per_minute_high: int = 1000
    tokens_per_minute_medium: int = 550
    tokens_per_minute_low: int = 100
    direct_report_max_age: float = 30.0


@dataclass
class CompactionConfig:
    """In-place compaction attempted before rotating."""

    min_reduction: float = 0.10
    builtin_timeout: float = 10.0
    summarize_timeout: float = 30.0


@dataclass
class CondenserConfig:
    """Optional LLM condensing of handoff summaries."""

    enabled: bool = False
    model: str = "claude-haiku-4-5-20251001"
    max_tokens: int = 1024
    timeout: float = 30.0  # Request timeout in seconds
    max_retries: int = 2  # Max retries for transient errors


@dataclass
class AgentsConfig:
    """Launch commands and default models per agent type."""

    claude: str = "claude"
    codex: str = "codex"
    gemini: str = "gemini"
    models: dict[str, str] = field(
        default_factory=lambda: {
            "claude": "claude-sonnet-4",
            "codex": "gpt-5-codex",
            "gemini": "gemini-2.0-flash",
        }
    )

    def commands(self) -> dict[str, str]:
        return {"claude": self.claude, "codex": self.codex, "gemini": self.gemini}

    def model_for(self, agent_type: str) -> str:
        return self.models.get(agent_type, "")


@dataclass
class DaemonConfig:
    """Supervised session and polling."""

    session: str = ""
    work_dir: str = "."
    poll_interval: float = 30.0


@dataclass
class IPCConfig:
    """IPC server configuration."""

    socket_path: Optional[str] = None

    def get_socket_path(self) -> str:
        """Get the socket path, using default if not specified."""
        if self.socket_path:
            return self.socket_path
        # Try XDG_RUNTIME_DIR first, fall back to /tmp
        runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
        if runtime_dir and os.path.isdir(runtime_dir) and os.access(runtime_dir, os.W_OK):
            return f"{runtime_dir}/baton.sock"
        return "/tmp/baton.sock"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    debug_to_file: bool = True  # Write JSON debug logs to ~/.local/share/baton/logs/
    use_colors: bool = True  # ANSI colors in console output


@dataclass
class Config:
    """Main configuration container."""

    rotation: RotationConfig = field(default_factory=RotationConfig)
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
    compaction: CompactionConfig = field(default_factory=CompactionConfig)
    condenser: CondenserConfig = field(default_factory=CondenserConfig)
    agents: AgentsConfig = field(default_factory=AgentsConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    ipc: IPCConfig = field(default_factory=IPCConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load configuration from file.

        Args:
            path: Optional path to config file. If not provided, searches
                  XDG config locations.

        Returns:
            Loaded configuration with defaults for missing values.

        Raises:
            ConfigError: If the loaded values fail validation.
        """
        config_path: Optional[Path] = None

        if path:
            config_path = Path(path)
        else:
            xdg_config = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
            user_config = Path(xdg_config) / "baton" / "config.yaml"

            if user_config.exists():
                config_path = user_config
            else:
                system_config = Path("/etc/baton/config.yaml")
                if system_config.exists():
                    config_path = system_config

        if config_path and config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            config = cls._from_dict(data)
        else:
            config = cls()

        config.validate()
        return config

    @staticmethod
    def _parse_agents(data: dict) -> AgentsConfig:
        """Parse agents config, merging per-type models over the defaults."""
        data = dict(data)  # shallow copy
        models = data.pop("models", None) or {}
        config = AgentsConfig(**data)
        config.models.update(models)
        return config

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        try:
            return cls(
                rotation=RotationConfig(**data.get("rotation", {})),
                estimator=EstimatorConfig(**data.get("estimator", {})),
                compaction=CompactionConfig(**data.get("compaction", {})),
                condenser=CondenserConfig(**data.get("condenser", {})),
                agents=cls._parse_agents(data.get("agents", {})),
                daemon=DaemonConfig(**data.get("daemon", {})),
                ipc=IPCConfig(**data.get("ipc", {})),
                logging=LoggingConfig(**data.get("logging", {})),
            )
        except TypeError as e:
            # Unknown keys in a section
            raise ConfigError(f"Invalid configuration: {e}") from e

    def validate(self) -> None:
        """Check cross-field constraints.

        Raises:
            ConfigError: On the first violated constraint.
        """
        rotation = self.rotation
        for name in ("warning_threshold", "rotate_threshold"):
            value = getattr(rotation, name)
            if not 0 <= value <= 1:
                raise ConfigError(f"rotation.{name} must be between 0 and 1, got {value}")
        if rotation.warning_threshold >= rotation.rotate_threshold:
            raise ConfigError(
                f"rotation.warning_threshold ({rotation.warning_threshold}) must be below "
                f"rotation.rotate_threshold ({rotation.rotate_threshold})"
            )
        if not 500 <= rotation.summary_max_tokens <= 10000:
            raise ConfigError(
                f"rotation.summary_max_tokens must be between 500 and 10000, "
                f"got {rotation.summary_max_tokens}"
            )
        if rotation.min_session_age_sec < 0:
            raise ConfigError(
                f"rotation.min_session_age_sec must not be negative, got {rotation.min_session_age_sec}"
            )
        if not 0 < self.compaction.min_reduction <= 1:
            raise ConfigError(
                f"compaction.min_reduction must be in (0, 1], got {self.compaction.min_reduction}"
            )
        if self.daemon.poll_interval <= 0:
            raise ConfigError(f"daemon.poll_interval must be positive, got {self.daemon.poll_interval}")
