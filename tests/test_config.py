"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from baton.config import Config, ConfigError, IPCConfig, RotationConfig


class TestLoad:
    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        config = Config.load()
        assert config.rotation.warning_threshold == 0.80
        assert config.rotation.rotate_threshold == 0.95
        assert config.rotation.summary_max_tokens == 2000
        assert config.rotation.try_compact_first
        assert not config.condenser.enabled

    def test_from_file(self, temp_config: Path):
        config = Config.load(str(temp_config))
        assert config.rotation.warning_threshold == 0.7
        assert config.rotation.rotate_percent == pytest.approx(90.0)
        assert not config.rotation.try_compact_first
        assert config.estimator.tokens_per_message == 2000
        assert config.daemon.session == "proj"
        assert config.daemon.work_dir == "/src/proj"
        assert config.logging.level == "DEBUG"

    def test_agent_models_merge_with_defaults(self, temp_config: Path):
        config = Config.load(str(temp_config))
        assert config.agents.claude == "claude --dangerously-skip-permissions"
        assert config.agents.model_for("claude") == "claude-opus-4-5"
        assert config.agents.model_for("codex") == "gpt-5-codex"
        assert config.agents.model_for("aider") == ""
        assert config.agents.commands()["codex"] == "codex"

    def test_xdg_lookup(self, tmp_path, monkeypatch):
        config_dir = tmp_path / "baton"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text("daemon:\n  poll_interval: 5\n")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert Config.load().daemon.poll_interval == 5

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert Config.load(str(path)).rotation.enabled

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("rotation:\n  frobnicate: true\n")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            Config.load(str(path))


class TestValidate:
    @pytest.mark.parametrize(
        "rotation,message",
        [
            (dict(warning_threshold=1.2), "warning_threshold must be between 0 and 1"),
            (dict(rotate_threshold=-0.1), "rotate_threshold must be between 0 and 1"),
            (dict(warning_threshold=0.95, rotate_threshold=0.9), "must be below"),
            (dict(warning_threshold=0.9, rotate_threshold=0.9), "must be below"),
            (dict(summary_max_tokens=100), "summary_max_tokens"),
            (dict(summary_max_tokens=20000), "summary_max_tokens"),
            (dict(min_session_age_sec=-1), "min_session_age_sec"),
        ],
    )
    def test_rotation_errors(self, rotation, message):
        config = Config(rotation=RotationConfig(**rotation))
        with pytest.raises(ConfigError, match=message):
            config.validate()

    def test_min_reduction(self):
        config = Config()
        config.compaction.min_reduction = 0
        with pytest.raises(ConfigError, match="min_reduction"):
            config.validate()

    def test_poll_interval(self):
        config = Config()
        config.daemon.poll_interval = 0
        with pytest.raises(ConfigError, match="poll_interval"):
            config.validate()

    def test_defaults_are_valid(self):
        Config().validate()


class TestIPCConfig:
    def test_explicit_path(self):
        assert IPCConfig(socket_path="/tmp/x.sock").get_socket_path() == "/tmp/x.sock"

    def test_runtime_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))
        assert IPCConfig().get_socket_path() == f"{tmp_path}/baton.sock"

    def test_fallback(self, monkeypatch):
        monkeypatch.delenv("XDG_RUNTIME_DIR", raising=False)
        assert IPCConfig().get_socket_path() == "/tmp/baton.sock"
