"""Tests for agentradar.core.config — Config loading, overrides, hidden projects."""

from pathlib import Path

import pytest
import yaml

from agentradar.core.config import Config


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    """Set up a temp config directory."""
    config_path = tmp_path / "config.yaml"
    monkeypatch.setenv("RADAR_CONFIG", str(config_path))
    for var in ("RADAR_STORE_DIR", "RADAR_CLAUDE_DIR", "RADAR_POLL_INTERVAL", "RADAR_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


def _write_config(path: Path, data: dict):
    config_file = path / "config.yaml"
    config_file.write_text(yaml.dump(data))
    return config_file


class TestConfigLoad:
    def test_defaults(self, config_dir):
        cfg = Config.load()
        assert cfg.store_dir == "~/.agentradar"
        assert cfg.claude_dir == "~/.claude"
        assert cfg.poll_interval == 1.0
        assert cfg.activity_buffer_size == 50
        assert cfg.hidden_projects == []
        assert cfg.log_level == "WARNING"

    def test_load_from_yaml(self, config_dir):
        _write_config(config_dir, {
            "store_dir": "/tmp/radar",
            "claude_dir": "/tmp/claude",
            "poll_interval": 2.5,
            "debounce": 0.5,
            "activity_buffer_size": 10,
            "hidden_projects": ["/a", "/b"],
            "log_level": "debug",
        })
        cfg = Config.load()
        assert cfg.store_dir == "/tmp/radar"
        assert cfg.claude_dir == "/tmp/claude"
        assert cfg.poll_interval == 2.5
        assert cfg.debounce == 0.5
        assert cfg.activity_buffer_size == 10
        assert cfg.hidden_projects == ["/a", "/b"]
        assert cfg.log_level == "DEBUG"

    def test_env_overrides_yaml(self, config_dir, monkeypatch):
        _write_config(config_dir, {"store_dir": "/from/yaml", "poll_interval": 3})
        monkeypatch.setenv("RADAR_STORE_DIR", "/from/env")
        monkeypatch.setenv("RADAR_POLL_INTERVAL", "0.5")
        cfg = Config.load()
        assert cfg.store_dir == "/from/env"
        assert cfg.poll_interval == 0.5

    def test_bad_env_interval_ignored(self, config_dir, monkeypatch):
        monkeypatch.setenv("RADAR_POLL_INTERVAL", "soon")
        assert Config.load().poll_interval == 1.0

    def test_unknown_log_level_falls_back(self, config_dir):
        _write_config(config_dir, {"log_level": "chatty"})
        assert Config.load().log_level == "WARNING"

    def test_missing_config_file(self, config_dir):
        # No config file: defaults apply
        cfg = Config.load()
        assert cfg.store_dir is not None

    def test_unreadable_yaml_uses_defaults(self, config_dir):
        (config_dir / "config.yaml").write_text("store_dir: [unclosed")
        assert Config.load().store_dir == "~/.agentradar"

    def test_non_mapping_yaml_uses_defaults(self, config_dir):
        (config_dir / "config.yaml").write_text("- just\n- a list\n")
        assert Config.load().claude_dir == "~/.claude"


class TestDerivedPaths:
    def test_expands_tilde(self):
        cfg = Config(store_dir="~/radar")
        assert "~" not in str(cfg.resolved_store_dir)

    def test_store_layout(self, tmp_path):
        cfg = Config(store_dir=str(tmp_path))
        assert cfg.events_path == tmp_path / "events.jsonl"
        assert cfg.projects_dir == tmp_path / "projects"
        assert cfg.meta_path == tmp_path / "meta.json"


class TestSetConfig:
    def test_set_new_key(self, config_dir):
        Config.set_config("poll_interval", 5.0)
        data = yaml.safe_load((config_dir / "config.yaml").read_text())
        assert data["poll_interval"] == 5.0

    def test_set_preserves_other_keys(self, config_dir):
        _write_config(config_dir, {"store_dir": "/keep", "debounce": 1})
        Config.set_config("debounce", 2)
        data = yaml.safe_load((config_dir / "config.yaml").read_text())
        assert data == {"store_dir": "/keep", "debounce": 2}

    def test_set_creates_parent_dirs(self, tmp_path, monkeypatch):
        deep_path = tmp_path / "a" / "b" / "config.yaml"
        monkeypatch.setenv("RADAR_CONFIG", str(deep_path))
        Config.set_config("log_level", "INFO")
        assert deep_path.exists()


class TestHiddenProjects:
    def test_toggle_on_and_off(self, config_dir):
        assert Config.toggle_hidden_project("/work/app") is True
        assert Config.load().hidden_projects == ["/work/app"]
        assert Config.toggle_hidden_project("/work/app") is False
        assert Config.load().hidden_projects == []

    def test_toggle_keeps_other_entries(self, config_dir):
        _write_config(config_dir, {"hidden_projects": ["/a"]})
        Config.toggle_hidden_project("/b")
        assert Config.load().hidden_projects == ["/a", "/b"]
