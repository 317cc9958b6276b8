"""Configuration for agentradar."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import yaml


_DEFAULT_STORE_DIR = "~/.agentradar"
_DEFAULT_CLAUDE_DIR = "~/.claude"
_DEFAULT_CONFIG_PATH = "~/.agentradar/config.yaml"

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def config_path(path: Optional[str] = None) -> Path:
    return Path(path or os.getenv("RADAR_CONFIG", _DEFAULT_CONFIG_PATH)).expanduser()


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return {}
    return data if isinstance(data, dict) else {}


@dataclass
class Config:
    # Where the radar keeps its own state (projects/, meta.json, events.jsonl)
    store_dir: str = _DEFAULT_STORE_DIR

    # Agent runtime state being observed
    claude_dir: str = _DEFAULT_CLAUDE_DIR

    # Refresh loop
    poll_interval: float = 1.0
    debounce: float = 0.2

    activity_buffer_size: int = 50
    hidden_projects: List[str] = field(default_factory=list)
    log_level: str = "WARNING"

    @classmethod
    def load(cls, path: Optional[str] = None) -> Config:
        """Load config from YAML file, falling back to defaults."""
        data = _read_yaml(config_path(path))

        cfg = cls()

        if "store_dir" in data:
            cfg.store_dir = str(data["store_dir"])
        if "claude_dir" in data:
            cfg.claude_dir = str(data["claude_dir"])
        if "poll_interval" in data:
            cfg.poll_interval = float(data["poll_interval"])
        if "debounce" in data:
            cfg.debounce = float(data["debounce"])
        if "activity_buffer_size" in data:
            cfg.activity_buffer_size = max(1, int(data["activity_buffer_size"]))
        if isinstance(data.get("hidden_projects"), list):
            cfg.hidden_projects = [str(p) for p in data["hidden_projects"]]
        if "log_level" in data:
            cfg.log_level = _normalize_log_level(str(data["log_level"]), cfg.log_level)

        # Environment overrides
        if env_store := os.getenv("RADAR_STORE_DIR"):
            cfg.store_dir = env_store
        if env_claude := os.getenv("RADAR_CLAUDE_DIR"):
            cfg.claude_dir = env_claude
        if env_interval := os.getenv("RADAR_POLL_INTERVAL"):
            try:
                cfg.poll_interval = float(env_interval)
            except ValueError:
                pass
        if env_level := os.getenv("RADAR_LOG_LEVEL"):
            cfg.log_level = _normalize_log_level(env_level, cfg.log_level)

        return cfg

    @property
    def resolved_store_dir(self) -> Path:
        return Path(self.store_dir).expanduser()

    @property
    def resolved_claude_dir(self) -> Path:
        return Path(self.claude_dir).expanduser()

    @property
    def events_path(self) -> Path:
        return self.resolved_store_dir / "events.jsonl"

    @property
    def projects_dir(self) -> Path:
        return self.resolved_store_dir / "projects"

    @property
    def meta_path(self) -> Path:
        return self.resolved_store_dir / "meta.json"

    @staticmethod
    def set_config(key: str, value: Any, path: Optional[str] = None) -> None:
        """Set one key in config.yaml, preserving the others."""
        target = config_path(path)
        data = _read_yaml(target)
        data[key] = value
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    @staticmethod
    def toggle_hidden_project(project_path: str, path: Optional[str] = None) -> bool:
        """Toggle a project's hidden state. Returns True if now hidden."""
        data = _read_yaml(config_path(path))
        hidden = data.get("hidden_projects")
        hidden = [str(p) for p in hidden] if isinstance(hidden, list) else []

        if project_path in hidden:
            hidden.remove(project_path)
            now_hidden = False
        else:
            hidden.append(project_path)
            now_hidden = True

        Config.set_config("hidden_projects", hidden, path)
        return now_hidden


def _normalize_log_level(value: str, fallback: str) -> str:
    normalized = value.strip().upper()
    return normalized if normalized in _LOG_LEVELS else fallback
