"""
agentradar API — importable functions for all operations.

Every function returns JSON-serializable dicts/lists.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional


_DEFAULT_CONFIG_TEMPLATE = """\
# agentradar configuration

# Where merged history, meta.json and the hook event log live
# store_dir: "~/.agentradar"

# Agent runtime state to observe (todos/, tasks/, projects/)
# claude_dir: "~/.claude"

# Refresh loop: full rescan interval and change-burst debounce (seconds)
poll_interval: 1.0
debounce: 0.2

# Recent activity kept per project for alerting
activity_buffer_size: 50

# Projects left out of `radar projects` (toggle with `radar hide <path>`)
hidden_projects: []

log_level: "WARNING"
"""


def init() -> Dict[str, Any]:
    """Create the store directory and a default config.yaml."""
    from .core.config import Config, config_path

    path = config_path()
    results: Dict[str, Any] = {"created": [], "existing": []}

    for d in (path.parent, Config.load().projects_dir):
        if d.exists():
            results["existing"].append(str(d))
        else:
            d.mkdir(parents=True)
            results["created"].append(str(d))

    if path.exists():
        results["existing"].append(str(path))
    else:
        path.write_text(_DEFAULT_CONFIG_TEMPLATE)
        results["created"].append(str(path))

    return results


# ── Serialization ─────────────────────────────────────────────────────────────


def item_to_dict(tracked) -> Dict[str, Any]:
    out = {"kind": tracked.item.kind}
    out.update(asdict(tracked.item))
    out.update({
        "first_seen_at": tracked.first_seen_at,
        "last_seen_at": tracked.last_seen_at,
        "status_changed_at": tracked.status_changed_at,
        "gone": tracked.gone,
        "gone_at": tracked.gone_at,
    })
    return out


def project_to_dict(view, *, detail: bool = True) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "project_path": view.project_path,
        "project_name": view.project_name,
        "git_branch": view.git_branch,
        "total_tasks": view.total_tasks,
        "completed_tasks": view.completed_tasks,
        "in_progress_tasks": view.in_progress_tasks,
        "agents": view.agents,
        "last_activity": view.last_activity,
        "is_active": view.is_active,
        "total_sessions": view.total_sessions,
        "active_sessions": view.active_sessions,
        "has_history": view.has_history,
        "gone_session_count": view.gone_session_count,
        "alerts": [asdict(a) for a in view.activity_alerts],
    }
    if detail:
        out["sessions"] = [
            {
                "id": s.id,
                "source": s.source,
                "last_modified": s.last_modified,
                "gone": s.gone,
                "gone_at": s.gone_at,
                "meta": asdict(s.meta) if s.meta else None,
                "items": [item_to_dict(t) for t in s.items],
            }
            for s in view.sessions
        ]
        out["hook_sessions"] = [asdict(h) for h in view.hook_sessions]
        out["activity"] = [asdict(e) for e in view.activity_log]
    return out


# ── Cycle ─────────────────────────────────────────────────────────────────────


def _cycle():
    from .worker import RefreshWorker

    worker = RefreshWorker()
    try:
        # Leave the hook log for `watch` to truncate; a fresh store replays it
        return worker.run_cycle(truncate=False)
    finally:
        worker.close()


def sync() -> Dict[str, Any]:
    """Run one refresh cycle: ingest hook events, scan, merge, persist."""
    result = _cycle()
    return {
        "events_consumed": result.events_consumed,
        "events_applied": result.events_applied,
        "projects": len(result.projects),
        "files_written": result.files_written,
        "alerts": sum(len(p.activity_alerts) for p in result.projects),
    }


def projects(*, include_hidden: bool = False) -> List[Dict[str, Any]]:
    """Summary rows for every known project, most recent first."""
    from .core.config import Config
    from .core.models import ts_key

    hidden = set() if include_hidden else set(Config.load().hidden_projects)
    views = [p for p in _cycle().projects if p.project_path not in hidden]
    views.sort(key=lambda p: ts_key(p.last_activity), reverse=True)
    return [project_to_dict(p, detail=False) for p in views]


def show(project_path: str) -> Dict[str, Any]:
    """Full merged view of one project, live and historical."""
    for view in _cycle().projects:
        if view.project_path == project_path:
            return project_to_dict(view)
    return {"error": f"Project not found: {project_path}"}


def alerts() -> List[Dict[str, Any]]:
    """Activity alerts across all projects, errors first."""
    from .core.models import ts_key

    found = [asdict(a) for p in _cycle().projects for a in p.activity_alerts]
    found.sort(key=lambda a: (a["severity"] != "error", ts_key(a["ts"])))
    return found


def hide(project_path: str) -> Dict[str, Any]:
    """Toggle whether a project is listed by `projects()`."""
    from .core.config import Config

    hidden = Config.toggle_hidden_project(project_path)
    return {"project_path": project_path, "hidden": hidden}


def status() -> Dict[str, Any]:
    """Config paths, store metadata and pending hook events."""
    from .core.config import Config, config_path
    from .core.persistence import ProjectFiles

    cfg = Config.load()
    files = ProjectFiles(cfg.resolved_store_dir)
    meta = files.load_meta()

    result: Dict[str, Any] = {
        "config_path": str(config_path()),
        "store_dir": str(cfg.resolved_store_dir),
        "claude_dir": str(cfg.resolved_claude_dir),
        "events_path": str(cfg.events_path),
        "projects": len(files.load()),
        "hidden_projects": len(cfg.hidden_projects),
    }
    try:
        result["events_pending_bytes"] = cfg.events_path.stat().st_size
    except OSError:
        result["events_pending_bytes"] = 0
    if meta is not None:
        result["schema_version"] = meta.schema_version
        result["last_scan_at"] = meta.last_scan_at
    return result
