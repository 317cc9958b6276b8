"""
Snapshot scanner — one full read of the agent runtime's on-disk state.

Reads ~/.claude/todos/*.json (TodoWrite lists), ~/.claude/tasks/<session>/*.json
(TaskCreate files) and ~/.claude/projects/*/sessions-index.json (session →
project mapping), and groups the sessions into live projects.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from ..core.models import (
    SOURCE_TASKS,
    SOURCE_TODOS,
    LiveProject,
    LiveSession,
    SessionMeta,
    TaskItem,
    TodoItem,
    coerce_owner,
    coerce_status,
)

logger = logging.getLogger(__name__)

_FIRST_PROMPT_CHARS = 80


def scan_projects(claude_dir: Union[str, Path]) -> List[LiveProject]:
    """Scan todos and tasks and group the sessions by project path.

    Sessions whose project cannot be resolved from sessions-index.json
    are left out; the hook channel still picks them up by working dir.
    """
    root = Path(claude_dir).expanduser()
    index = build_session_index(root / "projects")
    sessions = scan_todos(root / "todos", index) + scan_tasks(root / "tasks", index)

    projects: Dict[str, LiveProject] = {}
    for session in sessions:
        if session.meta is None:
            logger.debug(f"No project known for session {session.id[:8]}")
            continue
        project = projects.get(session.meta.project_path)
        if project is None:
            project = LiveProject(
                project_path=session.meta.project_path,
                project_name=session.meta.project_name,
            )
            projects[project.project_path] = project
        project.sessions.append(session)
        if session.last_modified and (
            project.last_activity is None or session.last_modified > project.last_activity
        ):
            project.last_activity = session.last_modified

    return sorted(projects.values(), key=lambda p: p.last_activity or "", reverse=True)


def build_session_index(projects_dir: Path) -> Dict[str, SessionMeta]:
    """Map session id → SessionMeta.

    sessions-index.json gives rich metadata; bare <session>.jsonl files in
    the same directory inherit the project path learned from the index.
    """
    index: Dict[str, SessionMeta] = {}
    for project_dir in _safe_iterdir(projects_dir):
        if not project_dir.is_dir():
            continue

        known_path: Optional[str] = None
        data = _read_json(project_dir / "sessions-index.json")
        entries = data.get("entries") if isinstance(data, dict) else None
        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict) or not entry.get("sessionId"):
                continue
            if entry.get("projectPath"):
                known_path = str(entry["projectPath"])
            project_path = str(entry.get("projectPath") or known_path or project_dir.name)
            first_prompt = entry.get("firstPrompt")
            index[str(entry["sessionId"])] = SessionMeta(
                project_path=project_path,
                project_name=_basename(project_path),
                summary=entry.get("summary"),
                first_prompt=first_prompt[:_FIRST_PROMPT_CHARS] if isinstance(first_prompt, str) else None,
                git_branch=entry.get("gitBranch"),
            )

        if not known_path:
            continue
        for f in project_dir.glob("*.jsonl"):
            if f.stem not in index:
                index[f.stem] = SessionMeta(
                    project_path=known_path,
                    project_name=_basename(known_path),
                )

    return index


def scan_todos(todos_dir: Path, index: Dict[str, SessionMeta]) -> List[LiveSession]:
    """Non-empty todo lists, one file per session: <session>-agent-<agent>.json"""
    results: List[LiveSession] = []
    for path in _safe_iterdir(todos_dir):
        if path.suffix != ".json":
            continue
        data = _read_json(path)
        if not isinstance(data, list) or not data:
            continue
        items = [
            TodoItem(
                content=str(entry["content"]),
                status=coerce_status(entry.get("status")),
                active_form=entry.get("activeForm"),
            )
            for entry in data
            if isinstance(entry, dict) and entry.get("content")
        ]
        if not items:
            continue
        session_id = path.stem.split("-agent-")[0]
        results.append(LiveSession(
            id=session_id,
            source=SOURCE_TODOS,
            items=items,
            last_modified=_mtime(path),
            meta=index.get(session_id),
        ))
    return results


def scan_tasks(tasks_dir: Path, index: Dict[str, SessionMeta]) -> List[LiveSession]:
    """Task sessions: one directory per session, one JSON file per task."""
    results: List[LiveSession] = []
    for session_dir in _safe_iterdir(tasks_dir):
        if not session_dir.is_dir():
            continue
        items: List[TaskItem] = []
        latest: Optional[str] = None
        for path in session_dir.glob("*.json"):
            task = _task_from_json(_read_json(path))
            if task is None:
                continue
            items.append(task)
            mod = _mtime(path)
            if mod and (latest is None or mod > latest):
                latest = mod
        if not items:
            continue
        items.sort(key=_task_sort_key)
        results.append(LiveSession(
            id=session_dir.name,
            source=SOURCE_TASKS,
            items=items,
            last_modified=latest,
            meta=index.get(session_dir.name),
        ))
    return results


def _task_from_json(data: Any) -> Optional[TaskItem]:
    if not isinstance(data, dict) or not data.get("id"):
        return None
    return TaskItem(
        id=str(data["id"]),
        subject=str(data.get("subject") or ""),
        description=str(data.get("description") or ""),
        status=coerce_status(data.get("status")),
        owner=coerce_owner(data.get("owner")),
        blocks=[str(b) for b in data.get("blocks") or []],
        blocked_by=[str(b) for b in data.get("blockedBy") or []],
        active_form=data.get("activeForm"),
    )


def _task_sort_key(task: TaskItem):
    # Numeric ids first, in numeric order
    return (0, int(task.id), "") if task.id.isdigit() else (1, 0, task.id)


def _read_json(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.debug(f"Cannot read {path}: {e}")
        return None


def _mtime(path: Path) -> Optional[str]:
    try:
        ts = path.stat().st_mtime
    except OSError:
        return None
    return (
        datetime.fromtimestamp(ts, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def _basename(path: str) -> str:
    return os.path.basename(path.rstrip("/")) or path


def _safe_iterdir(path: Path) -> Iterator[Path]:
    """Iterate directory entries, ignoring missing dirs and permission errors."""
    try:
        yield from sorted(path.iterdir())
    except (FileNotFoundError, NotADirectoryError, PermissionError):
        return
