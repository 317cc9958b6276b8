"""
Hook event ingestion — fold captured hook events into the store.

Every tool call lands in the project's activity buffer. Task-mutating
tools (TaskCreate / TaskUpdate / TodoWrite) additionally become item
updates on the owning session, so work shows up before the next
snapshot scan catches it.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..core.models import (
    SOURCE_TASKS,
    SOURCE_TODOS,
    ActivityEvent,
    HookEvent,
    Item,
    SessionMeta,
    TaskItem,
    TodoItem,
    coerce_owner,
    coerce_status,
    parse_ts,
    utcnow,
)
from ..core.patterns import TURN_COMPLETE
from ..core.store import Store

logger = logging.getLogger(__name__)

TOOL_EVENTS = {"tool", "tool_failure", "task"}  # "task" is the legacy PostToolUse tag
TASK_TOOLS = {"TaskCreate", "TaskUpdate", "TodoWrite"}
MAX_OPEN_TURNS = 1000


class HookIngestor:
    """Applies hook events to a store, tracking turn boundaries per session."""

    def __init__(self, store: Store):
        self.store = store
        # (project_path, session_id) -> timestamp of the first event in the open turn
        self._turn_started: Dict[Tuple[str, str], str] = {}

    def ingest(
        self,
        records: Iterable[Union[HookEvent, Dict[str, Any]]],
        *,
        now: Optional[str] = None,
    ) -> int:
        """Apply records in order. Returns how many were applied."""
        now = now or utcnow()
        applied = 0
        for record in records:
            event = record if isinstance(record, HookEvent) else HookEvent.from_record(record)
            if event is None:
                continue
            try:
                if self._apply(event, event.ts or now):
                    applied += 1
            except Exception as e:
                logger.warning(f"Dropping hook event {event.event!r}: {e}")
        return applied

    def _apply(self, event: HookEvent, ts: str) -> bool:
        data = event.data
        session_id = data.get("session_id")
        if not session_id or not isinstance(session_id, str):
            return False
        project_path = _project_path(data)

        if event.event in TOOL_EVENTS:
            tool_name = data.get("tool_name")
            if not tool_name or not project_path:
                return False
            self._record_tool(event, project_path, session_id, str(tool_name), ts)
            return True

        if event.event == "start":
            if not project_path:
                return False
            self.store.mark_session_started(project_path, session_id, ts)
            return True

        if event.event == "stop":
            self.store.mark_session_stopped(session_id, ts)
            if project_path:
                self._close_turn(project_path, session_id, data, ts)
            return True

        if event.event in ("subagent_stop", "notification"):
            if not project_path:
                return False
            if event.event == "subagent_stop":
                tool = f"{data['tool_name']} " if data.get("tool_name") else ""
                summary = f"SubagentStop: {tool}{data.get('reason') or 'completed'}"
            else:
                summary = f"Notification: {_truncate(data.get('reason') or data.get('message'), 50)}"
            self.store.add_activity(project_path, ActivityEvent(
                ts=ts,
                session_id=session_id,
                tool_name=event.event,
                summary=summary,
                project_path=project_path,
            ))
            return True

        logger.debug(f"Ignoring unknown hook event kind: {event.event}")
        return False

    def _record_tool(
        self,
        event: HookEvent,
        project_path: str,
        session_id: str,
        tool_name: str,
        ts: str,
    ) -> None:
        is_failure = event.event == "tool_failure"
        summary = build_activity_summary(tool_name, data_input(event.data))
        self.store.add_activity(project_path, ActivityEvent(
            ts=ts,
            session_id=session_id,
            tool_name=tool_name,
            summary=f"❌ {summary}" if is_failure else summary,
            project_path=project_path,
            is_error=is_failure,
            duration_ms=_int_or_none(event.data.get("duration_ms")),
        ))
        key = (project_path, session_id)
        if key not in self._turn_started:
            self._turn_started[key] = ts
            if len(self._turn_started) > MAX_OPEN_TURNS:
                # Evict the oldest open turn
                self._turn_started.pop(next(iter(self._turn_started)))

        # Failed calls never changed any task state
        if is_failure or tool_name not in TASK_TOOLS:
            return

        items = hook_event_items(tool_name, event.data, ts)
        if not items:
            return

        name = os.path.basename(project_path.rstrip("/")) or project_path
        self.store.ensure_project(project_path, name)
        source = SOURCE_TODOS if tool_name == "TodoWrite" else SOURCE_TASKS
        self.store.ensure_session(
            project_path,
            session_id,
            source,
            SessionMeta(project_path=project_path, project_name=name),
            now=ts,
        )
        for item in items:
            self.store.merge_hook_item(
                project_path, session_id, item, ts,
                partial=tool_name == "TaskUpdate",
            )

    def forget_gone_turns(self) -> int:
        """Drop open turns of sessions that are gone and no longer hook-active."""
        stale = []
        for project_path, session_id in self._turn_started:
            record = self.store.projects.get(project_path)
            session = record.sessions.get(session_id) if record else None
            if session is None or not session.gone:
                continue
            active = {h.session_id for h in self.store.get_hook_sessions(project_path)}
            if session_id not in active:
                stale.append((project_path, session_id))
        for key in stale:
            del self._turn_started[key]
        return len(stale)

    def _close_turn(self, project_path: str, session_id: str, data: Dict[str, Any], ts: str) -> None:
        started = self._turn_started.pop((project_path, session_id), None)
        duration_ms = _int_or_none(data.get("duration_ms"))
        if duration_ms is None and started:
            start_dt, end_dt = parse_ts(started), parse_ts(ts)
            if start_dt and end_dt and end_dt >= start_dt:
                duration_ms = int((end_dt - start_dt).total_seconds() * 1000)
        if duration_ms is None:
            return
        self.store.add_activity(project_path, ActivityEvent(
            ts=ts,
            session_id=session_id,
            tool_name=TURN_COMPLETE,
            summary=f"Turn complete ({_format_duration(duration_ms)})",
            project_path=project_path,
            duration_ms=duration_ms,
        ))


def ingest_hook_events(
    store: Store,
    records: Iterable[Union[HookEvent, Dict[str, Any]]],
    *,
    now: Optional[str] = None,
) -> int:
    """One-shot ingestion without turn tracking across calls."""
    return HookIngestor(store).ingest(records, now=now)


# ── Item extraction ───────────────────────────────────────────────────────────


def hook_event_items(tool_name: str, data: Dict[str, Any], ts: str) -> List[Item]:
    """Convert a task-mutating tool call into the items it touched."""
    tool_input = data_input(data)
    if not tool_input:
        return []

    if tool_name == "TaskCreate":
        task_id = tool_input.get("id") or tool_input.get("taskId") or _response_task_id(data)
        if not task_id:
            # No id assigned yet; derive a stable one from the event time
            dt = parse_ts(ts)
            task_id = str(int(dt.timestamp() * 1000)) if dt else ts
        return [TaskItem(
            id=str(task_id),
            subject=str(tool_input.get("subject") or ""),
            description=str(tool_input.get("description") or ""),
            status=coerce_status(tool_input.get("status")),
            owner=coerce_owner(tool_input.get("owner")),
            blocks=_str_list(tool_input.get("blocks")),
            blocked_by=_str_list(tool_input.get("blockedBy")),
            active_form=tool_input.get("activeForm"),
        )]

    if tool_name == "TaskUpdate":
        task_id = tool_input.get("taskId")
        if not task_id:
            return []
        # An update that does not mention status leaves it unset ("")
        status = tool_input.get("status")
        return [TaskItem(
            id=str(task_id),
            subject=str(tool_input.get("subject") or ""),
            description=str(tool_input.get("description") or ""),
            status=coerce_status(status) if status else "",
            owner=coerce_owner(tool_input.get("owner")),
            blocks=_str_list(tool_input.get("addBlocks") or tool_input.get("blocks")),
            blocked_by=_str_list(tool_input.get("addBlockedBy") or tool_input.get("blockedBy")),
            active_form=tool_input.get("activeForm"),
        )]

    if tool_name == "TodoWrite":
        todos = tool_input.get("todos")
        entries = todos if isinstance(todos, list) else [tool_input]
        items: List[Item] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            content = entry.get("content") or entry.get("subject")
            if not content:
                continue
            items.append(TodoItem(
                content=str(content),
                status=coerce_status(entry.get("status")),
                active_form=entry.get("activeForm"),
            ))
        return items

    return []


# ── Activity summaries ────────────────────────────────────────────────────────


def build_activity_summary(tool: str, tool_input: Optional[Dict[str, Any]]) -> str:
    """Short human-readable line for one tool call."""
    if not tool_input:
        return tool

    if tool in ("Write", "Read", "Edit"):
        return f"{tool} {shorten_path(tool_input.get('file_path'))}"
    if tool == "Bash":
        return f"Bash: {_truncate(tool_input.get('command'), 60)}"
    if tool in ("Grep", "Glob"):
        return f"{tool}: {_truncate(tool_input.get('pattern'), 40)}"
    if tool == "SendMessage":
        return f"SendMessage → {tool_input.get('recipient') or 'broadcast'}"
    if tool == "TaskCreate":
        return f"TaskCreate: {_truncate(tool_input.get('subject'), 50)}"
    if tool == "TaskUpdate":
        return f"TaskUpdate #{tool_input.get('taskId') or '?'} → {tool_input.get('status') or ''}"
    if tool == "TaskGet":
        return f"TaskGet #{tool_input.get('taskId') or '?'}"
    if tool == "Task":
        agent_type = tool_input.get("subagent_type")
        desc = tool_input.get("description") or tool_input.get("prompt")
        if agent_type:
            return f"Task[{agent_type}]: {_truncate(desc, 40)}"
        return f"Task: {_truncate(desc, 50)}"
    if tool == "EnterPlanMode":
        return "[PLAN] Entered plan mode"
    if tool == "ExitPlanMode":
        return "[PLAN] Plan ready for approval"
    return tool


def shorten_path(path: Any) -> str:
    """Last two segments of a path."""
    if not path or not isinstance(path, str):
        return "?"
    parts = path.split("/")
    return "/".join(parts[-2:]) if len(parts) > 2 else parts[-1]


def data_input(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    tool_input = data.get("tool_input")
    return tool_input if isinstance(tool_input, dict) else None


def _project_path(data: Dict[str, Any]) -> Optional[str]:
    # Hooks carry the working directory; it is taken as the project path verbatim
    cwd = data.get("cwd")
    return cwd if isinstance(cwd, str) and cwd else None


def _response_task_id(data: Dict[str, Any]) -> Optional[str]:
    response = data.get("tool_response")
    if not isinstance(response, dict):
        return None
    task = response.get("task")
    if isinstance(task, dict) and task.get("id"):
        return str(task["id"])
    task_id = response.get("id") or response.get("taskId")
    return str(task_id) if task_id else None


def _truncate(value: Any, limit: int) -> str:
    if not value:
        return "?"
    text = str(value)
    return text[: limit - 1] + "…" if len(text) > limit else text


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _format_duration(ms: int) -> str:
    minutes, seconds = divmod(ms // 1000, 60)
    return f"{minutes}m {seconds}s" if minutes else f"{seconds}s"
