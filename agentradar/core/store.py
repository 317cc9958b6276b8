"""
Reconciliation store — merges live snapshots and hook events into one
history-preserving view of projects, sessions and items.

Nothing observed is ever removed. Entities that drop out of the live
snapshot are flagged gone (once), and flagged live again when they come
back in either channel.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from dataclasses import replace
from typing import Deque, Dict, Iterable, List, Optional, Set

from .models import (
    ActivityEvent,
    HookSessionInfo,
    Item,
    LiveProject,
    LiveSession,
    ProjectRecord,
    ProjectView,
    SessionMeta,
    SessionView,
    StoredSession,
    TaskItem,
    TrackedItem,
    item_key,
    ts_key,
    utcnow,
)
from .patterns import detect_patterns

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_BUFFER_SIZE = 50


def _track(item: Item, now: str) -> TrackedItem:
    return TrackedItem(
        item=item,
        first_seen_at=now,
        last_seen_at=now,
        status_changed_at=now,
    )


def _refresh(stored: TrackedItem, item: Item, now: str) -> None:
    """Overwrite a stored item with a fresher observation, keeping its history."""
    if stored.item.status != item.status:
        stored.status_changed_at = now
    stored.item = item
    stored.last_seen_at = now
    stored.revive()


class Store:
    """In-memory project records with explicit dirty tracking."""

    def __init__(
        self,
        projects: Optional[Dict[str, ProjectRecord]] = None,
        *,
        activity_buffer_size: int = DEFAULT_ACTIVITY_BUFFER_SIZE,
    ):
        self.projects: Dict[str, ProjectRecord] = dict(projects or {})
        self.dirty: Set[str] = set()
        self.activity_buffer_size = activity_buffer_size

        # Not persisted: rebuilt from the event log on startup
        self._hook_sessions: Dict[str, Dict[str, HookSessionInfo]] = {}
        self._activity: Dict[str, Deque[ActivityEvent]] = {}

    # ── Dirty tracking ───────────────────────────────────────────────────────

    def mark_dirty(self, project_path: str) -> None:
        self.dirty.add(project_path)

    def clear_dirty(self) -> None:
        self.dirty.clear()

    # ── Snapshot merge ───────────────────────────────────────────────────────

    def merge(
        self,
        live_projects: Iterable[LiveProject],
        *,
        now: Optional[str] = None,
    ) -> List[ProjectView]:
        """Merge a live snapshot with stored history and return the unified view."""
        now = now or utcnow()
        merged: List[ProjectView] = []
        seen: Set[str] = set()

        for live in live_projects:
            if live.project_path in seen:
                logger.debug(f"Duplicate live project skipped: {live.project_path}")
                continue
            seen.add(live.project_path)
            try:
                merged.append(self._merge_project(live, now))
            except Exception as e:
                logger.warning(f"Merge failed for {live.project_path}: {e}")
                record = self.projects.get(live.project_path)
                if record is not None:
                    merged.append(self._historical_view(record))

        # Stored projects with no live data: keep them as history
        for project_path, record in self.projects.items():
            if project_path in seen:
                continue
            changed = False
            for session in record.sessions.values():
                changed = session.mark_gone(now) or changed
            if changed:
                self.mark_dirty(project_path)
            merged.append(self._historical_view(record))
            seen.add(project_path)

        # Projects known only from SessionStart hooks
        for project_path, sessions in self._hook_sessions.items():
            if project_path in seen or not sessions:
                continue
            merged.append(self._hook_only_view(project_path, list(sessions.values())))

        return merged

    def _merge_project(self, live: LiveProject, now: str) -> ProjectView:
        record = self.projects.get(live.project_path)
        if record is None:
            record = ProjectRecord(
                project_path=live.project_path,
                project_name=live.project_name,
                updated_at=now,
            )
            self.projects[live.project_path] = record

        live_ids: Set[str] = set()
        for session in live.sessions:
            live_ids.add(session.id)
            self._merge_session(record, session, now)

        for session_id, stored in record.sessions.items():
            if session_id not in live_ids:
                stored.mark_gone(now)

        self.mark_dirty(live.project_path)
        return self._merged_view(live, record, live_ids)

    def _merge_session(self, record: ProjectRecord, live: LiveSession, now: str) -> None:
        stored = record.sessions.get(live.id)
        if stored is None:
            record.sessions[live.id] = StoredSession(
                id=live.id,
                source=live.source,
                first_seen_at=now,
                last_seen_at=now,
                meta=live.meta,
                items=[_track(item, now) for item in _dedupe(live.items)],
            )
            return

        stored.last_seen_at = now
        stored.revive()
        if live.meta:
            stored.meta = live.meta

        by_key: Dict[str, TrackedItem] = {t.key: t for t in stored.items}
        touched: Set[str] = set()

        for item in live.items:
            key = item_key(item)
            touched.add(key)
            existing = by_key.get(key)
            if existing is not None:
                _refresh(existing, item, now)
            else:
                tracked = _track(item, now)
                stored.items.append(tracked)
                by_key[key] = tracked

        for tracked in stored.items:
            if tracked.key not in touched:
                tracked.mark_gone(now)

    # ── Hook channel entry points ────────────────────────────────────────────

    def ensure_project(self, project_path: str, project_name: Optional[str] = None) -> ProjectRecord:
        record = self.projects.get(project_path)
        if record is None:
            record = ProjectRecord(
                project_path=project_path,
                project_name=project_name or _basename(project_path),
                updated_at=utcnow(),
            )
            self.projects[project_path] = record
            self.mark_dirty(project_path)
        return record

    def ensure_session(
        self,
        project_path: str,
        session_id: str,
        source: str,
        meta: Optional[SessionMeta] = None,
        *,
        now: Optional[str] = None,
    ) -> Optional[StoredSession]:
        record = self.projects.get(project_path)
        if record is None:
            return None
        session = record.sessions.get(session_id)
        if session is None:
            now = now or utcnow()
            session = StoredSession(
                id=session_id,
                source=source,
                first_seen_at=now,
                last_seen_at=now,
                meta=meta,
            )
            record.sessions[session_id] = session
            self.mark_dirty(project_path)
        return session

    def merge_hook_item(
        self,
        project_path: str,
        session_id: str,
        item: Item,
        ts: str,
        *,
        partial: bool = False,
    ) -> None:
        """Fold one item observed through the hook channel into its session.

        With ``partial`` set, task fields the hook did not carry (empty
        subject/description, missing owner, empty dependency lists) keep
        their stored values.
        """
        record = self.projects.get(project_path)
        if record is None:
            return
        session = record.sessions.get(session_id)
        if session is None:
            return

        key = item_key(item)
        existing = next((t for t in session.items if t.key == key), None)
        if existing is not None and ts_key(ts) < ts_key(existing.last_seen_at):
            # Older than the stored observation, e.g. a replayed log line
            return
        if existing is None:
            if not item.status:
                item = replace(item, status="pending")
            session.items.append(_track(item, ts))
        else:
            if partial and isinstance(item, TaskItem) and isinstance(existing.item, TaskItem):
                item = _overlay_task(existing.item, item)
            _refresh(existing, item, ts)

        session.last_seen_at = ts
        session.revive()
        self.mark_dirty(project_path)

    def mark_session_started(self, project_path: str, session_id: str, ts: str) -> None:
        sessions = self._hook_sessions.setdefault(project_path, {})
        sessions[session_id] = HookSessionInfo(
            session_id=session_id,
            project_path=project_path,
            started_at=ts,
        )

    def mark_session_stopped(self, session_id: str, ts: str) -> None:
        """Drop the hook-active marker and bump last-seen. Unknown ids are ignored."""
        for sessions in self._hook_sessions.values():
            sessions.pop(session_id, None)

        for project_path, record in self.projects.items():
            session = record.sessions.get(session_id)
            if session is None:
                continue
            # Gone detection stays with the snapshot channel
            session.last_seen_at = max(session.last_seen_at, ts, key=ts_key)
            self.mark_dirty(project_path)
            return

    def get_hook_sessions(self, project_path: str) -> List[HookSessionInfo]:
        return list(self._hook_sessions.get(project_path, {}).values())

    def get_all_hook_sessions(self) -> Dict[str, List[HookSessionInfo]]:
        return {
            path: list(sessions.values())
            for path, sessions in self._hook_sessions.items()
            if sessions
        }

    def add_activity(self, project_path: str, event: ActivityEvent) -> None:
        buf = self._activity.get(project_path)
        if buf is None:
            buf = deque(maxlen=self.activity_buffer_size)
            self._activity[project_path] = buf
        buf.append(event)

    def get_activity_log(self, project_path: str) -> List[ActivityEvent]:
        return list(self._activity.get(project_path, ()))

    # ── View building ────────────────────────────────────────────────────────

    def _merged_view(
        self,
        live: LiveProject,
        record: ProjectRecord,
        live_ids: Set[str],
    ) -> ProjectView:
        live_sessions: List[SessionView] = []
        gone_sessions: List[SessionView] = []
        for session in live.sessions:
            stored = record.sessions[session.id]
            view = _session_view(stored)
            if session.last_modified:
                view.last_modified = session.last_modified
            live_sessions.append(view)
        for session_id, stored in record.sessions.items():
            if session_id not in live_ids and stored.gone:
                gone_sessions.append(_session_view(stored))

        sessions = live_sessions + gone_sessions
        has_gone_items = any(t.gone for s in record.sessions.values() for t in s.items)
        view = self._view(
            record,
            sessions,
            has_history=bool(gone_sessions) or has_gone_items,
            gone_session_count=len(gone_sessions),
        )
        view.project_name = live.project_name or record.project_name
        view.total_sessions = len(live.sessions)
        view.last_activity = _latest(
            [live.last_activity] + [s.last_modified for s in live_sessions]
        )
        # Gone items still count in the totals but never keep a project active
        live_in_progress = any(
            t.status == "in_progress" and not t.gone
            for s in live_sessions for t in s.items
        )
        view.is_active = live_in_progress or bool(view.hook_sessions)
        return view

    def _historical_view(self, record: ProjectRecord) -> ProjectView:
        sessions = [_session_view(s) for s in record.sessions.values()]
        view = self._view(
            record,
            sessions,
            has_history=True,
            gone_session_count=sum(1 for s in sessions if s.gone),
        )
        view.last_activity = record.updated_at
        view.is_active = bool(view.hook_sessions)
        return view

    def _hook_only_view(self, project_path: str, hook_sessions: List[HookSessionInfo]) -> ProjectView:
        activity = self.get_activity_log(project_path)
        return ProjectView(
            project_path=project_path,
            project_name=_basename(project_path),
            last_activity=_latest([h.started_at for h in hook_sessions]),
            is_active=True,
            active_sessions=len(hook_sessions),
            hook_sessions=hook_sessions,
            activity_log=activity,
            activity_alerts=detect_patterns(activity),
        )

    def _view(
        self,
        record: ProjectRecord,
        sessions: List[SessionView],
        *,
        has_history: bool,
        gone_session_count: int,
    ) -> ProjectView:
        items = [t for s in sessions for t in s.items]
        agents = sorted({
            str(t.item.owner) for t in items
            if isinstance(t.item, TaskItem) and t.item.owner
        })
        hook_sessions = self.get_hook_sessions(record.project_path)
        activity = self.get_activity_log(record.project_path)
        return ProjectView(
            project_path=record.project_path,
            project_name=record.project_name,
            sessions=sessions,
            total_tasks=len(items),
            completed_tasks=sum(1 for t in items if t.status == "completed"),
            in_progress_tasks=sum(1 for t in items if t.status == "in_progress"),
            agents=agents,
            active_sessions=len(hook_sessions),
            has_history=has_history,
            gone_session_count=gone_session_count,
            hook_sessions=hook_sessions,
            activity_log=activity,
            activity_alerts=detect_patterns(activity),
        )


# ── Helpers ───────────────────────────────────────────────────────────────────


def _dedupe(items: Iterable[Item]) -> List[Item]:
    """Collapse items sharing an identity key; the last occurrence wins."""
    by_key: Dict[str, Item] = {}
    for item in items:
        by_key[item_key(item)] = item
    return list(by_key.values())


def _overlay_task(stored: TaskItem, update: TaskItem) -> TaskItem:
    return replace(
        stored,
        subject=update.subject or stored.subject,
        description=update.description or stored.description,
        status=update.status or stored.status,
        owner=update.owner if update.owner is not None else stored.owner,
        blocks=_union(stored.blocks, update.blocks),
        blocked_by=_union(stored.blocked_by, update.blocked_by),
        active_form=update.active_form if update.active_form is not None else stored.active_form,
    )


def _session_view(stored: StoredSession) -> SessionView:
    return SessionView(
        id=stored.id,
        source=stored.source,
        last_modified=stored.last_seen_at,
        items=list(stored.items),
        meta=stored.meta,
        gone=stored.gone,
        gone_at=stored.gone_at,
    )


def _latest(values: Iterable[Optional[str]]) -> Optional[str]:
    present = [v for v in values if v]
    return max(present, key=ts_key) if present else None


def _union(first: List[str], second: List[str]) -> List[str]:
    return list(dict.fromkeys(first + second))


def _basename(path: str) -> str:
    return os.path.basename(path.rstrip("/")) or path
