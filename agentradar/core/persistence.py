"""
On-disk persistence for the reconciliation store.

Layout under the store directory:
    projects/<hash>.json   one file per project (hash of the project path)
    meta.json              schema version, last scan time, project count

Only projects touched in a cycle are rewritten. Writes run on a single
background thread so a slow disk never stalls a refresh cycle.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .models import (
    ProjectRecord,
    SessionMeta,
    StoredSession,
    StoreMeta,
    TaskItem,
    TodoItem,
    TrackedItem,
    coerce_owner,
    coerce_status,
    utcnow,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def project_hash(project_path: str) -> str:
    return hashlib.sha256(project_path.encode("utf-8")).hexdigest()[:12]


class ProjectFiles:
    """Per-project JSON files plus a metadata record."""

    def __init__(self, store_dir: Union[str, Path]):
        self.store_dir = Path(store_dir).expanduser()
        self.projects_dir = self.store_dir / "projects"
        self.meta_path = self.store_dir / "meta.json"
        self._writer: Optional[ThreadPoolExecutor] = None
        self._pending: List[Future] = []

    def project_file(self, project_path: str) -> Path:
        return self.projects_dir / f"{project_hash(project_path)}.json"

    # ── Load ─────────────────────────────────────────────────────────────────

    def load(self) -> Dict[str, ProjectRecord]:
        """Read every project file. Files that fail to decode are skipped."""
        records: Dict[str, ProjectRecord] = {}
        if not self.projects_dir.is_dir():
            return records

        try:
            files = sorted(self.projects_dir.glob("*.json"))
        except OSError as e:
            logger.warning(f"Cannot list {self.projects_dir}: {e}")
            return records

        for path in files:
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                record = decode_project(data)
            except (OSError, ValueError, TypeError, KeyError, AttributeError) as e:
                logger.warning(f"Skipping unreadable project file {path.name}: {e}")
                continue
            records[record.project_path] = record

        return records

    def load_meta(self) -> Optional[StoreMeta]:
        try:
            data = json.loads(self.meta_path.read_text(encoding="utf-8"))
            return StoreMeta(
                schema_version=int(data["schemaVersion"]),
                last_scan_at=str(data["lastScanAt"]),
                project_count=int(data["projectCount"]),
            )
        except FileNotFoundError:
            return None
        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.warning(f"Ignoring unreadable {self.meta_path}: {e}")
            return None

    # ── Save ─────────────────────────────────────────────────────────────────

    def save(
        self,
        records: Dict[str, ProjectRecord],
        dirty: Iterable[str],
        *,
        now: Optional[str] = None,
    ) -> int:
        """Queue writes for the dirty projects and the meta record.

        Records are serialised here, on the caller's thread, so later
        mutations of the store cannot leak into a pending write.
        Returns the number of project files queued.
        """
        dirty = [p for p in dirty if p in records]
        if not dirty:
            return 0

        now = now or utcnow()
        payloads: List[Tuple[Path, str]] = []
        for project_path in dirty:
            record = records[project_path]
            record.updated_at = now
            payloads.append((
                self.project_file(project_path),
                json.dumps(encode_project(record), indent=2, ensure_ascii=False),
            ))

        meta = {
            "schemaVersion": SCHEMA_VERSION,
            "lastScanAt": now,
            "projectCount": len(records),
        }
        payloads.append((self.meta_path, json.dumps(meta, indent=2)))

        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(self._executor().submit(self._write_all, payloads))
        return len(dirty)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued write has finished."""
        pending, self._pending = self._pending, []
        for future in pending:
            future.result(timeout=timeout)

    def close(self) -> None:
        self.flush()
        if self._writer is not None:
            self._writer.shutdown(wait=True)
            self._writer = None

    def _executor(self) -> ThreadPoolExecutor:
        if self._writer is None:
            self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="radar-writer")
        return self._writer

    def _write_all(self, payloads: List[Tuple[Path, str]]) -> None:
        try:
            self.projects_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create {self.projects_dir}: {e}")
            return
        for path, text in payloads:
            try:
                _atomic_write(path, text)
            except OSError as e:
                logger.error(f"Failed to write {path}: {e}")


def _atomic_write(path: Path, text: str) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


# ── Record format ─────────────────────────────────────────────────────────────


def encode_project(record: ProjectRecord) -> Dict[str, Any]:
    return {
        "projectPath": record.project_path,
        "projectName": record.project_name,
        "updatedAt": record.updated_at,
        "sessions": {sid: encode_session(s) for sid, s in record.sessions.items()},
    }


def decode_project(data: Dict[str, Any]) -> ProjectRecord:
    project_path = data.get("projectPath")
    if not project_path or not isinstance(project_path, str):
        raise ValueError("missing projectPath")
    sessions = data.get("sessions") or {}
    if not isinstance(sessions, dict):
        raise ValueError("sessions must be an object")
    return ProjectRecord(
        project_path=project_path,
        project_name=data.get("projectName") or os.path.basename(project_path),
        updated_at=data.get("updatedAt") or "",
        sessions={str(sid): decode_session(s) for sid, s in sessions.items()},
    )


def encode_session(session: StoredSession) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": session.id,
        "source": session.source,
        "firstSeenAt": session.first_seen_at,
        "lastSeenAt": session.last_seen_at,
        "gone": session.gone,
        "goneAt": session.gone_at,
        "items": [encode_item(t) for t in session.items],
    }
    if session.meta is not None:
        out["meta"] = {
            "projectPath": session.meta.project_path,
            "projectName": session.meta.project_name,
            "summary": session.meta.summary,
            "firstPrompt": session.meta.first_prompt,
            "gitBranch": session.meta.git_branch,
        }
    return out


def decode_session(data: Dict[str, Any]) -> StoredSession:
    meta = data.get("meta")
    return StoredSession(
        id=str(data["id"]),
        source=data.get("source") or "tasks",
        first_seen_at=data.get("firstSeenAt") or "",
        last_seen_at=data.get("lastSeenAt") or "",
        gone=bool(data.get("gone", False)),
        gone_at=data.get("goneAt"),
        meta=SessionMeta(
            project_path=meta.get("projectPath") or "",
            project_name=meta.get("projectName") or "",
            summary=meta.get("summary"),
            first_prompt=meta.get("firstPrompt"),
            git_branch=meta.get("gitBranch"),
        ) if isinstance(meta, dict) else None,
        items=[decode_item(i) for i in data.get("items") or []],
    )


def encode_item(tracked: TrackedItem) -> Dict[str, Any]:
    item = tracked.item
    if isinstance(item, TaskItem):
        out: Dict[str, Any] = {
            "kind": "task",
            "id": item.id,
            "subject": item.subject,
            "description": item.description,
            "owner": item.owner,
            "blocks": list(item.blocks),
            "blockedBy": list(item.blocked_by),
        }
    elif isinstance(item, TodoItem):
        out = {"kind": "todo", "content": item.content}
    else:
        raise TypeError(f"Cannot encode item of type {type(item).__name__}")

    out.update({
        "status": item.status,
        "activeForm": item.active_form,
        "_firstSeenAt": tracked.first_seen_at,
        "_lastSeenAt": tracked.last_seen_at,
        "_statusChangedAt": tracked.status_changed_at,
        "_gone": tracked.gone,
        "_goneAt": tracked.gone_at,
    })
    return out


def decode_item(data: Dict[str, Any]) -> TrackedItem:
    kind = data.get("kind")
    if kind is None:
        # Records without a tag: tasks are the ones carrying an id
        kind = "task" if data.get("id") else "todo"

    status = coerce_status(data.get("status"))
    if kind == "task":
        item = TaskItem(
            id=str(data["id"]),
            subject=data.get("subject") or "",
            description=data.get("description") or "",
            status=status,
            owner=coerce_owner(data.get("owner")),
            blocks=[str(b) for b in data.get("blocks") or []],
            blocked_by=[str(b) for b in data.get("blockedBy") or []],
            active_form=data.get("activeForm"),
        )
    elif kind == "todo":
        item = TodoItem(
            content=str(data["content"]),
            status=status,
            active_form=data.get("activeForm"),
        )
    else:
        raise ValueError(f"unknown item kind {kind!r}")

    first_seen = data.get("_firstSeenAt") or ""
    return TrackedItem(
        item=item,
        first_seen_at=first_seen,
        last_seen_at=data.get("_lastSeenAt") or first_seen,
        status_changed_at=data.get("_statusChangedAt") or first_seen,
        gone=bool(data.get("_gone", False)),
        gone_at=data.get("_goneAt"),
    )
