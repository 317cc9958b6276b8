"""Data models for agentradar."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional, Union

STATUSES = ("pending", "in_progress", "completed")

SOURCE_TODOS = "todos"
SOURCE_TASKS = "tasks"


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string with a Z suffix."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; None for anything unparseable."""
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def ts_key(value: Optional[str]) -> datetime:
    """Sort key for timestamps of mixed precision; unparseable sorts first."""
    return parse_ts(value) or _EPOCH


def coerce_status(value: Any) -> str:
    return value if value in STATUSES else "pending"


def coerce_owner(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# ── Items ─────────────────────────────────────────────────────────────────────


@dataclass
class TaskItem:
    id: str
    subject: str = ""
    description: str = ""
    status: str = "pending"
    owner: Optional[str] = None
    blocks: List[str] = field(default_factory=list)
    blocked_by: List[str] = field(default_factory=list)
    active_form: Optional[str] = None

    kind: ClassVar[str] = "task"


@dataclass
class TodoItem:
    content: str
    status: str = "pending"
    active_form: Optional[str] = None

    kind: ClassVar[str] = "todo"


Item = Union[TaskItem, TodoItem]


def item_key(item: Item) -> str:
    """Identity key used to match a live item to its stored counterpart."""
    if item.kind == TaskItem.kind:
        return f"task:{item.id}"
    if item.kind == TodoItem.kind:
        return f"todo:{item.content}"
    raise ValueError(f"Unknown item kind: {item.kind!r}")


@dataclass
class TrackedItem:
    """A stored item plus the lifecycle metadata the store maintains."""

    item: Item
    first_seen_at: str
    last_seen_at: str
    status_changed_at: str
    gone: bool = False
    gone_at: Optional[str] = None

    @property
    def key(self) -> str:
        return item_key(self.item)

    @property
    def status(self) -> str:
        return self.item.status

    def mark_gone(self, now: str) -> bool:
        if self.gone:
            return False
        self.gone = True
        self.gone_at = self.gone_at or now
        return True

    def revive(self) -> None:
        self.gone = False
        self.gone_at = None


# ── Sessions & projects ───────────────────────────────────────────────────────


@dataclass
class SessionMeta:
    project_path: str
    project_name: str
    summary: Optional[str] = None
    first_prompt: Optional[str] = None
    git_branch: Optional[str] = None


@dataclass
class LiveSession:
    """One session as seen by the snapshot scanner."""

    id: str
    source: str  # "todos" | "tasks"
    items: List[Item] = field(default_factory=list)
    last_modified: Optional[str] = None
    meta: Optional[SessionMeta] = None


@dataclass
class LiveProject:
    project_path: str
    project_name: str
    sessions: List[LiveSession] = field(default_factory=list)
    last_activity: Optional[str] = None


@dataclass
class StoredSession:
    id: str
    source: str
    first_seen_at: str
    last_seen_at: str
    gone: bool = False
    gone_at: Optional[str] = None
    meta: Optional[SessionMeta] = None
    items: List[TrackedItem] = field(default_factory=list)

    def mark_gone(self, now: str) -> bool:
        """Mark the session and all its items gone. Returns True if anything changed."""
        if self.gone:
            return False
        self.gone = True
        self.gone_at = self.gone_at or now
        for tracked in self.items:
            tracked.mark_gone(now)
        return True

    def revive(self) -> None:
        self.gone = False
        self.gone_at = None


@dataclass
class ProjectRecord:
    """Persisted per-project state."""

    project_path: str
    project_name: str
    updated_at: str
    sessions: Dict[str, StoredSession] = field(default_factory=dict)


@dataclass
class StoreMeta:
    schema_version: int
    last_scan_at: str
    project_count: int


# ── Hook channel ──────────────────────────────────────────────────────────────


@dataclass
class HookEvent:
    event: str
    ts: str
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Any) -> Optional[HookEvent]:
        """Build from a decoded log line; None when the shape is wrong."""
        if not isinstance(record, dict):
            return None
        event = record.get("event")
        data = record.get("data")
        if not isinstance(event, str) or not isinstance(data, dict):
            return None
        ts = record.get("ts")
        return cls(event=event, ts=ts if isinstance(ts, str) else "", data=data)


@dataclass
class HookSessionInfo:
    session_id: str
    project_path: str
    started_at: str


@dataclass
class ActivityEvent:
    ts: str
    session_id: str
    tool_name: str
    summary: str
    project_path: str
    is_error: bool = False
    duration_ms: Optional[int] = None


@dataclass
class ActivityAlert:
    type: str       # "repeated_failure" | "repeated_retry" | "long_turn"
    severity: str   # "warning" | "error"
    message: str
    count: int
    session_id: str
    project_path: str
    ts: str


# ── Unified read model ────────────────────────────────────────────────────────


@dataclass
class SessionView:
    id: str
    source: str
    last_modified: str
    items: List[TrackedItem] = field(default_factory=list)
    meta: Optional[SessionMeta] = None
    gone: bool = False
    gone_at: Optional[str] = None


@dataclass
class ProjectView:
    project_path: str
    project_name: str
    sessions: List[SessionView] = field(default_factory=list)
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    agents: List[str] = field(default_factory=list)
    last_activity: Optional[str] = None
    is_active: bool = False
    total_sessions: int = 0
    active_sessions: int = 0
    has_history: bool = False
    gone_session_count: int = 0
    hook_sessions: List[HookSessionInfo] = field(default_factory=list)
    activity_log: List[ActivityEvent] = field(default_factory=list)
    activity_alerts: List[ActivityAlert] = field(default_factory=list)

    @property
    def git_branch(self) -> Optional[str]:
        for s in self.sessions:
            if s.meta and s.meta.git_branch:
                return s.meta.git_branch
        return None
