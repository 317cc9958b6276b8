"""Tests for agentradar.core.models — identity keys, lifecycle flags, parsing."""

import pytest

from agentradar.core.models import (
    HookEvent,
    StoredSession,
    TaskItem,
    TodoItem,
    TrackedItem,
    coerce_status,
    item_key,
    parse_ts,
    utcnow,
)


def _tracked(item, ts="2025-01-01T00:00:00.000Z"):
    return TrackedItem(item=item, first_seen_at=ts, last_seen_at=ts, status_changed_at=ts)


class TestItemKey:
    def test_task_key(self):
        assert item_key(TaskItem(id="7")) == "task:7"

    def test_todo_key(self):
        assert item_key(TodoItem(content="write docs")) == "todo:write docs"

    def test_task_and_todo_never_collide(self):
        assert item_key(TaskItem(id="1")) != item_key(TodoItem(content="1"))

    def test_unknown_kind_rejected(self):
        class Odd:
            kind = "odd"

        with pytest.raises(ValueError):
            item_key(Odd())


class TestLifecycle:
    def test_mark_gone_stamps_once(self):
        t = _tracked(TaskItem(id="1"))
        assert t.mark_gone("2025-01-02T00:00:00.000Z") is True
        assert t.mark_gone("2025-01-03T00:00:00.000Z") is False
        assert t.gone_at == "2025-01-02T00:00:00.000Z"

    def test_revive_clears_gone(self):
        t = _tracked(TodoItem(content="x"))
        t.mark_gone("2025-01-02T00:00:00.000Z")
        t.revive()
        assert t.gone is False
        assert t.gone_at is None

    def test_session_mark_gone_cascades_to_items(self):
        s = StoredSession(
            id="s1", source="tasks",
            first_seen_at="t0", last_seen_at="t0",
            items=[_tracked(TaskItem(id="1")), _tracked(TaskItem(id="2"))],
        )
        assert s.mark_gone("t1") is True
        assert all(t.gone and t.gone_at == "t1" for t in s.items)
        assert s.mark_gone("t2") is False
        assert s.gone_at == "t1"


class TestHookEventFromRecord:
    def test_valid_record(self):
        ev = HookEvent.from_record({"event": "tool", "ts": "t", "data": {"session_id": "s"}})
        assert ev.event == "tool"
        assert ev.data["session_id"] == "s"

    @pytest.mark.parametrize("record", [
        None,
        [],
        "tool",
        {"ts": "t", "data": {}},
        {"event": "tool", "data": "not-a-dict"},
    ])
    def test_bad_shapes(self, record):
        assert HookEvent.from_record(record) is None

    def test_missing_ts_is_empty(self):
        ev = HookEvent.from_record({"event": "stop", "data": {}})
        assert ev.ts == ""


class TestHelpers:
    def test_coerce_status(self):
        assert coerce_status("completed") == "completed"
        assert coerce_status("done") == "pending"
        assert coerce_status(None) == "pending"

    def test_parse_ts_z_suffix(self):
        dt = parse_ts("2025-01-01T10:00:00Z")
        assert dt is not None
        assert dt.utcoffset().total_seconds() == 0

    def test_parse_ts_garbage(self):
        assert parse_ts("yesterday") is None
        assert parse_ts(None) is None

    def test_utcnow_roundtrips(self):
        now = utcnow()
        assert now.endswith("Z")
        assert parse_ts(now) is not None
