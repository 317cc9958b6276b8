"""Tests for agentradar.ingest.scanner — reading the runtime's on-disk state."""

import json

import pytest

from agentradar.ingest.scanner import build_session_index, scan_projects


def _write(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data if isinstance(data, str) else json.dumps(data))


@pytest.fixture
def claude_dir(tmp_path):
    root = tmp_path / "claude"
    _write(root / "projects" / "-work-app" / "sessions-index.json", {"entries": [
        {
            "sessionId": "sess-a",
            "projectPath": "/work/app",
            "summary": "Fix login",
            "firstPrompt": "p" * 200,
            "gitBranch": "feature/login",
        },
    ]})
    # Transcript without an index entry inherits the project path
    _write(root / "projects" / "-work-app" / "sess-b.jsonl", "")
    return root


class TestSessionIndex:
    def test_index_entries(self, claude_dir):
        index = build_session_index(claude_dir / "projects")
        meta = index["sess-a"]
        assert meta.project_path == "/work/app"
        assert meta.project_name == "app"
        assert meta.summary == "Fix login"
        assert meta.git_branch == "feature/login"
        assert meta.first_prompt == "p" * 80

    def test_bare_transcript_inherits_project(self, claude_dir):
        index = build_session_index(claude_dir / "projects")
        assert index["sess-b"].project_path == "/work/app"
        assert index["sess-b"].summary is None

    def test_missing_projects_dir(self, tmp_path):
        assert build_session_index(tmp_path / "nope") == {}

    def test_malformed_index_ignored(self, tmp_path):
        _write(tmp_path / "projects" / "x" / "sessions-index.json", "{oops")
        _write(tmp_path / "projects" / "x" / "s.jsonl", "")
        assert build_session_index(tmp_path / "projects") == {}


class TestScanProjects:
    def test_todos_grouped_by_project(self, claude_dir):
        _write(claude_dir / "todos" / "sess-a-agent-sess-a.json", [
            {"content": "Write tests", "status": "in_progress", "activeForm": "Writing tests"},
            {"content": "Ship", "status": "pending"},
            {"status": "pending"},
        ])
        projects = scan_projects(claude_dir)
        assert [p.project_path for p in projects] == ["/work/app"]
        session = projects[0].sessions[0]
        assert session.id == "sess-a"
        assert session.source == "todos"
        assert [i.content for i in session.items] == ["Write tests", "Ship"]
        assert session.items[0].active_form == "Writing tests"
        assert session.meta.git_branch == "feature/login"
        assert session.last_modified.endswith("Z")

    def test_tasks_sorted_numerically(self, claude_dir):
        for task_id in ("10", "2", "1", "alpha"):
            _write(claude_dir / "tasks" / "sess-b" / f"{task_id}.json", {
                "id": task_id,
                "subject": f"Task {task_id}",
                "status": "completed" if task_id == "1" else "pending",
                "blockedBy": [1],
            })
        projects = scan_projects(claude_dir)
        session = projects[0].sessions[0]
        assert session.source == "tasks"
        assert [t.id for t in session.items] == ["1", "2", "10", "alpha"]
        assert session.items[0].status == "completed"
        assert session.items[1].blocked_by == ["1"]

    def test_both_sources_in_one_project(self, claude_dir):
        _write(claude_dir / "todos" / "sess-a-agent-x.json", [{"content": "a"}])
        _write(claude_dir / "tasks" / "sess-b" / "1.json", {"id": "1"})
        projects = scan_projects(claude_dir)
        assert len(projects) == 1
        assert sorted(s.source for s in projects[0].sessions) == ["tasks", "todos"]
        assert projects[0].last_activity is not None

    def test_unknown_session_skipped(self, claude_dir):
        _write(claude_dir / "todos" / "mystery-agent-mystery.json", [{"content": "a"}])
        _write(claude_dir / "tasks" / "mystery" / "1.json", {"id": "1"})
        assert scan_projects(claude_dir) == []

    def test_empty_and_malformed_files(self, claude_dir):
        _write(claude_dir / "todos" / "sess-a-agent-sess-a.json", [])
        _write(claude_dir / "todos" / "sess-b-agent-sess-b.json", "{bad")
        _write(claude_dir / "tasks" / "sess-a" / "1.json", {"subject": "no id"})
        _write(claude_dir / "tasks" / "sess-a" / "notes.txt", "ignored")
        assert scan_projects(claude_dir) == []

    def test_unknown_status_coerced(self, claude_dir):
        _write(claude_dir / "todos" / "sess-a-agent-sess-a.json", [
            {"content": "a", "status": "blocked"},
        ])
        item = scan_projects(claude_dir)[0].sessions[0].items[0]
        assert item.status == "pending"

    def test_non_string_owner_coerced(self, claude_dir):
        _write(claude_dir / "tasks" / "sess-a" / "1.json", {"id": "1", "owner": 7})
        _write(claude_dir / "tasks" / "sess-a" / "2.json", {"id": "2", "owner": ""})
        items = scan_projects(claude_dir)[0].sessions[0].items
        assert [t.owner for t in items] == ["7", None]

    def test_missing_claude_dir(self, tmp_path):
        assert scan_projects(tmp_path / "absent") == []
