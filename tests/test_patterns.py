"""Tests for agentradar.core.patterns — alerts over the activity buffer."""

from agentradar.core.models import ActivityEvent
from agentradar.core.patterns import detect_patterns

PROJECT = "/test/project"


def _ev(tool="Bash", *, error=False, session="s1", ts="2025-01-01T10:00:00Z", duration_ms=None):
    return ActivityEvent(
        ts=ts,
        session_id=session,
        tool_name=tool,
        summary=tool,
        project_path=PROJECT,
        is_error=error,
        duration_ms=duration_ms,
    )


def _fails(n, tool="Bash", session="s1"):
    return [_ev(tool, error=True, session=session) for _ in range(n)]


def _turn(minutes, session="s1"):
    return _ev("_turn_complete", session=session, duration_ms=minutes * 60 * 1000)


class TestRepeatedFailures:
    def test_three_failures_warn(self):
        alerts = detect_patterns(_fails(3))
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.type == "repeated_failure"
        assert alert.severity == "warning"
        assert alert.count == 3
        assert alert.message == "Bash failed 3 times in a row"
        assert alert.session_id == "s1"
        assert alert.project_path == PROJECT

    def test_five_failures_error(self):
        alerts = detect_patterns(_fails(5))
        assert [(a.severity, a.count) for a in alerts] == [("error", 5)]

    def test_two_failures_nothing(self):
        assert detect_patterns(_fails(2)) == []

    def test_success_breaks_run(self):
        events = _fails(2) + [_ev()] + _fails(2)
        assert detect_patterns(events) == []

    def test_different_tool_breaks_run(self):
        events = _fails(3, "Bash") + _fails(3, "Edit")
        alerts = detect_patterns(events)
        assert [a.message for a in alerts] == [
            "Bash failed 3 times in a row",
            "Edit failed 3 times in a row",
        ]

    def test_multiple_runs_in_one_session(self):
        events = _fails(3) + [_ev("Read")] + _fails(4)
        alerts = detect_patterns(events)
        assert [a.count for a in alerts] == [3, 4]

    def test_alert_uses_last_failure_time(self):
        events = [
            _ev(error=True, ts="2025-01-01T10:00:00Z"),
            _ev(error=True, ts="2025-01-01T10:00:05Z"),
            _ev(error=True, ts="2025-01-01T10:00:09Z"),
        ]
        assert detect_patterns(events)[0].ts == "2025-01-01T10:00:09Z"


class TestRepeatedRetries:
    def test_three_spawns_nothing(self):
        assert detect_patterns([_ev("Task")] * 3) == []

    def test_four_spawns_warn(self):
        alerts = detect_patterns([_ev("Task")] * 4)
        assert [(a.type, a.severity, a.count) for a in alerts] == [("repeated_retry", "warning", 4)]
        assert alerts[0].message == "Task tool called 4 times in a row (possible retry loop)"

    def test_six_spawns_error(self):
        alerts = detect_patterns([_ev("Task")] * 6)
        assert alerts[0].severity == "error"

    def test_other_tool_breaks_run(self):
        events = [_ev("Task")] * 3 + [_ev("Read")] + [_ev("Task")] * 3
        assert detect_patterns(events) == []


class TestLongTurns:
    def test_short_turn_nothing(self):
        assert detect_patterns([_turn(4)]) == []

    def test_six_minutes_warn(self):
        alerts = detect_patterns([_turn(6)])
        assert [(a.type, a.severity) for a in alerts] == [("long_turn", "warning")]
        assert alerts[0].message == "Turn took 6+ minutes"

    def test_eleven_minutes_error(self):
        alerts = detect_patterns([_turn(11)])
        assert alerts[0].severity == "error"

    def test_duration_on_other_tools_ignored(self):
        assert detect_patterns([_ev("Bash", duration_ms=20 * 60 * 1000)]) == []


class TestSessionGrouping:
    def test_interleaved_sessions_counted_separately(self):
        events = []
        for _ in range(3):
            events.append(_ev(error=True, session="a"))
            events.append(_ev(error=True, session="b"))
        alerts = detect_patterns(events)
        assert sorted(a.session_id for a in alerts) == ["a", "b"]
        assert all(a.count == 3 for a in alerts)

    def test_runs_split_across_sessions_do_not_add_up(self):
        events = _fails(2, session="a") + _fails(2, session="b")
        assert detect_patterns(events) == []

    def test_scenario_failures_then_recovery(self):
        events = _fails(3) + [_ev("Bash")] + [_ev("Task")] * 4 + [_turn(7)]
        types = [a.type for a in detect_patterns(events)]
        assert types == ["repeated_failure", "repeated_retry", "long_turn"]

    def test_empty(self):
        assert detect_patterns([]) == []
