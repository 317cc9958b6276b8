"""
Pattern detection over a project's activity buffer.

Flags three anomaly shapes per session:
  - the same tool failing several times in a row
  - the Task (sub-agent spawn) tool being called over and over
  - a single turn running for a long time
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .models import ActivityAlert, ActivityEvent

FAILURE_THRESHOLD = 3
FAILURE_ERROR_THRESHOLD = 5
RETRY_THRESHOLD = 4
RETRY_ERROR_THRESHOLD = 6
LONG_TURN_MS = 5 * 60 * 1000
LONG_TURN_ERROR_MS = 10 * 60 * 1000

SPAWN_TOOL = "Task"
TURN_COMPLETE = "_turn_complete"


def detect_patterns(events: Iterable[ActivityEvent]) -> List[ActivityAlert]:
    """Scan activity events and return alerts, grouped by session."""
    by_session: Dict[str, List[ActivityEvent]] = {}
    for ev in events:
        by_session.setdefault(ev.session_id, []).append(ev)

    alerts: List[ActivityAlert] = []
    for session_id, session_events in by_session.items():
        alerts.extend(_repeated_failures(session_id, session_events))
        alerts.extend(_repeated_retries(session_id, session_events))
        alerts.extend(_long_turns(session_id, session_events))
    return alerts


def _repeated_failures(session_id: str, events: List[ActivityEvent]) -> List[ActivityAlert]:
    alerts: List[ActivityAlert] = []
    run = 0
    tool = ""
    last: Optional[ActivityEvent] = None

    def flush() -> None:
        if run >= FAILURE_THRESHOLD and last is not None:
            alerts.append(ActivityAlert(
                type="repeated_failure",
                severity="error" if run >= FAILURE_ERROR_THRESHOLD else "warning",
                message=f"{tool} failed {run} times in a row",
                count=run,
                session_id=session_id,
                project_path=last.project_path,
                ts=last.ts,
            ))

    for ev in events:
        if ev.is_error and tool and ev.tool_name == tool:
            run += 1
            last = ev
        elif ev.is_error:
            flush()
            tool, run, last = ev.tool_name, 1, ev
        else:
            flush()
            tool, run, last = "", 0, None
    flush()
    return alerts


def _repeated_retries(session_id: str, events: List[ActivityEvent]) -> List[ActivityAlert]:
    alerts: List[ActivityAlert] = []
    run = 0
    last: Optional[ActivityEvent] = None

    def flush() -> None:
        if run >= RETRY_THRESHOLD and last is not None:
            alerts.append(ActivityAlert(
                type="repeated_retry",
                severity="error" if run >= RETRY_ERROR_THRESHOLD else "warning",
                message=f"{SPAWN_TOOL} tool called {run} times in a row (possible retry loop)",
                count=run,
                session_id=session_id,
                project_path=last.project_path,
                ts=last.ts,
            ))

    for ev in events:
        if ev.tool_name == SPAWN_TOOL:
            run += 1
            last = ev
        else:
            flush()
            run, last = 0, None
    flush()
    return alerts


def _long_turns(session_id: str, events: List[ActivityEvent]) -> List[ActivityAlert]:
    alerts: List[ActivityAlert] = []
    for ev in events:
        if ev.tool_name != TURN_COMPLETE or not ev.duration_ms:
            continue
        if ev.duration_ms <= LONG_TURN_MS:
            continue
        alerts.append(ActivityAlert(
            type="long_turn",
            severity="error" if ev.duration_ms > LONG_TURN_ERROR_MS else "warning",
            message=f"Turn took {ev.duration_ms // 60000}+ minutes",
            count=1,
            session_id=session_id,
            project_path=ev.project_path,
            ts=ev.ts,
        ))
    return alerts
