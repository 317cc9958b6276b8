"""
Refresh worker — runs reconciliation cycles.

One cycle: tail the hook log → ingest → scan the live snapshot → merge →
persist dirty projects → truncate the consumed log. Cycles never overlap;
`watch` drives them from a periodic timer and a debounced change signal.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .core.config import Config
from .core.models import LiveProject, ProjectView
from .core.persistence import ProjectFiles
from .core.store import Store
from .ingest.events import EventLogTailer
from .ingest.hooks import HookIngestor
from .ingest.scanner import scan_projects

logger = logging.getLogger(__name__)

Scanner = Callable[[Path], List[LiveProject]]


@dataclass
class CycleResult:
    events_consumed: int = 0
    events_applied: int = 0
    files_written: int = 0
    projects: List[ProjectView] = field(default_factory=list)


class RefreshWorker:
    """Owns the store and every component that writes to it."""

    def __init__(self, config: Optional[Config] = None, *, scanner: Optional[Scanner] = None):
        self.config = config or Config.load()
        self.files = ProjectFiles(self.config.resolved_store_dir)
        self.store = Store(
            self.files.load(),
            activity_buffer_size=self.config.activity_buffer_size,
        )
        self.tailer = EventLogTailer(self.config.events_path)
        self.ingestor = HookIngestor(self.store)
        self._scan = scanner or scan_projects
        self._last_live: List[LiveProject] = []
        self._stopping = threading.Event()

    def run_cycle(self, *, now: Optional[str] = None, truncate: bool = True) -> CycleResult:
        """Run one refresh pass.

        With `truncate` off the hook log is left in place, so a later
        worker replays it; the merge makes that replay harmless.
        """
        result = CycleResult()

        records = self.tailer.consume()
        result.events_consumed = len(records)
        if records:
            result.events_applied = self.ingestor.ingest(records, now=now)

        try:
            live = self._scan(self.config.resolved_claude_dir)
            self._last_live = live
        except Exception as e:
            # A failed scan must not read as "everything vanished"
            logger.error(f"Snapshot scan failed, reusing previous snapshot: {e}")
            live = self._last_live

        result.projects = self.store.merge(live, now=now)
        result.files_written = self.files.save(self.store.projects, self.store.dirty, now=now)
        self.store.clear_dirty()

        self.ingestor.forget_gone_turns()

        if records and truncate:
            # The log is the only copy of these events until the files land
            self.files.flush()
            self.tailer.truncate()

        logger.debug(
            f"Cycle: {result.events_consumed} events, "
            f"{len(result.projects)} projects, {result.files_written} files"
        )
        return result

    def watch(
        self,
        *,
        on_cycle: Optional[Callable[[CycleResult], None]] = None,
        max_cycles: Optional[int] = None,
    ) -> int:
        """Run cycles until stopped. Returns the number of cycles run.

        A cycle runs every `poll_interval` seconds, or sooner once a burst
        of changes to the watched paths has been quiet for `debounce` seconds.
        """
        interval = max(self.config.poll_interval, 0.01)
        debounce = max(self.config.debounce, 0.0)
        tick = max(min(interval, debounce or interval) / 2, 0.01)

        cycles = 0
        fingerprint = self._fingerprint()
        last_run: Optional[float] = None
        changed_at: Optional[float] = None

        while not self._stopping.is_set():
            current = self._fingerprint()
            clock = time.monotonic()
            if current != fingerprint:
                fingerprint = current
                changed_at = clock

            due = last_run is None or clock - last_run >= interval
            settled = changed_at is not None and clock - changed_at >= debounce
            if due or settled:
                result = self.run_cycle()
                cycles += 1
                last_run = time.monotonic()
                changed_at = None
                # Our own truncation of the log is not an external change
                fingerprint = self._fingerprint()
                if on_cycle is not None:
                    on_cycle(result)
                if max_cycles is not None and cycles >= max_cycles:
                    break

            self._stopping.wait(tick)

        return cycles

    def stop(self) -> None:
        self._stopping.set()

    def close(self) -> None:
        self.stop()
        self.files.close()

    def _fingerprint(self) -> Tuple[Tuple[int, int], ...]:
        claude_dir = self.config.resolved_claude_dir
        paths = [self.config.events_path, claude_dir / "todos", claude_dir / "tasks"]
        marks = []
        for path in paths:
            try:
                st = path.stat()
                marks.append((st.st_mtime_ns, st.st_size))
            except OSError:
                marks.append((0, 0))
        return tuple(marks)
