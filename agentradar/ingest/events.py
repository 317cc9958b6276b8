"""
Event log tailer — incremental reads of the hook capture log.

The capture hook appends one JSON object per line to events.jsonl.
The tailer remembers how far it has read and only decodes new bytes.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

logger = logging.getLogger(__name__)


class EventLogTailer:
    """Reads records appended to an event log since the last call."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self.offset = 0

    def consume(self) -> List[Dict[str, Any]]:
        """Return records appended since the last read, in file order."""
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning(f"Cannot stat {self.path}: {e}")
            return []

        if size < self.offset:
            # Truncated or replaced behind our back
            logger.debug(f"{self.path} shrank ({size} < {self.offset}), rereading from start")
            self.offset = 0
        if size == self.offset:
            return []

        try:
            with open(self.path, "rb") as f:
                f.seek(self.offset)
                chunk = f.read(size - self.offset)
        except OSError as e:
            logger.warning(f"Cannot read {self.path}: {e}")
            return []

        self.offset += len(chunk)
        return _decode_lines(chunk)

    def truncate(self) -> None:
        """Empty the log after its records have been folded into the store.

        Renames the file away before recreating it so an append racing
        with us lands in one file or the other, never a half-cleared one.
        """
        if not self.path.exists():
            self.offset = 0
            return

        consumed = self.path.with_name(self.path.name + ".consumed")
        try:
            self.path.rename(consumed)
            self.path.write_text("", encoding="utf-8")
            consumed.unlink()
        except OSError as e:
            logger.debug(f"Truncate of {self.path} skipped: {e}")
            return
        self.offset = 0

    def reset(self) -> None:
        self.offset = 0


def _decode_lines(chunk: bytes) -> List[Dict[str, Any]]:
    records: List[Dict[str, Any]] = []
    for line in chunk.decode("utf-8", errors="replace").split("\n"):
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed event line: {line[:120]}")
            continue
        if isinstance(record, dict):
            records.append(record)
        else:
            logger.debug(f"Skipping non-object event line: {line[:120]}")
    return records
