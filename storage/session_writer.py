"""Local session store: tracking events, meta and summary on disk."""

from __future__ import annotations

import csv
import json
import logging
import time
from pathlib import Path
from typing import Any

from domain.models import SessionMeta, TrackedEvent

logger = logging.getLogger(__name__)

_EVENT_FIELDS = ["timestamp_wall", "event_name", "properties"]


class SessionWriter:
    """Creates a session directory and appends every tracking event to
    ``events.csv`` with line-buffering so data is not lost if the process
    crashes.

    Also usable directly as an event sink.
    """

    def __init__(self, session_dir: Path) -> None:
        self.session_dir = session_dir
        session_dir.mkdir(parents=True, exist_ok=True)

        # Open files in line-buffered mode (buffering=1 applies to text mode)
        self._ef = open(session_dir / "events.csv", "w", newline="", buffering=1, encoding="utf-8")
        self._ew = csv.DictWriter(self._ef, fieldnames=_EVENT_FIELDS)
        self._ew.writeheader()

        self._count = 0
        self._closed = False
        logger.info("SessionWriter opened at %s", session_dir)

    # ------------------------------------------------------------------
    # Event sink
    # ------------------------------------------------------------------

    def is_ready(self) -> bool:
        return not self._closed

    def emit(self, event_name: str, properties: dict[str, Any]) -> None:
        self.write_event(TrackedEvent(event_name, dict(properties), time.time()))

    # ------------------------------------------------------------------
    # Write methods
    # ------------------------------------------------------------------

    def write_event(self, ev: TrackedEvent) -> None:
        if self._closed:
            return
        self._ew.writerow(
            {
                "timestamp_wall": f"{ev.timestamp_wall:.6f}",
                "event_name": ev.name,
                "properties": json.dumps(ev.properties, sort_keys=True, default=str),
            }
        )
        self._count += 1

    def write_meta(self, meta: SessionMeta) -> None:
        _write_json(self.session_dir / "session_meta.json", meta.to_dict())

    def write_summary(self, summary: dict[str, Any]) -> None:
        _write_json(self.session_dir / "summary.json", summary)

    @property
    def event_count(self) -> int:
        return self._count

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ef.close()
        logger.info("SessionWriter closed (%d events).", self._count)


def read_events(session_dir: Path) -> list[TrackedEvent]:
    """Load ``events.csv`` back into :class:`TrackedEvent` records."""
    path = session_dir / "events.csv"
    if not path.exists():
        return []
    with open(path, newline="", encoding="utf-8") as fh:
        return [
            TrackedEvent(
                name=row["event_name"],
                properties=json.loads(row["properties"] or "{}"),
                timestamp_wall=float(row["timestamp_wall"]),
            )
            for row in csv.DictReader(fh)
        ]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _write_json(path: Path, data: Any) -> None:
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, default=str)
    except OSError as exc:
        logger.error("Failed to write %s: %s", path, exc)
