"""Progress maths and the end-of-session summary payload."""

from __future__ import annotations

from typing import Any

from domain.models import MILESTONES, WatchSession


def progress_percent(position_s: float, duration_s: float) -> float:
    """Position as a percentage of duration; 0.0 when duration is unknown."""
    if duration_s <= 0:
        return 0.0
    return position_s / duration_s * 100.0


def completion_rate(max_progress_s: float, duration_s: float) -> float:
    return min(100.0, max(0.0, progress_percent(max_progress_s, duration_s)))


def compute_session_summary(session: WatchSession) -> dict[str, Any]:
    """Return the flat ``video_session_complete`` property dict.

    Only closed play intervals are counted; close any open interval on the
    session before calling this for a final report.
    """
    reached = sorted(session.milestones_reached)
    flags = {f"milestone_{m}_reached": m in session.milestones_reached for m in MILESTONES}

    return {
        "total_watch_time_seconds": round(session.accumulated_watch_seconds),
        "play_count": session.play_count,
        "completion_count": session.completion_count,
        "milestones_reached": reached,
        **flags,
        "max_progress_percent": round(
            progress_percent(session.max_progress_seconds, session.duration_seconds)
        ),
        "duration": session.duration_seconds,
        "completion_rate_percent": round(
            completion_rate(session.max_progress_seconds, session.duration_seconds)
        ),
    }
