"""Core data models for the video ad watch tracker."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Progress thresholds, in percent of video duration
MILESTONES: tuple[int, ...] = (25, 50, 75, 100)
POLLED_MILESTONES: tuple[int, ...] = (25, 50, 75)


class TrackerState(str, Enum):
    DISABLED = "DISABLED"
    IDLE = "IDLE"
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"
    ENDED = "ENDED"


class SourceEvent(str, Enum):
    """Notifications a playback source can deliver to subscribers."""

    PLAY = "play"
    PAUSE = "pause"
    ENDED = "ended"
    TIMEUPDATE = "timeupdate"
    VOLUMECHANGE = "volumechange"


class TrackingEvent(str, Enum):
    VIDEO_START = "video_start"
    VIDEO_PLAY = "video_play"
    VIDEO_PAUSE = "video_pause"
    VIDEO_PROGRESS = "video_progress"
    VIDEO_MUTE_TOGGLE = "video_mute_toggle"
    VIDEO_SESSION_COMPLETE = "video_session_complete"


@dataclass
class WatchSession:
    """Per-run watch state.  Mutated only by :class:`WatchSessionTracker`."""

    tracking_enabled: bool = False
    has_started_once: bool = False
    play_count: int = 0
    completion_count: int = 0
    current_play_started_at: Optional[float] = None  # monotonic; set only while playing
    accumulated_watch_seconds: float = 0.0
    duration_seconds: float = 0.0  # 0 until the source reports it
    max_progress_seconds: float = 0.0
    milestones_reached: set[int] = field(default_factory=set)
    final_report_sent: bool = False

    @property
    def is_playing_interval_open(self) -> bool:
        return self.current_play_started_at is not None

    def open_interval(self, now: float) -> None:
        self.current_play_started_at = now

    def close_interval(self, now: float) -> float:
        """Fold the open play interval into the total and return its length.

        Returns 0.0 when no interval is open.  A clock that went backwards
        contributes nothing rather than a negative amount.
        """
        if self.current_play_started_at is None:
            return 0.0
        delta = max(0.0, now - self.current_play_started_at)
        self.accumulated_watch_seconds += delta
        self.current_play_started_at = None
        return delta

    def set_duration(self, seconds: float) -> bool:
        """Record the duration the first time a positive value is seen."""
        if self.duration_seconds > 0 or seconds <= 0:
            return False
        self.duration_seconds = seconds
        return True

    def observe_position(self, position: float) -> None:
        if position > self.max_progress_seconds:
            self.max_progress_seconds = position

    def mark_milestone(self, milestone: int) -> bool:
        """Add *milestone* to the reached set; True only the first time."""
        if milestone in self.milestones_reached:
            return False
        self.milestones_reached.add(milestone)
        return True


@dataclass
class TrackedEvent:
    """An event as handed to a sink, stamped with wall-clock time."""

    name: str
    properties: dict[str, Any]
    timestamp_wall: float


@dataclass
class SessionMeta:
    session_id: str
    participant_id: str
    video_id: str
    study_id: str
    study_type: str
    started_at: str    # ISO8601
    ended_at: Optional[str] = None
    video_path: str = ""
    sinks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)
