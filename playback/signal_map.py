"""Translates media-player state/status notifications into source events.

Kept free of Qt so the ordering rules can be exercised without a media
backend.  Qt backends disagree on whether the stopped state or the
end-of-media status arrives first; either way exactly one ``ended`` is
produced and no ``pause`` precedes it.
"""

from __future__ import annotations

from enum import Enum

from domain.models import SourceEvent

# Stopped this close to the duration counts as reaching the end
END_TOLERANCE_MS = 250


class PlayerState(str, Enum):
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


class MediaStatus(str, Enum):
    LOADED = "loaded"
    END_OF_MEDIA = "end_of_media"
    OTHER = "other"


class PlayerSignalMapper:
    def __init__(self) -> None:
        self._at_end = False
        self._end_reported = False

    def on_playback_state(
        self, state: PlayerState, position_ms: int, duration_ms: int
    ) -> list[SourceEvent]:
        if state is PlayerState.PLAYING:
            self._at_end = False
            self._end_reported = False
            return [SourceEvent.PLAY]
        if state is PlayerState.PAUSED:
            return [SourceEvent.PAUSE]
        if self._at_end or _near_end(position_ms, duration_ms):
            return self._ended()
        return [SourceEvent.PAUSE]

    def on_media_status(self, status: MediaStatus) -> list[SourceEvent]:
        if status is MediaStatus.END_OF_MEDIA:
            self._at_end = True
            return self._ended()
        if status is MediaStatus.LOADED:
            self._at_end = False
            self._end_reported = False
            return [SourceEvent.TIMEUPDATE]
        return []

    def _ended(self) -> list[SourceEvent]:
        if self._end_reported:
            return []
        self._end_reported = True
        return [SourceEvent.ENDED]


def _near_end(position_ms: int, duration_ms: int) -> bool:
    return duration_ms > 0 and position_ms >= duration_ms - END_TOLERANCE_MS
