"""QMediaPlayer adapter exposing the tracker's playback-source interface."""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from typing import Callable, Optional

from PySide6.QtCore import QObject, QUrl
from PySide6.QtMultimedia import QAudioOutput, QMediaPlayer

from domain.models import SourceEvent
from playback.signal_map import MediaStatus, PlayerSignalMapper, PlayerState

logger = logging.getLogger(__name__)

_PLAYBACK_STATES = {
    QMediaPlayer.PlaybackState.PlayingState: PlayerState.PLAYING,
    QMediaPlayer.PlaybackState.PausedState: PlayerState.PAUSED,
    QMediaPlayer.PlaybackState.StoppedState: PlayerState.STOPPED,
}

_MEDIA_STATUSES = {
    QMediaPlayer.MediaStatus.LoadedMedia: MediaStatus.LOADED,
    QMediaPlayer.MediaStatus.EndOfMedia: MediaStatus.END_OF_MEDIA,
}


class QtMediaSource(QObject):
    """Wraps a :class:`QMediaPlayer` + :class:`QAudioOutput` pair.

    Qt reports positions in milliseconds; everything here is seconds.
    Subscribers are plain callables invoked with no arguments on the Qt
    thread, in the order Qt delivers the underlying signals.
    """

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.player = QMediaPlayer(self)
        self.audio = QAudioOutput(self)
        self.player.setAudioOutput(self.audio)

        self._callbacks: dict[str, list[Callable[[], None]]] = defaultdict(list)
        self._mapper = PlayerSignalMapper()

        self.player.playbackStateChanged.connect(self._on_playback_state)
        self.player.mediaStatusChanged.connect(self._on_media_status)
        self.player.positionChanged.connect(lambda _pos: self._fire(SourceEvent.TIMEUPDATE))
        self.player.durationChanged.connect(lambda _dur: self._fire(SourceEvent.TIMEUPDATE))
        self.audio.mutedChanged.connect(lambda _muted: self._fire(SourceEvent.VOLUMECHANGE))
        self.player.errorOccurred.connect(self._on_error)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def load(self, path: Path) -> None:
        if not path.exists():
            logger.warning("Video file not found: %s", path)
        self.player.setSource(QUrl.fromLocalFile(str(path.resolve())))
        logger.info("Video source set: %s", path)

    def set_video_output(self, output: QObject) -> None:
        self.player.setVideoOutput(output)

    # ------------------------------------------------------------------
    # Playback source interface
    # ------------------------------------------------------------------

    def current_time(self) -> float:
        return self.player.position() / 1000.0

    def duration(self) -> float:
        return max(0, self.player.duration()) / 1000.0

    def play(self) -> None:
        if self.player.mediaStatus() == QMediaPlayer.MediaStatus.EndOfMedia:
            self.player.setPosition(0)
        self.player.play()

    def pause(self) -> None:
        self.player.pause()

    def mute(self) -> None:
        self.audio.setMuted(True)

    def unmute(self) -> None:
        self.audio.setMuted(False)

    def is_muted(self) -> bool:
        return self.audio.isMuted()

    def is_playing(self) -> bool:
        return self.player.playbackState() == QMediaPlayer.PlaybackState.PlayingState

    def subscribe(self, event: str, callback: Callable[[], None]) -> None:
        self._callbacks[event].append(callback)

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _fire(self, event: SourceEvent) -> None:
        for cb in list(self._callbacks.get(event.value, ())):
            try:
                cb()
            except Exception:
                logger.exception("Subscriber for '%s' failed.", event.value)

    def _fire_all(self, events: list[SourceEvent]) -> None:
        for event in events:
            self._fire(event)

    def _on_playback_state(self, state: QMediaPlayer.PlaybackState) -> None:
        mapped = _PLAYBACK_STATES.get(state)
        if mapped is None:
            return
        self._fire_all(
            self._mapper.on_playback_state(mapped, self.player.position(), self.player.duration())
        )

    def _on_media_status(self, status: QMediaPlayer.MediaStatus) -> None:
        self._fire_all(self._mapper.on_media_status(_MEDIA_STATUSES.get(status, MediaStatus.OTHER)))

    def _on_error(self, error: QMediaPlayer.Error, message: str) -> None:
        logger.warning("Media player error %s: %s", error, message)
