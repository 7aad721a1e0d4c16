"""Watch-session state machine shared by every player and sink backend."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Optional

from domain.metrics import compute_session_summary, progress_percent
from domain.models import (
    POLLED_MILESTONES,
    SourceEvent,
    TrackerState,
    TrackingEvent,
    WatchSession,
)
from domain.outbox import Outbox
from domain.ports import EventSink, PlaybackSource, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class WatchSessionTracker:
    """Turns playback source callbacks into tracking events.

    ``DISABLED -> IDLE -> PLAYING <-> PAUSED -> ENDED`` (and ``ENDED ->
    PLAYING`` on replay).  Until :meth:`enable_tracking` is called every
    source callback is ignored, and a play the source starts on its own
    is reverted by pausing it.

    All entry points are meant to be called from one thread (the Qt event
    loop in the app); none of them raise on a misbehaving source or sink.
    """

    def __init__(
        self,
        source: PlaybackSource,
        sink: EventSink,
        scheduler: Scheduler,
        *,
        video_id: str,
        study_id: str = "",
        clock: Callable[[], float] = time.monotonic,
        poll_ms: int = 1000,
        start_delay_ms: int = 500,
        unmute_delay_ms: int = 1000,
        sink_retry_ms: int = 100,
        sink_retry_limit: int = 600,
    ) -> None:
        self.video_id = video_id
        self.study_id = study_id
        self.poll_ms = poll_ms
        self.start_delay_ms = start_delay_ms
        self.unmute_delay_ms = unmute_delay_ms

        self.session = WatchSession()

        self._source = source
        self._scheduler = scheduler
        self._clock = clock
        self._outbox = Outbox(sink, scheduler, retry_ms=sink_retry_ms, retry_limit=sink_retry_limit)

        self._state = TrackerState.DISABLED
        self._poll_handle: Optional[TimerHandle] = None
        self._closed = False
        self._unmute_pending = False
        self._last_muted: Optional[bool] = None
        self._on_state_change: Optional[Callable[[TrackerState], None]] = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Subscribe to the playback source."""
        self._source.subscribe(SourceEvent.PLAY.value, self._handle_play)
        self._source.subscribe(SourceEvent.PAUSE.value, self._handle_pause)
        self._source.subscribe(SourceEvent.ENDED.value, self._handle_ended)
        self._source.subscribe(SourceEvent.TIMEUPDATE.value, self._handle_timeupdate)
        self._source.subscribe(SourceEvent.VOLUMECHANGE.value, self._handle_volumechange)
        self._last_muted = self._read(self._source.is_muted)

    def set_on_state_change(self, callback: Callable[[TrackerState], None]) -> None:
        self._on_state_change = callback

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def is_polling(self) -> bool:
        return self._poll_handle is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def enable_tracking(self) -> None:
        """User gesture received: leave DISABLED and start playback."""
        if self._state is not TrackerState.DISABLED:
            return
        self.session.tracking_enabled = True
        self._set_state(TrackerState.IDLE)
        logger.info("Tracking enabled for %s.", self.video_id)
        self._scheduler.call_later(self.start_delay_ms, self._start_playback)

    def report_final_results(self) -> Optional[dict[str, Any]]:
        """Flush the end-of-session summary.  Safe to call any number of
        times; only the first call after playback has started sends it.

        Returns the summary dict that was sent, or ``None``.
        """
        s = self.session
        if not s.tracking_enabled or not s.has_started_once or s.final_report_sent:
            if s.final_report_sent:
                logger.debug("Final results already reported.")
            return None
        s.final_report_sent = True

        # A hidden or minimised window may keep playing: fold the trailing
        # time in and keep tracking from here.
        now = self._clock()
        s.close_interval(now)
        if self._state is TrackerState.PLAYING:
            s.open_interval(now)

        summary = compute_session_summary(s)
        logger.info(
            "Session summary: watched=%ss plays=%d completions=%d milestones=%s",
            summary["total_watch_time_seconds"],
            s.play_count,
            s.completion_count,
            summary["milestones_reached"],
        )
        if summary["total_watch_time_seconds"] == 0:
            logger.info("Nothing meaningful watched; summary not sent.")
            return None

        self._outbox.send_final(
            TrackingEvent.VIDEO_SESSION_COMPLETE.value, self._with_context(summary)
        )
        return summary

    def close(self) -> None:
        """Stop polling and drop further events.  Called once the sinks
        are about to be closed."""
        self._closed = True
        self._cancel_poll()

    def snapshot(self) -> dict[str, Any]:
        """Current metrics in summary shape, counting any open interval."""
        s = self.session
        accumulated = s.accumulated_watch_seconds
        if s.current_play_started_at is not None:
            accumulated += max(0.0, self._clock() - s.current_play_started_at)
        view = WatchSession(
            accumulated_watch_seconds=accumulated,
            play_count=s.play_count,
            completion_count=s.completion_count,
            duration_seconds=s.duration_seconds,
            max_progress_seconds=s.max_progress_seconds,
            milestones_reached=set(s.milestones_reached),
        )
        data = compute_session_summary(view)
        data["state"] = self._state.value
        return data

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def on_play(self, position: float) -> None:
        if self._state not in (TrackerState.IDLE, TrackerState.PAUSED, TrackerState.ENDED):
            return
        s = self.session
        s.play_count += 1
        s.open_interval(self._clock())
        self._refresh_duration()
        self._set_state(TrackerState.PLAYING)
        logger.info("Play #%d at %.1fs", s.play_count, position)

        if not s.has_started_once:
            s.has_started_once = True
            self._emit(TrackingEvent.VIDEO_START, {"duration": s.duration_seconds})

        self._emit(
            TrackingEvent.VIDEO_PLAY,
            {
                "current_time": position,
                "play_count": s.play_count,
                "is_replay": s.play_count > 1,
            },
        )
        self._arm_poll()

        if self._unmute_pending:
            self._unmute_pending = False
            self._scheduler.call_later(self.unmute_delay_ms, self._unmute_after_start)

    def on_pause(self, position: float) -> None:
        if self._state is not TrackerState.PLAYING:
            return
        s = self.session
        delta = s.close_interval(self._clock())
        s.observe_position(position)
        self._set_state(TrackerState.PAUSED)
        logger.info("Paused at %.1fs  (+%.1fs, total %.1fs)", position, delta, s.accumulated_watch_seconds)

        self._emit(
            TrackingEvent.VIDEO_PAUSE,
            {
                "current_time": position,
                "session_watch_time": round(delta),
                "total_watch_time": round(s.accumulated_watch_seconds),
            },
        )

    def on_ended(self, position: float) -> None:
        # Players may report a pause just before the end.
        if self._state not in (TrackerState.PLAYING, TrackerState.PAUSED):
            return
        s = self.session
        s.close_interval(self._clock())
        s.observe_position(position)
        s.completion_count += 1
        self._set_state(TrackerState.ENDED)
        logger.info("Video ended (completion #%d)", s.completion_count)

        self._reach_milestone(100, position)

    def on_mute_change(self, muted: bool) -> None:
        if self._state is TrackerState.DISABLED:
            return
        if muted == self._last_muted:
            return
        self._last_muted = muted
        position = self._read(self._source.current_time)
        logger.info("Mute toggled: %s", "muted" if muted else "unmuted")
        self._emit(
            TrackingEvent.VIDEO_MUTE_TOGGLE,
            {"is_muted": muted, "current_time": position if position is not None else 0.0},
        )

    def toggle_mute(self) -> None:
        """Manual mute button."""
        if self._state is TrackerState.DISABLED:
            return
        muted = self._read(self._source.is_muted)
        if muted is None:
            return
        try:
            if muted:
                self._source.unmute()
            else:
                self._source.mute()
        except Exception as exc:
            logger.warning("Mute toggle failed: %s", exc)
            return
        now_muted = self._read(self._source.is_muted)
        self.on_mute_change(bool(now_muted) if now_muted is not None else not muted)

    # ------------------------------------------------------------------
    # Source callbacks
    # ------------------------------------------------------------------

    def _handle_play(self) -> None:
        if self._state is TrackerState.DISABLED:
            logger.info("Play before tracking was enabled; pausing source.")
            self._call(self._source.pause)
            return
        position = self._read(self._source.current_time)
        self.on_play(position if position is not None else 0.0)

    def _handle_pause(self) -> None:
        position = self._read(self._source.current_time)
        self.on_pause(position if position is not None else 0.0)

    def _handle_ended(self) -> None:
        position = self._read(self._source.current_time)
        if position is None:
            position = self.session.duration_seconds
        self.on_ended(position)

    def _handle_timeupdate(self) -> None:
        if self._state is TrackerState.DISABLED:
            return
        self._refresh_duration()
        if self._state is TrackerState.PLAYING:
            position = self._read(self._source.current_time)
            if position is not None:
                self.session.observe_position(position)

    def _handle_volumechange(self) -> None:
        muted = self._read(self._source.is_muted)
        if muted is not None:
            self.on_mute_change(bool(muted))

    # ------------------------------------------------------------------
    # Milestone polling
    # ------------------------------------------------------------------

    def _arm_poll(self) -> None:
        if self._poll_handle is None and not self._closed:
            self._poll_handle = self._scheduler.call_later(self.poll_ms, self._poll_tick)

    def _cancel_poll(self) -> None:
        if self._poll_handle is not None:
            self._poll_handle.cancel()
            self._poll_handle = None

    def _poll_tick(self) -> None:
        self._poll_handle = None
        if not self.session.tracking_enabled or self._state is not TrackerState.PLAYING:
            return

        position = self._read(self._source.current_time)
        if position is not None:
            self._check_milestones(position)
        self._arm_poll()

    def _check_milestones(self, position: float) -> None:
        s = self.session
        s.observe_position(position)
        self._refresh_duration()
        if s.duration_seconds <= 0:
            return

        percent = progress_percent(position, s.duration_seconds)
        for milestone in POLLED_MILESTONES:
            if percent >= milestone:
                self._reach_milestone(milestone, position)
        # Fallback for sources that reach the end without an ended event
        if percent >= 100:
            self._reach_milestone(100, position)

    def _reach_milestone(self, milestone: int, position: float) -> None:
        s = self.session
        if not s.mark_milestone(milestone):
            return
        logger.info("Milestone reached: %d%%", milestone)
        self._emit(
            TrackingEvent.VIDEO_PROGRESS,
            {
                "milestone": milestone,
                "current_time": round(position),
                "total_watch_time_so_far": round(self._watched_so_far()),
                "play_count": s.play_count,
            },
        )

    # ------------------------------------------------------------------
    # Autoplay sequence
    # ------------------------------------------------------------------

    def _start_playback(self) -> None:
        # Muted first so the platform accepts the autoplay; unmuted once
        # playback is confirmed by the next on_play.
        self._last_muted = True
        self._unmute_pending = True
        if not self._call(self._source.mute) or not self._call(self._source.play):
            self._unmute_pending = False

    def _unmute_after_start(self) -> None:
        if self._state is not TrackerState.PLAYING:
            self._unmute_pending = True
            return
        self._last_muted = False
        if self._call(self._source.unmute):
            logger.info("Video started and unmuted.")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _refresh_duration(self) -> None:
        s = self.session
        if s.duration_seconds > 0:
            return
        duration = self._read(self._source.duration)
        if duration is not None and s.set_duration(duration):
            logger.info("Video duration known: %.1fs", duration)

    def _watched_so_far(self) -> float:
        s = self.session
        total = s.accumulated_watch_seconds
        if s.current_play_started_at is not None:
            total += max(0.0, self._clock() - s.current_play_started_at)
        return total

    def _with_context(self, properties: dict[str, Any]) -> dict[str, Any]:
        data: dict[str, Any] = {"video_id": self.video_id}
        data.update(properties)
        if self.study_id:
            data["study_id"] = self.study_id
        return data

    def _emit(self, event: TrackingEvent, properties: dict[str, Any]) -> None:
        if self._closed:
            logger.debug("Tracker closed; dropping %s.", event.value)
            return
        self._outbox.send(event.value, self._with_context(properties))

    def _set_state(self, new_state: TrackerState) -> None:
        if new_state is self._state:
            return
        logger.debug("Tracker: %s → %s", self._state.value, new_state.value)
        self._state = new_state
        if self._on_state_change:
            try:
                self._on_state_change(new_state)
            except Exception as exc:
                logger.warning("State-change listener failed: %s", exc)

    @staticmethod
    def _read(getter: Callable[[], Any]) -> Any:
        """Call a source getter; ``None`` if it raises or returns garbage."""
        try:
            value = getter()
        except Exception as exc:
            logger.debug("Playback source not ready: %s", exc)
            return None
        if value is None:
            return None
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            if math.isnan(value) or math.isinf(value) or value < 0:
                return None
        return value

    @staticmethod
    def _call(action: Callable[[], None]) -> bool:
        try:
            action()
            return True
        except Exception as exc:
            logger.warning("Playback source call failed: %s", exc)
            return False
