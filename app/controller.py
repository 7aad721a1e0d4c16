"""Session lifecycle controller – wires player, tracker and sinks together."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from app.config import Config
from domain.models import SessionMeta
from domain.ports import PlaybackSource, Scheduler
from domain.state_machine import WatchSessionTracker
from storage.event_sinks import FanoutSink, Ga4Sink, StoreSink, generate_session_id
from storage.session_writer import SessionWriter

logger = logging.getLogger(__name__)


class Controller:
    """Owns one watch session: the tracker, its sinks and the local
    session directory.

    Teardown may be signalled several times (hidden, close, quit); the
    tracker sends the summary once and :meth:`stop_session` closes
    everything once.
    """

    def __init__(
        self,
        config: Config,
        source: PlaybackSource,
        scheduler: Scheduler,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.source = source
        self.scheduler = scheduler
        self._clock = clock

        self.tracker: Optional[WatchSessionTracker] = None
        self._session_writer: Optional[SessionWriter] = None
        self._session_dir: Optional[Path] = None
        self._session_meta: Optional[SessionMeta] = None
        self._remote_sinks: list[Any] = []
        self._summary: Optional[dict[str, Any]] = None
        self._active = False

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self, participant_id: Optional[str] = None) -> Path:
        if self._active:
            raise RuntimeError("Cannot start session: one is already running.")

        cfg = self.config
        pid = (participant_id or cfg.participant_id).strip()
        if not pid:
            logger.warning("No participant ID supplied; events will be anonymous.")

        session_id = generate_session_id()
        session_dir = Path(cfg.runs_dir) / session_id
        sink_names = cfg.enabled_sinks()

        meta = SessionMeta(
            session_id=session_id,
            participant_id=pid,
            video_id=cfg.video_id,
            study_id=cfg.study_id,
            study_type=cfg.study_type,
            started_at=datetime.now().isoformat(),
            video_path=cfg.video_path,
            sinks=sink_names,
        )

        self._session_writer = SessionWriter(session_dir)
        self._session_dir = session_dir
        self._session_meta = meta
        self._summary = None
        self._session_writer.write_meta(meta)

        sinks: list[Any] = []
        if "local" in sink_names:
            sinks.append(self._session_writer)
        self._remote_sinks = self._build_remote_sinks(sink_names, session_id, pid)
        for sink in self._remote_sinks:
            sink.start()
        sinks.extend(self._remote_sinks)
        if not sinks:
            logger.warning("No event sinks enabled; tracking events will be discarded.")

        self.tracker = WatchSessionTracker(
            self.source,
            FanoutSink(sinks),
            self.scheduler,
            video_id=cfg.video_id,
            study_id=cfg.study_id,
            clock=self._clock,
            poll_ms=cfg.milestone_poll_ms,
            start_delay_ms=cfg.start_delay_ms,
            unmute_delay_ms=cfg.unmute_delay_ms,
            sink_retry_ms=cfg.sink_retry_ms,
            sink_retry_limit=cfg.sink_retry_limit,
        )
        self.tracker.attach()
        self._active = True

        logger.info("Session started: %s  participant=%s  sinks=%s", session_id, pid or "-", sink_names)
        return session_dir

    def bind_lifecycle(self, lifecycle: Any) -> None:
        """Connect a :class:`LifecycleTrigger`'s signals."""
        lifecycle.tracking_enabled.connect(self.enable_tracking)
        lifecycle.teardown.connect(self.on_teardown)

    def enable_tracking(self) -> None:
        if self.tracker:
            self.tracker.enable_tracking()

    def toggle_mute(self) -> None:
        if self.tracker:
            self.tracker.toggle_mute()

    def on_teardown(self, reason: str = "") -> Optional[dict[str, Any]]:
        """Send the final summary if it has not gone out yet."""
        if not self._active or self.tracker is None:
            return None
        summary = self.tracker.report_final_results()
        if summary is not None:
            self._summary = summary
            if self._session_writer:
                self._session_writer.write_summary(summary)
            logger.info("Final summary sent (trigger: %s).", reason or "-")
        return summary

    def stop_session(self) -> dict[str, Any]:
        """Final flush, then close the sinks.  Returns the session metrics."""
        if not self._active or self.tracker is None:
            return self._summary or {}

        self.on_teardown("stop")
        metrics = self._summary or self.tracker.snapshot()
        self.tracker.close()

        for sink in self._remote_sinks:
            sink.close()
        self._remote_sinks = []

        if self._session_meta:
            self._session_meta.ended_at = datetime.now().isoformat()
            if self._session_writer:
                self._session_writer.write_meta(self._session_meta)
        if self._session_writer:
            self._session_writer.close()

        self._active = False
        logger.info("Session stopped: %s", self._session_meta.session_id if self._session_meta else "-")
        return metrics

    @property
    def session_dir(self) -> Optional[Path]:
        return self._session_dir

    @property
    def is_active(self) -> bool:
        return self._active

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _build_remote_sinks(self, names: list[str], session_id: str, participant_id: str) -> list[Any]:
        cfg = self.config
        sinks: list[Any] = []
        if "ga4" in names:
            if cfg.ga_measurement_id and cfg.ga_api_secret:
                sinks.append(
                    Ga4Sink(
                        cfg.ga_measurement_id,
                        cfg.ga_api_secret,
                        client_id=session_id,
                        participant_id=participant_id,
                        endpoint=cfg.ga_endpoint,
                        timeout_s=cfg.http_timeout_s,
                    )
                )
            else:
                logger.warning("GA4 sink requested but measurement ID / API secret missing; skipped.")
        if "store" in names:
            sinks.append(
                StoreSink(
                    cfg.store_api_url,
                    session_id=session_id,
                    participant_id=participant_id,
                    study_type=cfg.study_type,
                    page_url=Path(cfg.video_path).resolve().as_uri(),
                    timeout_s=cfg.http_timeout_s,
                )
            )
        return sinks
