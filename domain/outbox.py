"""Ordered event delivery with retry while the sink is not ready."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Optional

from domain.ports import EventSink, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class Outbox:
    """Queues events in emission order and hands them to the sink once it
    reports ready.

    While anything is queued, new events join the back of the queue so a
    later event never overtakes an earlier one.  A single retry timer is
    pending at most.
    """

    def __init__(
        self,
        sink: EventSink,
        scheduler: Scheduler,
        retry_ms: int = 100,
        retry_limit: int = 600,
    ) -> None:
        self.retry_ms = retry_ms
        self.retry_limit = retry_limit

        self._sink = sink
        self._scheduler = scheduler
        self._queue: deque[tuple[str, dict[str, Any]]] = deque()
        self._retry_handle: Optional[TimerHandle] = None
        self._retries = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def send(self, event_name: str, properties: dict[str, Any]) -> None:
        self._queue.append((event_name, properties))
        self._flush()

    def send_final(self, event_name: str, properties: dict[str, Any]) -> None:
        """One best-effort attempt, no retry.  Used on teardown."""
        self._cancel_retry()
        if self._queue:
            if self._sink_ready():
                self._drain()
            if self._queue:
                logger.warning("Dropping %d undelivered event(s) at teardown.", len(self._queue))
                self._queue.clear()
        self._deliver(event_name, properties)

    @property
    def pending(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _flush(self) -> None:
        if self._retry_handle is not None:
            return  # a retry is already scheduled and will drain in order
        if not self._sink_ready():
            self._schedule_retry()
            return
        self._retries = 0
        self._drain()

    def _drain(self) -> None:
        while self._queue:
            event_name, properties = self._queue.popleft()
            self._deliver(event_name, properties)

    def _retry(self) -> None:
        self._retry_handle = None
        self._retries += 1
        if self._sink_ready():
            self._retries = 0
            self._drain()
            return
        if self._retries >= self.retry_limit:
            logger.warning(
                "Sink still unavailable after %d retries; dropping %d event(s).",
                self._retries,
                len(self._queue),
            )
            self._queue.clear()
            self._retries = 0
            return
        self._schedule_retry()

    def _schedule_retry(self) -> None:
        if self._retries == 0:
            logger.debug("Sink not ready; queueing %d event(s).", len(self._queue))
        self._retry_handle = self._scheduler.call_later(self.retry_ms, self._retry)

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _sink_ready(self) -> bool:
        try:
            return bool(self._sink.is_ready())
        except Exception as exc:
            logger.warning("Sink readiness check failed: %s", exc)
            return False

    def _deliver(self, event_name: str, properties: dict[str, Any]) -> None:
        try:
            self._sink.emit(event_name, properties)
        except Exception as exc:
            logger.warning("Failed to emit %s: %s", event_name, exc)
