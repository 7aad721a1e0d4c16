"""Remote event sinks: GA4 Measurement Protocol and the study's own store.

Both deliver from a background thread so a slow or unreachable endpoint
never stalls playback.  ``emit`` only enqueues.
"""

from __future__ import annotations

import json
import logging
import queue
import random
import string
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

GA4_ENDPOINT = "https://www.google-analytics.com/mp/collect"

# (url, json body) -> None; raises on failure
Transport = Callable[[str, bytes], None]


def generate_session_id() -> str:
    """``session_<epoch ms>_<9 random chars>``"""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def urllib_transport(timeout_s: float) -> Transport:
    def post(url: str, body: bytes) -> None:
        req = urllib.request.Request(
            url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            resp.read()

    return post


class _HttpSink(ABC):
    """Worker-thread delivery shared by the HTTP sinks.  Subclasses say
    where and what to post through :meth:`build_request`."""

    name = "http"

    def __init__(self, transport: Transport, max_queue: int = 1000) -> None:
        self._transport = transport
        self._queue: queue.Queue[Optional[tuple[str, bytes]]] = queue.Queue(maxsize=max_queue)
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._sent = 0
        self._failed = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(
            target=self._worker_loop, daemon=True, name=f"{self.name}-sink"
        )
        self._thread.start()
        logger.info("%s sink started.", self.name)

    def close(self, timeout: float = 2.0) -> None:
        """Stop the worker after it has drained what is already queued.

        Waits at most *timeout* seconds so shutdown is never held up by a
        hanging endpoint.
        """
        if not self._running:
            return
        self._running = False
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("%s sink closed.  sent=%d failed=%d", self.name, self._sent, self._failed)

    # ------------------------------------------------------------------
    # Event sink
    # ------------------------------------------------------------------

    def is_ready(self) -> bool:
        return self._running

    def emit(self, event_name: str, properties: dict[str, Any]) -> None:
        try:
            request = self.build_request(event_name, properties)
        except (TypeError, ValueError) as exc:
            logger.warning("%s: cannot encode %s: %s", self.name, event_name, exc)
            return
        try:
            self._queue.put_nowait(request)
        except queue.Full:
            logger.warning("%s: queue full, dropping %s", self.name, event_name)

    @abstractmethod
    def build_request(self, event_name: str, properties: dict[str, Any]) -> tuple[str, bytes]:
        ...

    @property
    def sent(self) -> int:
        return self._sent

    @property
    def failed(self) -> int:
        return self._failed

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                break
            url, body = item
            try:
                self._transport(url, body)
                self._sent += 1
            except (urllib.error.URLError, OSError, ValueError) as exc:
                self._failed += 1
                logger.warning("%s: delivery failed: %s", self.name, exc)


class Ga4Sink(_HttpSink):
    """Sends events to a GA4 property through the Measurement Protocol."""

    name = "ga4"

    def __init__(
        self,
        measurement_id: str,
        api_secret: str,
        client_id: str,
        participant_id: str = "",
        endpoint: str = GA4_ENDPOINT,
        transport: Optional[Transport] = None,
        timeout_s: float = 5.0,
    ) -> None:
        super().__init__(transport or urllib_transport(timeout_s))
        self.measurement_id = measurement_id
        self.client_id = client_id
        self.participant_id = participant_id
        query = urllib.parse.urlencode({"measurement_id": measurement_id, "api_secret": api_secret})
        self._url = f"{endpoint}?{query}"

    def build_payload(self, event_name: str, properties: dict[str, Any]) -> dict[str, Any]:
        params: dict[str, Any] = {}
        for key, value in properties.items():
            # GA4 event parameters are scalars only
            if isinstance(value, (list, tuple, set)):
                value = ",".join(str(v) for v in value)
            params[key] = value

        payload: dict[str, Any] = {"client_id": self.client_id}
        if self.participant_id:
            params["user_id"] = self.participant_id
            params["participant_id"] = self.participant_id
            payload["user_id"] = self.participant_id
            payload["user_properties"] = {"participant_id": {"value": self.participant_id}}
        payload["events"] = [{"name": event_name, "params": params}]
        return payload

    def build_request(self, event_name: str, properties: dict[str, Any]) -> tuple[str, bytes]:
        body = json.dumps(self.build_payload(event_name, properties)).encode("utf-8")
        return self._url, body


class StoreSink(_HttpSink):
    """Posts events to the study's own tracking API (``<base>/track``).

    Announces the session with a ``session_start`` event as soon as it is
    started, so the store knows about sessions that never reach playback.
    """

    name = "store"

    def __init__(
        self,
        api_base_url: str,
        session_id: str,
        participant_id: str,
        study_type: str,
        page_url: str = "",
        transport: Optional[Transport] = None,
        timeout_s: float = 5.0,
    ) -> None:
        super().__init__(transport or urllib_transport(timeout_s))
        self.session_id = session_id
        self.participant_id = participant_id
        self.study_type = study_type
        self.page_url = page_url
        self._url = api_base_url.rstrip("/") + "/track"

    def start(self) -> None:
        if self.is_ready():
            return
        super().start()
        self.emit("session_start", {"session_id": self.session_id})

    def build_document(self, event_name: str, properties: dict[str, Any]) -> dict[str, Any]:
        return {
            "event_name": event_name,
            "participant_id": self.participant_id,
            "study_type": self.study_type,
            "session_id": self.session_id,
            "properties": properties,
            "page_url": self.page_url,
            "timestamp": _iso_now(),
        }

    def build_request(self, event_name: str, properties: dict[str, Any]) -> tuple[str, bytes]:
        body = json.dumps(self.build_document(event_name, properties), default=str).encode("utf-8")
        return self._url, body


class FanoutSink:
    """Forwards each event to several sinks.  Ready only when all are."""

    def __init__(self, sinks: Iterable[Any]) -> None:
        self.sinks = list(sinks)

    def is_ready(self) -> bool:
        return all(s.is_ready() for s in self.sinks)

    def emit(self, event_name: str, properties: dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                sink.emit(event_name, dict(properties))
            except Exception as exc:
                logger.warning("Sink %s failed on %s: %s", type(sink).__name__, event_name, exc)
