"""Capability interfaces the tracker is written against.

Adapters for a concrete player, analytics backend or timer implement
these structurally; nothing needs to inherit from them.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol


class PlaybackSource(Protocol):
    def current_time(self) -> float: ...

    def duration(self) -> float: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def mute(self) -> None: ...

    def unmute(self) -> None: ...

    def is_muted(self) -> bool: ...

    def subscribe(self, event: str, callback: Callable[[], None]) -> None:
        """Register *callback* for one of the ``SourceEvent`` values."""
        ...


class EventSink(Protocol):
    def is_ready(self) -> bool: ...

    def emit(self, event_name: str, properties: dict[str, Any]) -> None:
        """Fire-and-forget delivery; return value is never inspected."""
        ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...
