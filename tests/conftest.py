"""Shared fakes: a scriptable player, a recording sink, a manual clock
and a scheduler driven by that clock."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Optional

import pytest

from domain.state_machine import WatchSessionTracker


class ManualClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class _Handle:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Timers fire only when :meth:`advance` moves the shared clock."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self._pending: list[_Handle] = []

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _Handle:
        handle = _Handle(self.clock.now + delay_ms / 1000.0, callback)
        self._pending.append(handle)
        return handle

    def advance(self, seconds: float, on_tick: Optional[Callable[[float], None]] = None) -> None:
        """Move time forward, firing due timers in order.  *on_tick* runs
        with the current time before each timer fires (used to move the
        fake player's position along with the clock)."""
        target = self.clock.now + seconds
        while True:
            due = [h for h in self._pending if not h.cancelled and h.due <= target + 1e-9]
            if not due:
                break
            handle = min(due, key=lambda h: h.due)
            self._pending.remove(handle)
            self.clock.now = max(self.clock.now, handle.due)
            if on_tick:
                on_tick(self.clock.now)
            handle.callback()
        self.clock.now = target
        if on_tick:
            on_tick(self.clock.now)

    @property
    def pending(self) -> int:
        return sum(1 for h in self._pending if not h.cancelled)


class FakeSource:
    """Playback source whose position follows the clock while playing."""

    def __init__(self, clock: ManualClock, duration: float = 100.0) -> None:
        self.clock = clock
        self._duration = duration
        self.position = 0.0
        self.playing = False
        self.muted = False
        self.broken = False
        self.calls: list[str] = []
        self._callbacks: dict[str, list[Callable[[], None]]] = defaultdict(list)
        self._last_sync = clock.now

    # Playback source interface ------------------------------------------

    def current_time(self) -> float:
        if self.broken:
            raise RuntimeError("player not ready")
        self.sync()
        return self.position

    def duration(self) -> float:
        if self.broken:
            raise RuntimeError("player not ready")
        return self._duration

    def play(self) -> None:
        self.calls.append("play")

    def pause(self) -> None:
        self.calls.append("pause")

    def mute(self) -> None:
        self.calls.append("mute")
        self.muted = True

    def unmute(self) -> None:
        self.calls.append("unmute")
        self.muted = False

    def is_muted(self) -> bool:
        return self.muted

    def subscribe(self, event: str, callback: Callable[[], None]) -> None:
        self._callbacks[event].append(callback)

    # Test drivers --------------------------------------------------------

    def set_duration(self, seconds: float) -> None:
        self._duration = seconds

    def sync(self, now: Optional[float] = None) -> None:
        now = self.clock.now if now is None else now
        if self.playing:
            self.position = min(self._duration or float("inf"), self.position + (now - self._last_sync))
        self._last_sync = now

    def fire(self, event: str) -> None:
        for cb in list(self._callbacks[event]):
            cb()

    def start(self) -> None:
        self.sync()
        self.playing = True
        self.fire("play")

    def stop(self) -> None:
        self.sync()
        self.playing = False
        self.fire("pause")

    def finish(self) -> None:
        self.sync()
        self.playing = False
        self.position = self._duration
        self.fire("ended")

    def seek(self, position: float) -> None:
        self.sync()
        self.position = position


class RecordingSink:
    def __init__(self, ready: bool = True) -> None:
        self.ready = ready
        self.events: list[tuple[str, dict[str, Any]]] = []

    def is_ready(self) -> bool:
        return self.ready

    def emit(self, event_name: str, properties: dict[str, Any]) -> None:
        self.events.append((event_name, properties))

    def named(self, name: str) -> list[dict[str, Any]]:
        return [props for n, props in self.events if n == name]

    @property
    def names(self) -> list[str]:
        return [n for n, _ in self.events]


class Harness:
    def __init__(self, duration: float = 100.0, sink_ready: bool = True) -> None:
        self.clock = ManualClock()
        self.scheduler = ManualScheduler(self.clock)
        self.source = FakeSource(self.clock, duration)
        self.sink = RecordingSink(ready=sink_ready)
        self.tracker = WatchSessionTracker(
            self.source,
            self.sink,
            self.scheduler,
            video_id="test_video",
            study_id="test_study",
            clock=self.clock,
        )
        self.tracker.attach()

    def advance(self, seconds: float) -> None:
        self.scheduler.advance(seconds, on_tick=self.source.sync)

    def enable(self) -> None:
        """Tap to Start, then let the delayed autoplay call run."""
        self.tracker.enable_tracking()
        self.advance(self.tracker.start_delay_ms / 1000.0)


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def make_harness() -> Callable[..., Harness]:
    return Harness
