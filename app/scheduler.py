"""QTimer-backed scheduler for the tracker's deferred callbacks."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from PySide6.QtCore import QObject, QTimer

logger = logging.getLogger(__name__)


class QtTimerHandle:
    def __init__(self, timer: QTimer) -> None:
        self._timer: Optional[QTimer] = timer

    def cancel(self) -> None:
        if self._timer is None:
            return
        self._timer.stop()
        self._timer.deleteLater()
        self._timer = None

    @property
    def active(self) -> bool:
        return self._timer is not None and self._timer.isActive()


class QtScheduler:
    """Runs callbacks on the Qt event loop after a delay.

    Each call gets its own single-shot timer so it can be cancelled
    individually; the timer is released after it fires.
    """

    def __init__(self, parent: Optional[QObject] = None) -> None:
        self._parent = parent

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> QtTimerHandle:
        timer = QTimer(self._parent)
        timer.setSingleShot(True)
        timer.setInterval(max(0, int(delay_ms)))
        handle = QtTimerHandle(timer)

        def fire() -> None:
            handle.cancel()
            try:
                callback()
            except Exception:
                logger.exception("Scheduled callback failed.")

        timer.timeout.connect(fire)
        timer.start()
        return handle
