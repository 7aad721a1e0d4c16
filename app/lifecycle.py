"""Lifecycle trigger: the user gesture that enables tracking, and the
several overlapping signals that mean the session is being torn down."""

from __future__ import annotations

import logging
from typing import Optional

from PySide6.QtCore import QObject, Qt, Signal
from PySide6.QtGui import QGuiApplication

logger = logging.getLogger(__name__)

_HIDDEN_STATES = (
    Qt.ApplicationState.ApplicationHidden,
    Qt.ApplicationState.ApplicationSuspended,
)


class LifecycleTrigger(QObject):
    """Multiple producers (window close, minimise, app hidden, quit) feed
    one ``teardown`` signal.  Receivers must be idempotent: teardown is
    normally emitted more than once per run.
    """

    tracking_enabled = Signal()
    teardown = Signal(str)  # reason

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._enabled = False

    def install(self, app: QGuiApplication) -> None:
        app.aboutToQuit.connect(lambda: self.notify_teardown("quit"))
        app.applicationStateChanged.connect(self._on_app_state)

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def request_enable(self) -> None:
        if self._enabled:
            return
        self._enabled = True
        logger.info("Tap to Start – tracking enabled.")
        self.tracking_enabled.emit()

    def notify_teardown(self, reason: str) -> None:
        logger.info("Teardown signal: %s", reason)
        self.teardown.emit(reason)

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _on_app_state(self, state: Qt.ApplicationState) -> None:
        if state in _HIDDEN_STATES:
            self.notify_teardown("hidden")
