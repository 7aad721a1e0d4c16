"""Player window – video surface, Tap to Start overlay and controls."""

from __future__ import annotations

import logging
from typing import Optional

from PySide6.QtCore import QEvent, Qt, QTimer
from PySide6.QtGui import QCloseEvent, QKeyEvent
from PySide6.QtMultimediaWidgets import QVideoWidget
from PySide6.QtWidgets import (
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QPushButton,
    QStackedWidget,
    QVBoxLayout,
    QWidget,
)

from app.config import Config
from app.controller import Controller
from app.lifecycle import LifecycleTrigger
from domain.models import TrackerState
from playback.qt_player import QtMediaSource

logger = logging.getLogger(__name__)

_IDX_GATE = 0
_IDX_VIDEO = 1


class PlayerWindow(QMainWindow):
    """Root window.  Press **Space** to play/pause, **M** to toggle mute."""

    def __init__(
        self,
        config: Config,
        controller: Controller,
        source: QtMediaSource,
        lifecycle: LifecycleTrigger,
    ) -> None:
        super().__init__()
        self._ctrl = controller
        self._source = source
        self._lifecycle = lifecycle

        self.setWindowTitle("Feed Video Study")
        self.resize(config.window_width, config.window_height)

        # ── Build UI ──────────────────────────────────────────────────
        self._video = QVideoWidget()
        self._source.set_video_output(self._video)

        self._start_btn = QPushButton("▶  Tap to Start")
        self._start_btn.setMinimumHeight(80)
        self._start_btn.setStyleSheet(
            "background: #1e2240; color: #ffffff; font-size: 22px; font-weight: bold;"
            "border: 1px solid #334466; border-radius: 8px; padding: 0 40px;"
        )
        self._start_btn.clicked.connect(self._on_start_clicked)

        gate = QWidget()
        gate_layout = QVBoxLayout(gate)
        gate_layout.addStretch(1)
        gate_layout.addWidget(self._start_btn, 0, Qt.AlignmentFlag.AlignCenter)
        gate_layout.addStretch(1)

        self._stack = QStackedWidget()
        self._stack.addWidget(gate)         # 0
        self._stack.addWidget(self._video)  # 1
        self._stack.setCurrentIndex(_IDX_GATE)

        self._play_btn = QPushButton("Pause")
        self._play_btn.clicked.connect(self._toggle_play)
        self._mute_btn = QPushButton("Mute")
        self._mute_btn.clicked.connect(self._toggle_mute)
        self._replay_btn = QPushButton("↻ Replay")
        self._replay_btn.clicked.connect(self._source.play)
        self._replay_btn.setVisible(False)

        self._status_label = QLabel("Waiting for Tap to Start")
        self._status_label.setStyleSheet("color: #aaaacc; padding: 4px 10px; font-size: 11px;")

        bottom = QHBoxLayout()
        bottom.setContentsMargins(8, 4, 8, 4)
        bottom.addWidget(self._status_label, 1)
        bottom.addWidget(self._replay_btn)
        bottom.addWidget(self._play_btn)
        bottom.addWidget(self._mute_btn)

        central = QWidget()
        layout = QVBoxLayout(central)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(0)
        layout.addWidget(self._stack, 1)
        layout.addLayout(bottom)
        self.setCentralWidget(central)

        for btn in (self._play_btn, self._mute_btn):
            btn.setEnabled(False)

        # ── Timers ────────────────────────────────────────────────────
        self._status_timer = QTimer(self)
        self._status_timer.setInterval(500)
        self._status_timer.timeout.connect(self._update_status)

        # ── Callbacks ────────────────────────────────────────────────
        if self._ctrl.tracker:
            self._ctrl.tracker.set_on_state_change(self._on_state_change)
        self._source.audio.mutedChanged.connect(self._on_muted_changed)

        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self._apply_dark_theme()

    # ------------------------------------------------------------------
    # Lifecycle producers
    # ------------------------------------------------------------------

    def closeEvent(self, event: QCloseEvent) -> None:
        self._status_timer.stop()
        self._lifecycle.notify_teardown("close")
        super().closeEvent(event)

    def changeEvent(self, event: QEvent) -> None:
        if event.type() == QEvent.Type.WindowStateChange and self.isMinimized():
            self._lifecycle.notify_teardown("minimized")
        super().changeEvent(event)

    def keyPressEvent(self, event: QKeyEvent) -> None:
        if not self._lifecycle.enabled:
            super().keyPressEvent(event)
        elif event.key() == Qt.Key.Key_Space:
            self._toggle_play()
        elif event.key() == Qt.Key.Key_M:
            self._toggle_mute()
        else:
            super().keyPressEvent(event)

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    def _on_start_clicked(self) -> None:
        self._stack.setCurrentIndex(_IDX_VIDEO)
        for btn in (self._play_btn, self._mute_btn):
            btn.setEnabled(True)
        self._status_timer.start()
        self.setFocus()
        self._lifecycle.request_enable()

    def _toggle_play(self) -> None:
        if self._source.is_playing():
            self._source.pause()
        else:
            self._source.play()

    def _toggle_mute(self) -> None:
        self._ctrl.toggle_mute()

    def _on_state_change(self, state: TrackerState) -> None:
        self._play_btn.setText("Pause" if state is TrackerState.PLAYING else "Play")
        self._replay_btn.setVisible(state is TrackerState.ENDED)

    def _on_muted_changed(self, muted: bool) -> None:
        self._mute_btn.setText("Unmute" if muted else "Mute")

    def _update_status(self) -> None:
        if not self._ctrl.tracker:
            return
        snap = self._ctrl.tracker.snapshot()
        self._status_label.setText(
            f"{snap['state'].title()}  |  watched {snap['total_watch_time_seconds']}s"
            f"  |  plays {snap['play_count']}  |  progress {snap['max_progress_percent']}%"
        )

    # ------------------------------------------------------------------
    # Theme
    # ------------------------------------------------------------------

    def _apply_dark_theme(self) -> None:
        self.setStyleSheet(
            """
            QMainWindow, QWidget {
                background: #0e0e1e;
                color: #d0d0f0;
                font-family: 'Segoe UI', sans-serif;
            }
            QPushButton {
                background: #1e2240;
                color: #d0d0f0;
                border: 1px solid #334466;
                border-radius: 4px;
                padding: 6px 14px;
                font-size: 12px;
            }
            QPushButton:hover { background: #2a3060; }
            QPushButton:pressed { background: #151530; }
            QPushButton:disabled { color: #555566; background: #141425; }
            QLabel { color: #d0d0f0; }
            """
        )
