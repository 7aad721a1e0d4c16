"""Application entry point."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

# Ensure project root is on the path when running as `python app/main.py`
_ROOT = Path(__file__).parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from PySide6.QtCore import QCommandLineOption, QCommandLineParser
from PySide6.QtWidgets import QApplication

from app.config import Config
from app.controller import Controller
from app.lifecycle import LifecycleTrigger
from app.scheduler import QtScheduler
from playback.qt_player import QtMediaSource
from ui.player_window import PlayerWindow


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )


def _apply_cli_overrides(app: QApplication, config: Config) -> None:
    parser = QCommandLineParser()
    parser.setApplicationDescription("Video ad watch tracker for the feed video study.")
    parser.addHelpOption()
    participant_opt = QCommandLineOption(["p", "participant"], "Participant ID.", "id")
    video_opt = QCommandLineOption(["v", "video"], "Video file to play.", "path")
    sink_opt = QCommandLineOption(["s", "sink"], "Event sink (local, ga4, store); repeatable.", "name")
    parser.addOption(participant_opt)
    parser.addOption(video_opt)
    parser.addOption(sink_opt)
    parser.process(app)

    if parser.isSet(participant_opt):
        config.participant_id = parser.value(participant_opt)
    elif os.environ.get("PROLIFIC_ID"):
        config.participant_id = os.environ["PROLIFIC_ID"]
    if parser.isSet(video_opt):
        config.video_path = parser.value(video_opt)
    if parser.isSet(sink_opt):
        config.sinks = list(parser.values(sink_opt))


def main() -> None:
    _configure_logging()
    logger = logging.getLogger(__name__)
    logger.info("Video ad tracker – starting up.")

    app = QApplication(sys.argv)
    app.setApplicationName("VideoAdTracker")

    config = Config.load()
    _apply_cli_overrides(app, config)

    source = QtMediaSource()
    scheduler = QtScheduler(app)
    lifecycle = LifecycleTrigger()
    lifecycle.install(app)

    controller = Controller(config, source, scheduler)
    controller.start_session()
    controller.bind_lifecycle(lifecycle)

    window = PlayerWindow(config, controller, source, lifecycle)
    source.load(Path(config.video_path))
    window.show()

    ret = app.exec()

    metrics = controller.stop_session()
    logger.info("Exiting with code %d.  Watched %ss.", ret, metrics.get("total_watch_time_seconds", 0))
    sys.exit(ret)


if __name__ == "__main__":
    main()
