"""Application-wide configuration with typed fields and sane defaults."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path("config.json")

SINK_CHOICES = ("local", "ga4", "store")


@dataclass
class Config:
    # Study
    video_path: str = "assets/ad.mp4"
    video_id: str = "nyu_feed_video_ad"
    study_id: str = "instagram_feed_video_study"
    study_type: str = "feed_video"
    participant_id: str = ""

    # Tracking cadence
    milestone_poll_ms: int = 1000
    start_delay_ms: int = 500      # gesture → play
    unmute_delay_ms: int = 1000    # confirmed playback → unmute
    sink_retry_ms: int = 100
    sink_retry_limit: int = 600

    # Sinks
    sinks: list[str] = field(default_factory=lambda: ["local"])
    ga_measurement_id: str = ""
    ga_api_secret: str = ""
    ga_endpoint: str = "https://www.google-analytics.com/mp/collect"
    store_api_url: str = "http://localhost:3000/api"
    http_timeout_s: float = 5.0
    runs_dir: str = "runs"

    # UI
    window_width: int = 960
    window_height: int = 600

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path = _CONFIG_PATH) -> None:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(asdict(self), fh, indent=2)
        logger.debug("Config saved.")

    @classmethod
    def load(cls, path: Path = _CONFIG_PATH) -> "Config":
        if not path.exists():
            return cls()
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
            cfg = cls()
            for k, v in data.items():
                if hasattr(cfg, k):
                    setattr(cfg, k, v)
            logger.debug("Config loaded from %s", path)
            return cfg
        except (OSError, json.JSONDecodeError, AttributeError) as exc:
            logger.warning("Could not load config (%s); using defaults.", exc)
            return cls()

    def enabled_sinks(self) -> list[str]:
        """Configured sink names, de-duplicated, unknown names dropped."""
        names: list[str] = []
        for name in self.sinks:
            if name not in SINK_CHOICES:
                logger.warning("Unknown sink '%s' ignored.", name)
            elif name not in names:
                names.append(name)
        return names
