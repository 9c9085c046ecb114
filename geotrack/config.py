"""
Tracking Configuration - Runtime settings for the geofence tracking engine

Settings come from constructor defaults, or from GEOTRACK_* environment
variables (optionally loaded from a .env file) via TrackingConfig.from_env().
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Any, Optional

from dotenv import load_dotenv

ENV_PREFIX = "GEOTRACK_"

@dataclass
class TrackingConfig:
    """Engine, collaborator and stream settings"""
    violation_window_seconds: float = 300.0
    lookup_timeout_seconds: float = 2.0
    recent_events_limit: int = 50
    event_retention_seconds: float = 86400.0
    max_events: int = 100000

    directory_base_url: Optional[str] = None
    directory_api_key: Optional[str] = None
    directory_cache_seconds: float = 30.0

    kafka_bootstrap_servers: List[str] = field(default_factory=lambda: ["localhost:9092"])
    detections_topic: str = "rfid-detections"
    alerts_topic: str = "geofence-alerts"
    failures_topic: str = "rfid-ingest-failures"
    consumer_group: str = "geofence-tracking-engine"

    log_level: str = "INFO"

    def __post_init__(self):
        if self.violation_window_seconds <= 0:
            raise ValueError(f"violation_window_seconds must be > 0, got {self.violation_window_seconds}")
        if self.lookup_timeout_seconds <= 0:
            raise ValueError(f"lookup_timeout_seconds must be > 0, got {self.lookup_timeout_seconds}")
        if self.directory_cache_seconds < 0:
            raise ValueError(f"directory_cache_seconds must be >= 0, got {self.directory_cache_seconds}")
        if self.event_retention_seconds < max(self.violation_window_seconds, 86400.0):
            raise ValueError(
                f"event_retention_seconds must cover the violation window and 24h, "
                f"got {self.event_retention_seconds}"
            )
        if self.max_events <= 0:
            raise ValueError(f"max_events must be > 0, got {self.max_events}")
        if self.recent_events_limit <= 0:
            raise ValueError(f"recent_events_limit must be > 0, got {self.recent_events_limit}")

    @property
    def violation_window(self) -> timedelta:
        return timedelta(seconds=self.violation_window_seconds)

    @property
    def event_retention(self) -> timedelta:
        return timedelta(seconds=self.event_retention_seconds)

    @property
    def kafka_config(self) -> Dict[str, Any]:
        """Kafka settings in the shape the stream components expect"""
        return {
            "bootstrap_servers": list(self.kafka_bootstrap_servers),
            "detections_topic": self.detections_topic,
            "alerts_topic": self.alerts_topic,
            "failures_topic": self.failures_topic,
            "group_id": self.consumer_group
        }

    @classmethod
    def from_env(cls, env_file: Optional[str] = None,
                 environ: Optional[Dict[str, str]] = None) -> "TrackingConfig":
        """Build configuration from GEOTRACK_* variables"""

        if environ is None:
            load_dotenv(env_file)
            environ = os.environ

        def read(name: str) -> Optional[str]:
            value = environ.get(f"{ENV_PREFIX}{name}")
            return value.strip() if value is not None and value.strip() != "" else None

        def read_float(name: str) -> Optional[float]:
            value = read(name)
            if value is None:
                return None
            try:
                return float(value)
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {value!r}")

        overrides: Dict[str, Any] = {}

        for attr, name in (
            ("violation_window_seconds", "VIOLATION_WINDOW_SECONDS"),
            ("lookup_timeout_seconds", "LOOKUP_TIMEOUT_SECONDS"),
            ("directory_cache_seconds", "DIRECTORY_CACHE_SECONDS"),
            ("event_retention_seconds", "EVENT_RETENTION_SECONDS")
        ):
            value = read_float(name)
            if value is not None:
                overrides[attr] = value

        max_events = read_float("MAX_EVENTS")
        if max_events is not None:
            overrides["max_events"] = int(max_events)

        limit = read_float("RECENT_EVENTS_LIMIT")
        if limit is not None:
            overrides["recent_events_limit"] = int(limit)

        for attr, name in (
            ("directory_base_url", "DIRECTORY_BASE_URL"),
            ("directory_api_key", "DIRECTORY_API_KEY"),
            ("detections_topic", "DETECTIONS_TOPIC"),
            ("alerts_topic", "ALERTS_TOPIC"),
            ("failures_topic", "FAILURES_TOPIC"),
            ("consumer_group", "CONSUMER_GROUP"),
            ("log_level", "LOG_LEVEL")
        ):
            value = read(name)
            if value is not None:
                overrides[attr] = value

        servers = read("KAFKA_BOOTSTRAP_SERVERS")
        if servers is not None:
            overrides["kafka_bootstrap_servers"] = [s.strip() for s in servers.split(",") if s.strip()]

        return cls(**overrides)
