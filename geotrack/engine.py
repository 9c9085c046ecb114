"""
Geofence Tracking Engine - Wiring and query boundary of the tracking core

This module composes the ingestion pipeline, transition tracker, alert
emitter and violation scanner around one directory, and exposes the
queries dashboards and analytics consume.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional, Callable, Union

from shapely.geometry import mapping

from geotrack.config import TrackingConfig
from geotrack.exceptions import TagUnassigned, UnknownAsset, UnknownGeofence
from geotrack.models.tracking import (
    Alert, Asset, ContainmentState, Coordinate, DetectionEvent, RfidReader, Violation, utc_now
)
from geotrack.modules.geofence_manager.alert_emitter import AlertEmitter, AlertStore
from geotrack.modules.geofence_manager.containment import ContainmentEvaluator, ContainmentResult
from geotrack.modules.geofence_manager.spatial_operations import SpatialOperations
from geotrack.modules.geofence_manager.transition_tracker import ContainmentStore, TransitionTracker
from geotrack.modules.rfid_manager.directory import Directory, HttpDirectory, InMemoryDirectory
from geotrack.modules.rfid_manager.event_store import EventStore, RawDetection
from geotrack.modules.rfid_manager.identity_resolver import IdentityResolver
from geotrack.modules.rfid_manager.ingestion_pipeline import EventIngestionPipeline, IngestResult
from geotrack.modules.rfid_manager.violation_scanner import (
    CancellationToken, ViolationScanReport, ViolationScanner
)
from geotrack.utils.logger import get_logger

@dataclass(frozen=True)
class ActiveAsset:
    """Asset seen recently, with its latest detection"""
    asset: Asset
    reader: RfidReader
    event: DetectionEvent

    @property
    def in_expected_office(self) -> bool:
        return self.asset.expected_office_id == self.reader.office_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset.to_dict(),
            "reader": self.reader.to_dict(),
            "event": self.event.to_dict(),
            "in_expected_office": self.in_expected_office
        }

@dataclass
class AssetLocationReport:
    """Ad-hoc containment check of an asset at a given coordinate"""
    asset_id: str
    expected_office_id: Optional[str]
    coordinate: Coordinate
    checks: List[ContainmentResult] = field(default_factory=list)

    @property
    def inside_geofence_ids(self) -> List[str]:
        return [c.geofence_id for c in self.checks if c.is_inside]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "expected_office_id": self.expected_office_id,
            "coordinate": self.coordinate.to_dict(),
            "checks": [c.to_dict() for c in self.checks],
            "inside_geofence_ids": self.inside_geofence_ids
        }

class GeofenceTrackingEngine:
    """Location and geofence tracking core"""

    def __init__(self, directory: Directory, config: Optional[TrackingConfig] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.config = config or TrackingConfig()
        self.directory = directory
        self.clock = clock
        self.logger = get_logger(__name__)

        self.spatial_ops = SpatialOperations()
        self.events = EventStore(
            max_events=self.config.max_events,
            retention=self.config.event_retention,
            clock=clock
        )
        self.alerts = AlertStore()
        self.states = ContainmentStore()

        self.resolver = IdentityResolver(directory, self.config.lookup_timeout_seconds)
        self.evaluator = ContainmentEvaluator(self.spatial_ops)
        self.tracker = TransitionTracker(self.states)
        self.emitter = AlertEmitter(self.alerts)
        self.pipeline = EventIngestionPipeline(
            self.events, self.resolver, self.evaluator, self.tracker, self.emitter, clock=clock
        )
        self.scanner = ViolationScanner(
            self.events, self.resolver, window=self.config.violation_window, clock=clock
        )

    @classmethod
    def from_config(cls, config: TrackingConfig,
                    directory: Optional[Directory] = None) -> "GeofenceTrackingEngine":
        """Build an engine, talking to the CRUD service when a base URL is configured"""

        if directory is None:
            if config.directory_base_url:
                directory = HttpDirectory(
                    config.directory_base_url,
                    api_key=config.directory_api_key,
                    timeout_seconds=config.lookup_timeout_seconds,
                    cache_seconds=config.directory_cache_seconds
                )
            else:
                directory = InMemoryDirectory()

        return cls(directory, config)

    # Ingestion boundary

    async def ingest(self, payload: Union[Dict[str, Any], RawDetection]) -> IngestResult:
        return await self.pipeline.ingest(payload)

    # Query boundary

    async def scan_violations(self, now: Optional[datetime] = None,
                              cancel: Optional[CancellationToken] = None) -> ViolationScanReport:
        return await self.scanner.scan(now=now, cancel=cancel)

    async def get_violations(self, now: Optional[datetime] = None) -> List[Violation]:
        return await self.scanner.get_violations(now=now)

    def get_containment_state(self, asset_id: str) -> List[ContainmentState]:
        return self.tracker.states_for(asset_id)

    async def get_active_assets(self, window: Optional[timedelta] = None,
                                now: Optional[datetime] = None) -> List[ActiveAsset]:
        """Assets detected inside the window, with their latest detection"""

        window_end = now or self.clock()
        window_start = window_end - (window or self.config.violation_window)
        active = []

        for event in self.events.latest_per_tag(window_start, window_end):
            try:
                context = await self.resolver.resolve(event, include_geofences=False)
            except TagUnassigned:
                continue
            except Exception as e:
                self.logger.warning(f"Active asset lookup skipped event {event.id}: {e}")
                continue

            active.append(ActiveAsset(asset=context.asset, reader=context.reader, event=event))

        return active

    async def check_asset_location(self, asset_id: str, coordinate: Coordinate,
                                   office_id: Optional[str] = None) -> AssetLocationReport:
        """Evaluate a coordinate against geofences without touching tracked state

        Checks the geofences of office_id, or of every office when omitted.
        """

        asset = await self.resolver.lookup(f"asset {asset_id}", self.directory.get_asset(asset_id))
        if asset is None:
            raise UnknownAsset(f"Asset {asset_id} is not registered")

        geofences = await self.resolver.lookup("geofences", self.directory.list_geofences(office_id))

        return AssetLocationReport(
            asset_id=asset.id,
            expected_office_id=asset.expected_office_id,
            coordinate=coordinate,
            checks=self.evaluator.evaluate_many(coordinate, geofences)
        )

    def get_recent_events(self, limit: Optional[int] = None) -> List[DetectionEvent]:
        return self.events.recent(limit or self.config.recent_events_limit)

    def get_alerts(self, asset_id: Optional[str] = None) -> List[Alert]:
        return self.alerts.list(asset_id)

    def get_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Counters for monitoring dashboards"""

        now = now or self.clock()

        return {
            "events_total": len(self.events),
            "events_last_24h": len(self.events.since(now - timedelta(hours=24), now)),
            "tracked_pairs": len(self.states),
            "assets_inside": len({s.asset_id for s in self.states.all() if s.is_inside}),
            "alerts": self.alerts.counts()
        }

    async def get_geofence_outline(self, geofence_id: str, num_points: int = 64) -> Dict[str, Any]:
        """GeoJSON Feature approximating a geofence circle"""

        geofences = await self.resolver.lookup("geofences", self.directory.list_geofences())
        geofence = next((g for g in geofences if g.id == geofence_id), None)
        if geofence is None:
            raise UnknownGeofence(f"Geofence {geofence_id} is not registered")

        polygon = self.spatial_ops.create_circular_polygon(
            geofence.center, geofence.radius_meters, num_points
        )

        return {
            "type": "Feature",
            "geometry": mapping(polygon),
            "properties": geofence.to_dict()
        }
