"""
Event Ingestion Pipeline - Entry point for raw detection events

Steps, each failable on its own:
- parse the payload
- persist the raw event (always, before anything else)
- resolve tag, reader, asset and geofences
- evaluate containment for every geofence in scope
- track transitions and emit alerts

Failures after persistence are reported in the result and never roll the
event back. Retrying with the same event id is safe: persistence is keyed by
event id and state updates are gated by event ordering.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Any, Optional, Callable, Union

from geotrack.exceptions import ErrorInfo, InvalidDetection, TagUnassigned, TrackingError
from geotrack.models.tracking import Alert, Transition, parse_timestamp, utc_now
from geotrack.modules.geofence_manager.alert_emitter import AlertEmitter
from geotrack.modules.geofence_manager.containment import ContainmentEvaluator, ContainmentResult
from geotrack.modules.geofence_manager.transition_tracker import TransitionTracker
from geotrack.modules.rfid_manager.event_store import EventStore, RawDetection
from geotrack.modules.rfid_manager.identity_resolver import IdentityResolver
from geotrack.utils.logger import get_logger

class IngestStatus(Enum):
    """Outcome of one ingest call"""
    PROCESSED = "processed"
    TAG_UNASSIGNED = "tag_unassigned"
    FAILED = "failed"

@dataclass
class IngestResult:
    """Result object returned for every ingested event"""
    event_id: str
    status: IngestStatus
    duplicate: bool = False
    asset_id: Optional[str] = None
    evaluations: List[ContainmentResult] = field(default_factory=list)
    transitions: List[Transition] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    stale_geofence_ids: List[str] = field(default_factory=list)
    error: Optional[ErrorInfo] = None
    execution_time: float = 0.0

    @property
    def success(self) -> bool:
        return self.status is not IngestStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary format"""
        return {
            "event_id": self.event_id,
            "status": self.status.value,
            "success": self.success,
            "duplicate": self.duplicate,
            "asset_id": self.asset_id,
            "evaluations": [e.to_dict() for e in self.evaluations],
            "transitions": [t.to_dict() for t in self.transitions],
            "alerts": [a.to_dict() for a in self.alerts],
            "stale_geofence_ids": list(self.stale_geofence_ids),
            "error": self.error.to_dict() if self.error else None,
            "execution_time": self.execution_time
        }

def _first(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None

def parse_detection(payload: Dict[str, Any],
                    clock: Callable[[], datetime] = utc_now) -> RawDetection:
    """Parse an ingestion payload; raises InvalidDetection"""

    if not isinstance(payload, dict):
        raise InvalidDetection(f"Detection payload must be an object, got {type(payload).__name__}")

    tag_epc = _first(payload, "tagIdentifier", "tag_identifier", "epc")
    reader_id = _first(payload, "readerIdentifier", "reader_identifier", "readerId", "reader_id")

    missing = [name for name, value in (("tagIdentifier", tag_epc), ("readerIdentifier", reader_id))
               if value is None or str(value).strip() == ""]
    if missing:
        raise InvalidDetection(f"Missing required fields: {missing}")

    raw_detected_at = _first(payload, "detectedAt", "detected_at")
    try:
        detected_at = clock() if raw_detected_at is None else parse_timestamp(raw_detected_at)
    except (ValueError, OverflowError, OSError) as e:
        raise InvalidDetection(f"Invalid detectedAt {raw_detected_at!r}: {e}")

    rssi = payload.get("rssi")
    if rssi is not None:
        try:
            rssi = float(rssi)
        except (TypeError, ValueError):
            raise InvalidDetection(f"rssi must be a number, got {rssi!r}")

    metadata = payload.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise InvalidDetection("metadata must be an object")

    event_id = _first(payload, "eventId", "event_id", "id") or str(uuid.uuid4())

    return RawDetection(
        event_id=str(event_id),
        tag_epc=str(tag_epc).strip(),
        reader_id=str(reader_id).strip(),
        detected_at=detected_at,
        rssi=rssi,
        metadata=metadata
    )

class EventIngestionPipeline:
    """Persist, resolve, evaluate, track and alert for each detection"""

    def __init__(self, events: EventStore, resolver: IdentityResolver,
                 evaluator: ContainmentEvaluator, tracker: TransitionTracker,
                 emitter: AlertEmitter, clock: Callable[[], datetime] = utc_now):
        self.events = events
        self.resolver = resolver
        self.evaluator = evaluator
        self.tracker = tracker
        self.emitter = emitter
        self.clock = clock
        self.logger = get_logger(__name__)

    async def ingest(self, payload: Union[Dict[str, Any], RawDetection]) -> IngestResult:
        """Process one detection; raises InvalidDetection only when nothing can be persisted"""

        start_time = time.perf_counter()

        raw = payload if isinstance(payload, RawDetection) else parse_detection(payload, self.clock)
        event, created = self.events.persist(raw)

        if not created:
            self.logger.info(f"Event {event.id} already persisted; re-evaluating")

        result = IngestResult(event_id=event.id, status=IngestStatus.PROCESSED, duplicate=not created)

        try:
            context = await self.resolver.resolve(event)
            result.asset_id = context.asset.id

            evaluations = [
                self.evaluator.evaluate(context.coordinate, geofence)
                for geofence in context.geofences
            ]
            result.evaluations = evaluations

            geofences = {g.id: g for g in context.geofences}

            def on_transition(transition: Transition) -> None:
                result.transitions.append(transition)
                alert = self.emitter.emit(transition, geofences[transition.geofence_id])
                if alert is not None:
                    result.alerts.append(alert)

            outcomes = self.tracker.track(context.asset.id, event, evaluations, on_transition)
            result.stale_geofence_ids = [o.geofence_id for o in outcomes if o.stale]

        except TagUnassigned as e:
            self.logger.info(f"Event {event.id} recorded without evaluation: {e.message}")
            result.status = IngestStatus.TAG_UNASSIGNED
            result.error = ErrorInfo.from_exception(e)

        except TrackingError as e:
            self.logger.warning(f"Event {event.id} failed: {e.code}: {e.message}")
            result.status = IngestStatus.FAILED
            result.error = ErrorInfo.from_exception(e)

        except Exception as e:
            self.logger.error(f"Event {event.id} failed unexpectedly: {e}")
            result.status = IngestStatus.FAILED
            result.error = ErrorInfo.from_exception(e)

        result.execution_time = time.perf_counter() - start_time
        return result
