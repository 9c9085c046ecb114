"""
Tracking Models - Records shared by the location and geofence engine

This module defines:
- Coordinates and the reference records read from collaborators
  (offices, geofences, assets, tags, readers)
- Raw detection events
- Containment state, transitions and alerts
- Derived violation records
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, Union

from geotrack.exceptions import InvalidCoordinate

def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)

def parse_timestamp(value: Union[str, int, float, datetime]) -> datetime:
    """Parse ISO-8601 strings, epoch milliseconds or datetimes into UTC datetimes

    Naive values are taken to be UTC.
    """

    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError(f"Invalid timestamp: {value!r}")
        parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return parse_timestamp(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Invalid ISO-8601 timestamp: {value!r}") from e
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)

@dataclass(frozen=True)
class Coordinate:
    """WGS84 position in decimal degrees"""
    latitude: float
    longitude: float

    def __post_init__(self):
        for name, limit in (("latitude", 90.0), ("longitude", 180.0)):
            raw = getattr(self, name)
            try:
                value = float(raw)
            except (TypeError, ValueError):
                raise InvalidCoordinate(f"{name} must be a number, got {raw!r}")

            if math.isnan(value) or not -limit <= value <= limit:
                raise InvalidCoordinate(f"{name} {raw!r} outside [-{limit:g}, {limit:g}]")

            # Frozen dataclass: normalise ints and numeric strings to float
            object.__setattr__(self, name, value)

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Coordinate":
        """Build from {lat, lon} or {latitude, longitude}"""

        if not isinstance(data, dict):
            raise InvalidCoordinate(f"Coordinate must be an object, got {type(data).__name__}")

        latitude = data.get("latitude", data.get("lat"))
        longitude = data.get("longitude", data.get("lon", data.get("lng")))

        if latitude is None or longitude is None:
            raise InvalidCoordinate(f"Coordinate is missing latitude or longitude: {data}")

        return cls(latitude=latitude, longitude=longitude)

@dataclass(frozen=True)
class Office:
    """Office reference record"""
    id: str
    code: str
    coordinate: Optional[Coordinate] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "coordinate": self.coordinate.to_dict() if self.coordinate else None,
            "name": self.name
        }

@dataclass(frozen=True)
class Geofence:
    """Circular geofence owned by an office"""
    id: str
    office_id: str
    center: Coordinate
    radius_meters: float
    alert_on_entry: bool = False
    alert_on_exit: bool = False
    name: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.center, Coordinate):
            raise InvalidCoordinate(f"Geofence {self.id} requires a center coordinate")

        radius = float(self.radius_meters)
        if math.isnan(radius) or radius < 0:
            raise ValueError(f"Geofence {self.id} radius must be >= 0, got {self.radius_meters}")
        object.__setattr__(self, "radius_meters", radius)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "office_id": self.office_id,
            "center": self.center.to_dict(),
            "radius_meters": self.radius_meters,
            "alert_on_entry": self.alert_on_entry,
            "alert_on_exit": self.alert_on_exit,
            "name": self.name
        }

@dataclass(frozen=True)
class Asset:
    """Asset fields the engine reads"""
    id: str
    expected_office_id: Optional[str] = None
    rfid_tag_id: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "expected_office_id": self.expected_office_id,
            "rfid_tag_id": self.rfid_tag_id,
            "name": self.name
        }

@dataclass(frozen=True)
class RfidTag:
    """RFID tag reference record"""
    id: str
    epc: str
    is_active: bool = True

@dataclass(frozen=True)
class RfidReader:
    """Fixed reader; its coordinate stands in for any tag it detects"""
    id: str
    office_id: str
    coordinate: Coordinate
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "office_id": self.office_id,
            "coordinate": self.coordinate.to_dict(),
            "name": self.name
        }

@dataclass(frozen=True)
class DetectionEvent:
    """Raw detection of a tag by a reader"""
    id: str
    tag_epc: str
    reader_id: str
    detected_at: datetime
    received_order: int
    rssi: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def ordering_key(self):
        """Key used to serialize events for the same asset"""
        return (self.detected_at, self.received_order)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tag_epc": self.tag_epc,
            "reader_id": self.reader_id,
            "detected_at": self.detected_at.isoformat(),
            "received_order": self.received_order,
            "rssi": self.rssi,
            "metadata": dict(self.metadata)
        }

@dataclass(frozen=True)
class ContainmentState:
    """Last known containment of one asset relative to one geofence"""
    asset_id: str
    geofence_id: str
    is_inside: bool
    last_evaluated_at: datetime
    last_received_order: int
    last_event_id: str
    distance_meters: float
    version: int = 1

    @property
    def ordering_key(self):
        return (self.last_evaluated_at, self.last_received_order)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "geofence_id": self.geofence_id,
            "is_inside": self.is_inside,
            "last_evaluated_at": self.last_evaluated_at.isoformat(),
            "last_received_order": self.last_received_order,
            "last_event_id": self.last_event_id,
            "distance_meters": self.distance_meters,
            "version": self.version
        }

class TransitionType(Enum):
    """Containment edges"""
    ENTRY = "entry"
    EXIT = "exit"

class AlertType(Enum):
    """Alert kinds produced by the engine"""
    ENTRY = "entry"
    EXIT = "exit"

@dataclass(frozen=True)
class Transition:
    """Containment edge detected for an asset/geofence pair"""
    transition_type: TransitionType
    asset_id: str
    geofence_id: str
    distance_meters: float
    occurred_at: datetime
    source_event_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.transition_type.value,
            "asset_id": self.asset_id,
            "geofence_id": self.geofence_id,
            "distance_meters": self.distance_meters,
            "occurred_at": self.occurred_at.isoformat(),
            "source_event_id": self.source_event_id
        }

@dataclass(frozen=True)
class Alert:
    """Append-only alert record"""
    id: str
    type: AlertType
    asset_id: str
    geofence_id: str
    distance_meters: float
    occurred_at: datetime
    source_event_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "asset_id": self.asset_id,
            "geofence_id": self.geofence_id,
            "distance_meters": self.distance_meters,
            "occurred_at": self.occurred_at.isoformat(),
            "source_event_id": self.source_event_id
        }

@dataclass(frozen=True)
class Violation:
    """Asset detected by a reader of an office other than its expected one"""
    asset_id: str
    expected_office_id: Optional[str]
    detected_office_id: str
    detected_at: datetime
    reader_id: str
    event_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "expected_office_id": self.expected_office_id,
            "detected_office_id": self.detected_office_id,
            "detected_at": self.detected_at.isoformat(),
            "reader_id": self.reader_id,
            "event_id": self.event_id
        }
