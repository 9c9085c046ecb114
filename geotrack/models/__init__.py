"""
Models Package - Records exchanged by the geotrack modules
"""

from geotrack.models.tracking import (
    Alert,
    AlertType,
    Asset,
    ContainmentState,
    Coordinate,
    DetectionEvent,
    Geofence,
    Office,
    RfidReader,
    RfidTag,
    Transition,
    TransitionType,
    Violation,
    parse_timestamp,
    utc_now
)

__all__ = [
    "Alert",
    "AlertType",
    "Asset",
    "ContainmentState",
    "Coordinate",
    "DetectionEvent",
    "Geofence",
    "Office",
    "RfidReader",
    "RfidTag",
    "Transition",
    "TransitionType",
    "Violation",
    "parse_timestamp",
    "utc_now"
]
