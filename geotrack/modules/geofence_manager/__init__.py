"""
Geofence Manager Module Package - Containment and transition logic

This package provides:
- Haversine distance and spatial helpers
- Circular geofence containment evaluation
- Per-asset containment state with entry/exit detection
- Alert production from transitions
"""

from geotrack.modules.geofence_manager.spatial_operations import SpatialOperations, distance_meters
from geotrack.modules.geofence_manager.containment import ContainmentEvaluator, ContainmentResult
from geotrack.modules.geofence_manager.transition_tracker import (
    ContainmentStore, KeyedLock, TrackingOutcome, TransitionTracker
)
from geotrack.modules.geofence_manager.alert_emitter import (
    AlertEmitter, AlertStore, KafkaAlertPublisher
)

__all__ = [
    "SpatialOperations",
    "distance_meters",
    "ContainmentEvaluator",
    "ContainmentResult",
    "ContainmentStore",
    "KeyedLock",
    "TrackingOutcome",
    "TransitionTracker",
    "AlertEmitter",
    "AlertStore",
    "KafkaAlertPublisher"
]
