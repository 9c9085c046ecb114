"""
geotrack Package - RFID location and geofence tracking engine

This package turns raw RFID reader detections into:
- per-asset containment state against circular office geofences
- entry/exit alerts
- office-assignment violations over a sliding window
"""

from geotrack.config import TrackingConfig
from geotrack.engine import ActiveAsset, AssetLocationReport, GeofenceTrackingEngine

__all__ = [
    "ActiveAsset",
    "AssetLocationReport",
    "GeofenceTrackingEngine",
    "TrackingConfig"
]

# Version information
__version__ = "1.0.0"
