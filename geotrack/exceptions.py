"""
Tracking Errors - Error kinds raised by the location and geofence engine

Every error carries a stable code and a retryable flag so the ingestion
boundary can turn it into a structured failure without inspecting types.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional


class TrackingError(Exception):
    """Base class for all engine errors"""
    
    code = "tracking_error"
    retryable = False
    
    def __init__(self, message: str, *, event_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.event_id = event_id


class InvalidCoordinate(TrackingError, ValueError):
    """Latitude or longitude outside the WGS84 range, or not a number"""
    
    code = "invalid_coordinate"


class InvalidDetection(TrackingError, ValueError):
    """Detection payload cannot be parsed into an event"""
    
    code = "invalid_detection"


class UnknownTag(TrackingError):
    """Tag EPC is not registered or the tag is inactive"""
    
    code = "unknown_tag"


class UnknownReader(TrackingError):
    """Reader identifier is not registered"""
    
    code = "unknown_reader"


class UnknownAsset(TrackingError):
    """Asset identifier is not registered"""

    code = "unknown_asset"


class UnknownGeofence(TrackingError):
    """Geofence identifier is not registered"""

    code = "unknown_geofence"


class TagUnassigned(TrackingError):
    """Tag is valid but no asset carries it"""
    
    code = "tag_unassigned"


class StaleEvent(TrackingError):
    """Event is not newer than the last one processed for an asset/geofence pair"""
    
    code = "stale_event"
    
    def __init__(self, message: str, *, asset_id: str, geofence_id: str,
                 event_id: Optional[str] = None):
        super().__init__(message, event_id=event_id)
        self.asset_id = asset_id
        self.geofence_id = geofence_id


class DependencyError(TrackingError):
    """Collaborator lookup failed for a transient reason"""
    
    code = "dependency_error"
    retryable = True


class DependencyTimeout(DependencyError):
    """Collaborator lookup did not answer within the configured timeout"""
    
    code = "dependency_timeout"


@dataclass(frozen=True)
class ErrorInfo:
    """Structured failure returned across the ingestion and query boundaries"""
    code: str
    message: str
    retryable: bool = False

    @classmethod
    def from_exception(cls, error: Exception) -> "ErrorInfo":
        if isinstance(error, TrackingError):
            return cls(code=error.code, message=error.message, retryable=error.retryable)
        return cls(code="internal_error", message=str(error) or type(error).__name__)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}
