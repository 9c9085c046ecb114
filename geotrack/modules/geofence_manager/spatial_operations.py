"""
Spatial Operations - Geographic calculations for circular geofencing

This module provides:
- Haversine great-circle distance (scalar and vectorized)
- Bearing and destination point on the same sphere
- Circular outline polygons for geofence display
"""

import math
import numpy as np
from typing import List, Sequence
from shapely.geometry import Polygon

from geotrack.exceptions import InvalidCoordinate
from geotrack.models.tracking import Coordinate

EARTH_RADIUS_METERS = 6371000.0

def _validate(coordinate: Coordinate) -> Coordinate:
    """Reject anything that is not an in-range Coordinate"""

    if not isinstance(coordinate, Coordinate):
        raise InvalidCoordinate(f"Expected Coordinate, got {type(coordinate).__name__}")

    # Coordinates validate on construction, but may be mutated via object.__setattr__
    if not (-90.0 <= coordinate.latitude <= 90.0 and -180.0 <= coordinate.longitude <= 180.0):
        raise InvalidCoordinate(f"Coordinate out of range: {coordinate}")

    return coordinate

def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance between two coordinates in meters"""

    _validate(a)
    _validate(b)

    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    delta_lat = math.radians(b.latitude - a.latitude)
    delta_lon = math.radians(b.longitude - a.longitude)

    h = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1) * math.cos(lat2) * math.sin(delta_lon / 2) ** 2)

    # Rounding can push h a hair above 1 for antipodal points
    h = min(1.0, max(0.0, h))

    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

class SpatialOperations:
    """Spatial operations for circular geofences"""

    def __init__(self):
        # Earth radius in meters
        self.earth_radius = EARTH_RADIUS_METERS

    def calculate_distance(self, a: Coordinate, b: Coordinate) -> float:
        """Great-circle distance between two points in meters"""

        return distance_meters(a, b)

    def calculate_distances(self, origin: Coordinate, targets: Sequence[Coordinate]) -> np.ndarray:
        """Vectorized haversine distance from one origin to many targets"""

        _validate(origin)
        if len(targets) == 0:
            return np.zeros(0)

        lats = np.radians(np.array([_validate(t).latitude for t in targets], dtype=float))
        lons = np.radians(np.array([t.longitude for t in targets], dtype=float))

        lat0 = math.radians(origin.latitude)
        lon0 = math.radians(origin.longitude)

        h = (np.sin((lats - lat0) / 2) ** 2 +
             math.cos(lat0) * np.cos(lats) * np.sin((lons - lon0) / 2) ** 2)
        h = np.clip(h, 0.0, 1.0)

        return self.earth_radius * 2 * np.arctan2(np.sqrt(h), np.sqrt(1 - h))

    def calculate_bearing(self, a: Coordinate, b: Coordinate) -> float:
        """Calculate initial bearing from point a to point b in degrees"""

        # Convert to radians
        lat1_rad = math.radians(_validate(a).latitude)
        lat2_rad = math.radians(_validate(b).latitude)
        delta_lon_rad = math.radians(b.longitude - a.longitude)

        # Calculate bearing
        y = math.sin(delta_lon_rad) * math.cos(lat2_rad)
        x = (math.cos(lat1_rad) * math.sin(lat2_rad) -
             math.sin(lat1_rad) * math.cos(lat2_rad) * math.cos(delta_lon_rad))

        bearing_deg = math.degrees(math.atan2(y, x))

        # Normalize to 0-360 degrees
        return (bearing_deg + 360) % 360

    def calculate_destination_point(self, origin: Coordinate,
                                  bearing: float, distance: float) -> Coordinate:
        """Calculate destination point given start point, bearing, and distance"""

        # Convert to radians
        lat_rad = math.radians(_validate(origin).latitude)
        lon_rad = math.radians(origin.longitude)
        bearing_rad = math.radians(bearing)

        # Angular distance
        angular_dist = distance / self.earth_radius

        # Calculate destination
        dest_lat_rad = math.asin(
            math.sin(lat_rad) * math.cos(angular_dist) +
            math.cos(lat_rad) * math.sin(angular_dist) * math.cos(bearing_rad)
        )

        dest_lon_rad = lon_rad + math.atan2(
            math.sin(bearing_rad) * math.sin(angular_dist) * math.cos(lat_rad),
            math.cos(angular_dist) - math.sin(lat_rad) * math.sin(dest_lat_rad)
        )

        # Wrap longitude back into [-180, 180)
        dest_lon = (math.degrees(dest_lon_rad) + 540) % 360 - 180

        return Coordinate(latitude=math.degrees(dest_lat_rad), longitude=dest_lon)

    def create_circular_polygon(self, center: Coordinate,
                              radius_meters: float, num_points: int = 32) -> Polygon:
        """Create circular polygon approximation in (lon, lat) order"""

        if num_points < 3:
            raise ValueError(f"num_points must be >= 3, got {num_points}")

        ring: List[tuple] = []

        for i in range(num_points):
            bearing = 360.0 * i / num_points
            point = self.calculate_destination_point(center, bearing, radius_meters)
            ring.append((point.longitude, point.latitude))

        return Polygon(ring)
