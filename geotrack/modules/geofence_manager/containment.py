"""
Containment Evaluator - Decide whether a coordinate lies inside a circular geofence
"""

from dataclasses import dataclass
from typing import Dict, List, Any, Sequence

from geotrack.models.tracking import Coordinate, Geofence
from geotrack.modules.geofence_manager.spatial_operations import SpatialOperations

@dataclass(frozen=True)
class ContainmentResult:
    """Containment of one coordinate relative to one geofence"""
    geofence_id: str
    is_inside: bool
    distance_meters: float
    radius_meters: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "geofence_id": self.geofence_id,
            "is_inside": self.is_inside,
            "distance_meters": self.distance_meters,
            "radius_meters": self.radius_meters
        }

class ContainmentEvaluator:
    """Evaluate coordinates against circular geofences"""

    def __init__(self, spatial_ops: SpatialOperations = None):
        self.spatial_ops = spatial_ops or SpatialOperations()

    def evaluate(self, coordinate: Coordinate, geofence: Geofence) -> ContainmentResult:
        """Inside when the distance to the center does not exceed the radius"""

        distance = self.spatial_ops.calculate_distance(coordinate, geofence.center)

        return ContainmentResult(
            geofence_id=geofence.id,
            is_inside=distance <= geofence.radius_meters,
            distance_meters=distance,
            radius_meters=geofence.radius_meters
        )

    def evaluate_many(self, coordinate: Coordinate,
                      geofences: Sequence[Geofence]) -> List[ContainmentResult]:
        """Bulk evaluation for reporting; stateful tracking goes through evaluate()"""

        distances = self.spatial_ops.calculate_distances(coordinate, [g.center for g in geofences])

        return [
            ContainmentResult(
                geofence_id=geofence.id,
                is_inside=bool(distance <= geofence.radius_meters),
                distance_meters=float(distance),
                radius_meters=geofence.radius_meters
            )
            for geofence, distance in zip(geofences, distances)
        ]
