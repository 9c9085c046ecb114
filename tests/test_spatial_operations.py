"""
Tests for haversine distance and spatial helpers.
"""

import math

import numpy as np
import pytest
from geopy.distance import great_circle
from shapely.geometry import Point

from geotrack.exceptions import InvalidCoordinate
from geotrack.models.tracking import Coordinate
from geotrack.modules.geofence_manager.spatial_operations import (
    EARTH_RADIUS_METERS, SpatialOperations, distance_meters
)

from tests.conftest import CENTER

LOS_ANGELES = Coordinate(34.0522, -118.2437)
LONDON = Coordinate(51.5074, -0.1278)
SYDNEY = Coordinate(-33.8688, 151.2093)


class TestDistance:
    """Haversine distance contract."""

    @pytest.mark.parametrize("a, b", [
        (CENTER, LOS_ANGELES),
        (LONDON, SYDNEY),
        (Coordinate(0, 179.9), Coordinate(0, -179.9)),
        (Coordinate(90, 0), Coordinate(-90, 0)),
    ])
    def test_symmetric(self, a, b):
        assert distance_meters(a, b) == distance_meters(b, a)

    @pytest.mark.parametrize("a", [CENTER, LONDON, Coordinate(90, 180), Coordinate(-90, -180)])
    def test_zero_for_same_point(self, a):
        assert distance_meters(a, a) == pytest.approx(0.0, abs=1e-9)

    def test_matches_independent_great_circle(self):
        """geopy's great-circle on the same sphere agrees."""
        expected = great_circle(
            (CENTER.latitude, CENTER.longitude),
            (LOS_ANGELES.latitude, LOS_ANGELES.longitude),
            radius=EARTH_RADIUS_METERS / 1000.0
        ).meters

        assert distance_meters(CENTER, LOS_ANGELES) == pytest.approx(expected, rel=1e-6)
        assert distance_meters(CENTER, LOS_ANGELES) == pytest.approx(3_935_746, rel=1e-3)

    def test_antipodal_points(self):
        assert distance_meters(Coordinate(0, 0), Coordinate(0, 180)) == pytest.approx(
            math.pi * EARTH_RADIUS_METERS, rel=1e-9
        )

    def test_monotonic_with_separation(self):
        ops = SpatialOperations()
        distances = [
            distance_meters(CENTER, ops.calculate_destination_point(CENTER, 30, d))
            for d in (1, 10, 100, 1_000, 10_000, 100_000)
        ]

        assert distances == sorted(distances)
        assert len(set(distances)) == len(distances)

    def test_one_degree_of_latitude(self):
        expected = EARTH_RADIUS_METERS * math.pi / 180
        assert distance_meters(Coordinate(10, 20), Coordinate(11, 20)) == pytest.approx(expected)


class TestCoordinateValidation:
    """Out of range input is rejected."""

    @pytest.mark.parametrize("lat, lon", [
        (90.0001, 0), (-91, 0), (0, 180.5), (0, -181), (float("nan"), 0), ("north", 0), (None, 0)
    ])
    def test_invalid_coordinate(self, lat, lon):
        with pytest.raises(InvalidCoordinate):
            Coordinate(lat, lon)

    def test_distance_rejects_non_coordinates(self):
        with pytest.raises(InvalidCoordinate):
            distance_meters((40.0, -74.0), CENTER)

    def test_boundaries_are_valid(self):
        assert Coordinate(90, 180).latitude == 90.0
        assert Coordinate(-90, -180).longitude == -180.0

    def test_from_dict_accepts_short_keys(self):
        assert Coordinate.from_dict({"lat": 1, "lon": 2}) == Coordinate(1.0, 2.0)
        assert Coordinate.from_dict({"latitude": "1.5", "longitude": "2.5"}) == Coordinate(1.5, 2.5)

    def test_from_dict_missing_field(self):
        with pytest.raises(InvalidCoordinate):
            Coordinate.from_dict({"lat": 1})


class TestSpatialHelpers:
    """Bearing, destination, bulk distance and outline helpers."""

    def test_destination_point_lands_at_distance(self):
        ops = SpatialOperations()
        for bearing in (0, 45, 90, 180, 270):
            point = ops.calculate_destination_point(CENTER, bearing, 150)
            assert distance_meters(CENTER, point) == pytest.approx(150, abs=1e-6)

    def test_bearing_due_east(self):
        ops = SpatialOperations()
        east = ops.calculate_destination_point(Coordinate(0, 0), 90, 1000)
        assert ops.calculate_bearing(Coordinate(0, 0), east) == pytest.approx(90, abs=1e-6)

    def test_destination_wraps_longitude(self):
        ops = SpatialOperations()
        point = ops.calculate_destination_point(Coordinate(0, 179.999), 90, 1000)
        assert -180 <= point.longitude < 0

    def test_vectorized_distances_match_scalar(self):
        ops = SpatialOperations()
        targets = [LOS_ANGELES, LONDON, SYDNEY, CENTER]

        distances = ops.calculate_distances(CENTER, targets)

        assert isinstance(distances, np.ndarray)
        for target, distance in zip(targets, distances):
            assert distance == pytest.approx(distance_meters(CENTER, target), rel=1e-9, abs=1e-6)

    def test_vectorized_distances_empty(self):
        assert len(SpatialOperations().calculate_distances(CENTER, [])) == 0

    def test_circular_polygon(self):
        polygon = SpatialOperations().create_circular_polygon(CENTER, 100, num_points=16)

        assert len(polygon.exterior.coords) == 17
        assert polygon.contains(Point(CENTER.longitude, CENTER.latitude))

        for lon, lat in polygon.exterior.coords:
            assert distance_meters(CENTER, Coordinate(lat, lon)) == pytest.approx(100, abs=1e-6)

    def test_circular_polygon_needs_three_points(self):
        with pytest.raises(ValueError):
            SpatialOperations().create_circular_polygon(CENTER, 100, num_points=2)
