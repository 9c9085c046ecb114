"""
Shared fixtures: two offices, one geofence around lower Manhattan and
readers placed at known distances from its center.
"""

from datetime import datetime, timedelta, timezone

import pytest

from geotrack.config import TrackingConfig
from geotrack.engine import GeofenceTrackingEngine
from geotrack.models.tracking import Asset, Coordinate, Geofence, Office, RfidReader, RfidTag
from geotrack.modules.geofence_manager.spatial_operations import SpatialOperations
from geotrack.modules.rfid_manager.directory import InMemoryDirectory

CENTER = Coordinate(40.7128, -74.0060)
T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for time-window tests"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FakeFuture:
    def __init__(self):
        self.callbacks = []
        self.errbacks = []

    def add_callback(self, fn):
        self.callbacks.append(fn)
        return self

    def add_errback(self, fn):
        self.errbacks.append(fn)
        return self


class FakeProducer:
    """Records what would have been sent to Kafka"""

    def __init__(self):
        self.sent = []
        self.closed = False
        self.flushed = False

    def send(self, topic, key=None, value=None):
        self.sent.append((topic, key, value))
        return FakeFuture()

    def flush(self):
        self.flushed = True

    def close(self):
        self.closed = True


def point_at(distance: float, bearing: float = 90.0) -> Coordinate:
    """Coordinate at a given distance from CENTER"""
    return SpatialOperations().calculate_destination_point(CENTER, bearing, distance)


def detection(epc: str, reader_id: str, at: datetime, **extra):
    payload = {"tagIdentifier": epc, "readerIdentifier": reader_id, "detectedAt": at.isoformat()}
    payload.update(extra)
    return payload


def build_directory(alert_on_entry: bool = True, alert_on_exit: bool = True,
                    directory_cls=InMemoryDirectory) -> InMemoryDirectory:
    directory = directory_cls()

    directory.add_office(Office(id="office-a", code="NYC", coordinate=CENTER, name="New York"))
    directory.add_office(Office(id="office-b", code="BOS", coordinate=Coordinate(42.3601, -71.0589)))

    directory.add_geofence(Geofence(
        id="gf-a", office_id="office-a", center=CENTER, radius_meters=100,
        alert_on_entry=alert_on_entry, alert_on_exit=alert_on_exit, name="NYC perimeter"
    ))
    directory.add_geofence(Geofence(
        id="gf-b", office_id="office-b", center=Coordinate(42.3601, -71.0589), radius_meters=250,
        alert_on_entry=True, alert_on_exit=True
    ))

    directory.add_reader(RfidReader(id="reader-50", office_id="office-a", coordinate=point_at(50)))
    directory.add_reader(RfidReader(id="reader-150", office_id="office-a", coordinate=point_at(150)))
    directory.add_reader(RfidReader(id="reader-200", office_id="office-a", coordinate=point_at(200)))
    directory.add_reader(RfidReader(id="reader-b", office_id="office-b",
                                    coordinate=Coordinate(42.3602, -71.0590)))

    directory.add_tag(RfidTag(id="tag-1", epc="EPC-0001"))
    directory.add_tag(RfidTag(id="tag-2", epc="EPC-0002"))
    directory.add_tag(RfidTag(id="tag-3", epc="EPC-0003", is_active=False))
    directory.add_tag(RfidTag(id="tag-4", epc="EPC-0004"))

    directory.add_asset(Asset(id="asset-1", expected_office_id="office-a", rfid_tag_id="tag-1",
                              name="Laptop 1"))
    directory.add_asset(Asset(id="asset-4", expected_office_id="office-b", rfid_tag_id="tag-4"))

    return directory


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    return build_directory()


@pytest.fixture
def engine(directory, clock):
    return GeofenceTrackingEngine(directory, TrackingConfig(), clock=clock)
