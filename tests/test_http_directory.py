"""
Tests for the REST-backed directory, run against a local aiohttp server
that answers list endpoints the way the CRUD service does: unfiltered,
newest first.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from geotrack.config import TrackingConfig
from geotrack.engine import GeofenceTrackingEngine
from geotrack.exceptions import DependencyError, DependencyTimeout, InvalidCoordinate
from geotrack.models.tracking import Coordinate
from geotrack.modules.rfid_manager.directory import (
    HttpDirectory, asset_from_json, geofence_from_json, office_from_json
)
from geotrack.modules.rfid_manager.ingestion_pipeline import IngestStatus

from tests.conftest import CENTER, T0, detection, point_at

BOSTON = Coordinate(42.3601, -71.0589)

TAGS = [
    {"id": "tag-9", "epc": "EPC-NEWEST", "isActive": True},
    {"id": "tag-2", "epc": "EPC-0002", "isActive": True},
    {"id": "tag-1", "epc": "EPC-0001", "isActive": True},
]

READERS = {
    "reader-50": {
        "id": "reader-50", "officeId": "office-a",
        "locationCoordinates": point_at(50).to_dict()
    },
    "reader-bad": {
        "id": "reader-bad", "officeId": "office-a",
        "locationCoordinates": {"lat": 123.0, "lon": 0.0}
    },
}

ASSETS = [
    {"id": "asset-x", "rfidTagId": "tag-9", "currentOfficeId": "office-b"},
    {"id": "asset-u", "rfidTagId": None, "currentOfficeId": "office-a"},
    {"id": "asset-1", "rfidTagId": "tag-1", "currentOfficeId": "office-a", "name": "Laptop 1"},
]

OFFICES = {
    "office-a": {
        "id": "office-a", "code": "NYC", "name": "New York",
        "contactInfo": {"lat": CENTER.latitude, "lon": CENTER.longitude, "phone": "555"},
        # Centered on the office location, as stored by the CRUD service
        "geofences": [{
            "id": "gf-a", "officeId": "office-a", "radiusMeters": 100,
            "config": {"alertOnEntry": True, "alertOnExit": False}
        }]
    },
    "office-b": {
        "id": "office-b", "code": "BOS", "name": "Boston",
        "contactInfo": {"lat": BOSTON.latitude, "lon": BOSTON.longitude},
        "geofences": [{
            "id": "gf-b", "officeId": "office-b", "radiusMeters": 250,
            "center": {"latitude": 42.3605, "longitude": -71.0590}
        }]
    },
}


def build_app():
    app = web.Application()
    app["hits"] = {}
    app["auth"] = []

    def count(request, name):
        request.app["hits"][name] = request.app["hits"].get(name, 0) + 1
        request.app["auth"].append(request.headers.get("Authorization"))

    async def tags(request):
        count(request, "tags")
        return web.json_response(TAGS)

    async def reader(request):
        count(request, "reader")
        record = READERS.get(request.match_info["reader_id"])
        if record is None:
            raise web.HTTPNotFound()
        return web.json_response(record)

    async def assets(request):
        count(request, "assets")
        return web.json_response({"data": ASSETS})

    async def asset(request):
        count(request, "asset")
        record = next((a for a in ASSETS if a["id"] == request.match_info["asset_id"]), None)
        if record is None:
            raise web.HTTPNotFound()
        return web.json_response(record)

    async def offices(request):
        count(request, "offices")
        return web.json_response([
            {k: v for k, v in o.items() if k != "geofences"} for o in OFFICES.values()
        ])

    async def office(request):
        count(request, "office")
        record = OFFICES.get(request.match_info["office_id"])
        if record is None:
            raise web.HTTPNotFound()
        return web.json_response(record)

    async def slow(request):
        await asyncio.sleep(0.5)
        return web.json_response({})

    async def broken(request):
        return web.json_response({"error": "boom"}, status=500)

    app.router.add_get("/rfid/tags", tags)
    app.router.add_get("/rfid/readers/slow", slow)
    app.router.add_get("/rfid/readers/broken", broken)
    app.router.add_get("/rfid/readers/{reader_id}", reader)
    app.router.add_get("/assets", assets)
    app.router.add_get("/assets/{asset_id}", asset)
    app.router.add_get("/offices", offices)
    app.router.add_get("/offices/{office_id}", office)
    return app


@pytest.fixture
async def server():
    server = TestServer(build_app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
async def http_directory(server):
    directory = HttpDirectory(str(server.make_url("/")), api_key="secret", timeout_seconds=0.2)
    yield directory
    await directory.close()


class TestHttpDirectory:
    """Lookups against the CRUD API."""

    async def test_tag_lookup_matches_epc(self, http_directory):
        tag = await http_directory.get_tag_by_epc("EPC-0001")

        assert tag.id == "tag-1"
        assert tag.epc == "EPC-0001"
        assert tag.is_active
        assert await http_directory.get_tag_by_epc("EPC-9999") is None

    async def test_reader_lookup(self, http_directory):
        reader = await http_directory.get_reader("reader-50")

        assert reader.office_id == "office-a"
        assert reader.coordinate.latitude == pytest.approx(point_at(50).latitude)
        assert await http_directory.get_reader("reader-x") is None

    async def test_asset_lookup_matches_tag(self, http_directory):
        asset = await http_directory.get_asset_by_tag("tag-1")

        assert asset.id == "asset-1"
        assert asset.rfid_tag_id == "tag-1"
        assert asset.expected_office_id == "office-a"
        assert await http_directory.get_asset_by_tag("tag-2") is None
        assert (await http_directory.get_asset("asset-1")).name == "Laptop 1"
        assert await http_directory.get_asset("asset-missing") is None

    async def test_geofences_come_from_office(self, http_directory):
        geofences = await http_directory.list_geofences("office-a")
        office = await http_directory.get_office("office-a")

        assert [g.id for g in geofences] == ["gf-a"]
        assert geofences[0].center == CENTER
        assert geofences[0].alert_on_entry and not geofences[0].alert_on_exit
        assert geofences[0].radius_meters == 100.0
        assert office.coordinate == CENTER
        assert office.name == "New York"
        assert await http_directory.list_geofences("office-z") == []

    async def test_all_geofences(self, http_directory):
        geofences = await http_directory.list_geofences()

        assert [g.id for g in geofences] == ["gf-a", "gf-b"]
        assert geofences[1].center == Coordinate(42.3605, -71.0590)
        assert geofences[1].office_id == "office-b"

    async def test_found_records_are_cached(self, http_directory, server):
        await http_directory.get_reader("reader-50")
        await http_directory.get_reader("reader-50")
        await http_directory.get_office("office-a")
        await http_directory.list_geofences("office-a")
        await http_directory.get_asset_by_tag("tag-1")
        await http_directory.get_asset_by_tag("tag-1")

        assert server.app["hits"]["reader"] == 1
        assert server.app["hits"]["office"] == 1
        assert server.app["hits"]["assets"] == 2

        http_directory.invalidate()
        await http_directory.get_reader("reader-50")
        assert server.app["hits"]["reader"] == 2

    async def test_expired_entries_are_dropped(self, http_directory):
        http_directory._cache["reader:old"] = object()
        http_directory._cache_expiry["reader:old"] = datetime.now() - timedelta(seconds=1)

        assert not http_directory._is_cache_valid("reader:old")
        assert "reader:old" not in http_directory._cache
        assert "reader:old" not in http_directory._cache_expiry

    async def test_zero_ttl_does_not_accumulate(self, server):
        directory = HttpDirectory(str(server.make_url("/")), cache_seconds=0)

        try:
            for epc in ("EPC-0001", "EPC-0002", "EPC-NEWEST"):
                await directory.get_tag_by_epc(epc)
                await directory.get_tag_by_epc(epc)
        finally:
            await directory.close()

        assert len(directory._cache) == len(directory._cache_expiry) <= 1

    async def test_sends_api_key(self, http_directory, server):
        await http_directory.get_tag_by_epc("EPC-0001")

        assert server.app["auth"] == ["Bearer secret"]

    async def test_timeout(self, http_directory):
        with pytest.raises(DependencyTimeout):
            await http_directory.get_reader("slow")

    async def test_server_error(self, http_directory):
        with pytest.raises(DependencyError) as info:
            await http_directory.get_reader("broken")

        assert info.value.retryable

    async def test_engine_over_http(self, server):
        config = TrackingConfig(directory_base_url=str(server.make_url("/")), lookup_timeout_seconds=1.0)
        engine = GeofenceTrackingEngine.from_config(config)

        try:
            ok = await engine.ingest(detection("EPC-0001", "reader-50", T0, eventId="h1"))
            bad = await engine.ingest(detection("EPC-0001", "reader-bad", T0, eventId="h2"))
        finally:
            await engine.directory.close()

        assert isinstance(engine.directory, HttpDirectory)
        assert ok.status is IngestStatus.PROCESSED
        assert ok.asset_id == "asset-1"
        assert [e.geofence_id for e in ok.evaluations] == ["gf-a"]
        assert ok.evaluations[0].is_inside
        assert bad.status is IngestStatus.FAILED
        assert bad.error.code == "invalid_coordinate"
        assert engine.events.get("h2") is not None


class TestJsonParsing:
    """Mapping CRUD records onto engine types."""

    def test_geofence_requires_center(self):
        with pytest.raises(InvalidCoordinate):
            geofence_from_json({"id": "g", "officeId": "o", "radiusMeters": 5})

    def test_geofence_office_without_location(self):
        office = office_from_json({"id": "o", "contactInfo": {"phone": "555"}})

        with pytest.raises(InvalidCoordinate):
            geofence_from_json({"id": "g", "radiusMeters": 5}, office)

    def test_geofence_centered_on_office(self):
        office = office_from_json({"id": "o", "contactInfo": {"lat": 1, "lon": 2}})

        geofence = geofence_from_json({"id": "g", "radiusMeters": 5}, office)

        assert geofence.center == Coordinate(1, 2)
        assert geofence.office_id == "o"

    def test_geofence_top_level_flags(self):
        geofence = geofence_from_json({
            "id": "g", "officeId": "o", "radiusMeters": "25",
            "center": {"latitude": 1, "longitude": 2}, "alertOnExit": True
        })

        assert geofence.alert_on_exit and not geofence.alert_on_entry
        assert geofence.radius_meters == 25.0

    def test_office_without_coordinates(self):
        office = office_from_json({"id": "o", "contactInfo": {"phone": "555"}})

        assert office.coordinate is None
        assert office.code == "o"

    def test_asset_without_office(self):
        asset = asset_from_json({"id": "a", "rfidTagId": None})

        assert asset.expected_office_id is None
        assert asset.rfid_tag_id is None
