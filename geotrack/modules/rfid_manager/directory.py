"""
Directory - Read-only access to asset, tag, reader, office and geofence records

The engine never owns these records; they belong to the CRUD service. This
module provides:
- Directory: the narrow async read interface the engine depends on
- InMemoryDirectory: dictionary-backed implementation for local runs and tests
- HttpDirectory: aiohttp client for the CRUD service REST API with caching
"""

import asyncio
import aiohttp
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional, Tuple

from geotrack.exceptions import DependencyError, DependencyTimeout, InvalidCoordinate
from geotrack.models.tracking import Asset, Coordinate, Geofence, Office, RfidReader, RfidTag
from geotrack.utils.logger import get_logger

class Directory(ABC):
    """Collaborator lookups used by the tracking engine"""

    @abstractmethod
    async def get_tag_by_epc(self, epc: str) -> Optional[RfidTag]:
        pass

    @abstractmethod
    async def get_reader(self, reader_id: str) -> Optional[RfidReader]:
        pass

    @abstractmethod
    async def get_asset_by_tag(self, tag_id: str) -> Optional[Asset]:
        pass

    @abstractmethod
    async def get_asset(self, asset_id: str) -> Optional[Asset]:
        pass

    @abstractmethod
    async def get_office(self, office_id: str) -> Optional[Office]:
        pass

    @abstractmethod
    async def list_geofences(self, office_id: Optional[str] = None) -> List[Geofence]:
        """Geofences of one office, or of every office when office_id is None"""
        pass

class InMemoryDirectory(Directory):
    """Directory held in process memory"""

    def __init__(self):
        self._guard = threading.Lock()
        self.offices: Dict[str, Office] = {}
        self.geofences: Dict[str, Geofence] = {}
        self.readers: Dict[str, RfidReader] = {}
        self.tags: Dict[str, RfidTag] = {}
        self.assets: Dict[str, Asset] = {}

    def add_office(self, office: Office) -> Office:
        with self._guard:
            self.offices[office.id] = office
        return office

    def add_geofence(self, geofence: Geofence) -> Geofence:
        with self._guard:
            self.geofences[geofence.id] = geofence
        return geofence

    def add_reader(self, reader: RfidReader) -> RfidReader:
        with self._guard:
            self.readers[reader.id] = reader
        return reader

    def add_tag(self, tag: RfidTag) -> RfidTag:
        with self._guard:
            self.tags[tag.id] = tag
        return tag

    def add_asset(self, asset: Asset) -> Asset:
        """Add or replace an asset; a tag moves off any asset that held it"""

        with self._guard:
            if asset.rfid_tag_id is not None:
                for other in list(self.assets.values()):
                    if other.id != asset.id and other.rfid_tag_id == asset.rfid_tag_id:
                        self.assets[other.id] = Asset(
                            id=other.id,
                            expected_office_id=other.expected_office_id,
                            rfid_tag_id=None,
                            name=other.name
                        )
            self.assets[asset.id] = asset
        return asset

    async def get_tag_by_epc(self, epc: str) -> Optional[RfidTag]:
        with self._guard:
            return next((t for t in self.tags.values() if t.epc == epc), None)

    async def get_reader(self, reader_id: str) -> Optional[RfidReader]:
        with self._guard:
            return self.readers.get(reader_id)

    async def get_asset_by_tag(self, tag_id: str) -> Optional[Asset]:
        with self._guard:
            return next((a for a in self.assets.values() if a.rfid_tag_id == tag_id), None)

    async def get_asset(self, asset_id: str) -> Optional[Asset]:
        with self._guard:
            return self.assets.get(asset_id)

    async def get_office(self, office_id: str) -> Optional[Office]:
        with self._guard:
            return self.offices.get(office_id)

    async def list_geofences(self, office_id: Optional[str] = None) -> List[Geofence]:
        with self._guard:
            geofences = list(self.geofences.values())

        if office_id is not None:
            geofences = [g for g in geofences if g.office_id == office_id]

        return sorted(geofences, key=lambda g: g.id)

def _coordinate_from_json(data: Any) -> Optional[Coordinate]:
    if data is None:
        return None
    return Coordinate.from_dict(data)

def office_from_json(data: Dict[str, Any]) -> Office:
    # Offices keep their location in contactInfo in the CRUD schema
    location = data.get("coordinate") or data.get("location") or data.get("contactInfo")
    coordinate = None
    if isinstance(location, dict) and any(k in location for k in ("lat", "latitude")):
        coordinate = _coordinate_from_json(location)

    return Office(
        id=str(data["id"]),
        code=str(data.get("code", data["id"])),
        coordinate=coordinate,
        name=data.get("name")
    )

def geofence_from_json(data: Dict[str, Any], office: Optional[Office] = None) -> Geofence:
    # The CRUD schema centers geofences on their office's location
    center = data.get("center") or data.get("centerCoordinates")
    if center is not None:
        center = Coordinate.from_dict(center)
    elif office is not None:
        center = office.coordinate

    if center is None:
        raise InvalidCoordinate(f"Geofence {data.get('id')} has no center coordinate")

    config = data.get("config") or {}
    office_id = data.get("officeId", office.id if office is not None else None)

    return Geofence(
        id=str(data["id"]),
        office_id=str(office_id),
        center=center,
        radius_meters=float(data.get("radiusMeters", 0)),
        alert_on_entry=bool(data.get("alertOnEntry", config.get("alertOnEntry", False))),
        alert_on_exit=bool(data.get("alertOnExit", config.get("alertOnExit", False))),
        name=data.get("name")
    )

def reader_from_json(data: Dict[str, Any]) -> RfidReader:
    location = data.get("locationCoordinates") or data.get("coordinate")
    if location is None:
        raise InvalidCoordinate(f"Reader {data.get('id')} has no location coordinates")

    return RfidReader(
        id=str(data["id"]),
        office_id=str(data["officeId"]),
        coordinate=Coordinate.from_dict(location),
        name=data.get("name")
    )

def tag_from_json(data: Dict[str, Any]) -> RfidTag:
    return RfidTag(
        id=str(data["id"]),
        epc=str(data["epc"]),
        is_active=bool(data.get("isActive", True))
    )

def asset_from_json(data: Dict[str, Any]) -> Asset:
    expected_office = data.get("currentOfficeId", data.get("expectedOfficeId"))
    tag_id = data.get("rfidTagId")

    return Asset(
        id=str(data["id"]),
        expected_office_id=str(expected_office) if expected_office is not None else None,
        rfid_tag_id=str(tag_id) if tag_id is not None else None,
        name=data.get("name")
    )

def _records(payload: Any) -> List[Dict[str, Any]]:
    """List endpoints answer either a bare array or {"data": [...]}"""
    if isinstance(payload, dict):
        payload = payload.get("data", [])
    return list(payload or [])

class HttpDirectory(Directory):
    """Directory backed by the CRUD service REST API"""

    def __init__(self, base_url: str, api_key: Optional[str] = None,
                 timeout_seconds: float = 2.0, cache_seconds: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.cache_duration = timedelta(seconds=cache_seconds)
        self.logger = get_logger(__name__)

        self._session: Optional[aiohttp.ClientSession] = None
        self._cache: Dict[str, Any] = {}
        self._cache_expiry: Dict[str, datetime] = {}

    async def __aenter__(self) -> "HttpDirectory":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._session = aiohttp.ClientSession(headers=headers, timeout=self.timeout)
        return self._session

    def _is_cache_valid(self, cache_key: str) -> bool:
        """Check if cached data is still valid, dropping it once expired"""

        if cache_key not in self._cache_expiry:
            return False

        if datetime.now() < self._cache_expiry[cache_key]:
            return True

        del self._cache_expiry[cache_key]
        self._cache.pop(cache_key, None)
        return False

    def _evict_expired(self) -> None:
        now = datetime.now()
        for cache_key in [k for k, expiry in self._cache_expiry.items() if expiry <= now]:
            del self._cache_expiry[cache_key]
            self._cache.pop(cache_key, None)

    def invalidate(self) -> None:
        """Drop every cached record"""
        self._cache.clear()
        self._cache_expiry.clear()

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Tuple[int, Any]:
        url = f"{self.base_url}{path}"

        try:
            async with self._get_session().get(url, params=params) as response:
                if response.status == 404:
                    return 404, None
                if response.status != 200:
                    raise DependencyError(f"Directory request {path} failed: {response.status}")
                return 200, await response.json()

        except asyncio.TimeoutError:
            raise DependencyTimeout(f"Directory request {path} timed out after {self.timeout.total}s")
        except aiohttp.ClientError as e:
            raise DependencyError(f"Directory request {path} failed: {e}")

    async def _cached(self, cache_key: str, path: str, parse,
                      params: Optional[Dict[str, str]] = None):
        if self._is_cache_valid(cache_key):
            return self._cache[cache_key]

        status, payload = await self._get_json(path, params)
        if status == 404 or payload is None:
            return None

        value = parse(payload)

        # Missing records are not cached so new ones show up immediately
        if value is not None and value != []:
            self._evict_expired()
            self._cache[cache_key] = value
            self._cache_expiry[cache_key] = datetime.now() + self.cache_duration

        return value

    async def get_tag_by_epc(self, epc: str) -> Optional[RfidTag]:
        # GET /rfid/tags only filters on isActive, so match the EPC here
        def parse(payload):
            for record in _records(payload):
                if str(record.get("epc")) == epc:
                    return tag_from_json(record)
            return None

        return await self._cached(f"tag:{epc}", "/rfid/tags", parse)

    async def get_reader(self, reader_id: str) -> Optional[RfidReader]:
        return await self._cached(f"reader:{reader_id}", f"/rfid/readers/{reader_id}", reader_from_json)

    async def get_asset_by_tag(self, tag_id: str) -> Optional[Asset]:
        # Tag assignment changes often, so this lookup bypasses the cache.
        # GET /assets does not filter on rfidTagId.
        status, payload = await self._get_json("/assets")
        if status == 404:
            return None

        for record in _records(payload):
            if record.get("rfidTagId") is not None and str(record["rfidTagId"]) == tag_id:
                return asset_from_json(record)

        return None

    async def get_asset(self, asset_id: str) -> Optional[Asset]:
        status, payload = await self._get_json(f"/assets/{asset_id}")
        return asset_from_json(payload) if status == 200 and payload else None

    async def _office_record(self, office_id: str) -> Optional[Dict[str, Any]]:
        """Office payload with its geofences inline"""
        return await self._cached(f"office:{office_id}", f"/offices/{office_id}", lambda payload: payload)

    async def get_office(self, office_id: str) -> Optional[Office]:
        record = await self._office_record(office_id)
        return office_from_json(record) if record else None

    async def list_geofences(self, office_id: Optional[str] = None) -> List[Geofence]:
        if office_id is None:
            status, payload = await self._get_json("/offices")
            office_ids = [] if status == 404 else [str(o["id"]) for o in _records(payload)]
        else:
            office_ids = [office_id]

        geofences: List[Geofence] = []

        for oid in office_ids:
            record = await self._office_record(oid)
            if not record:
                continue

            office = office_from_json(record)
            geofences.extend(geofence_from_json(g, office) for g in record.get("geofences") or [])

        return sorted(geofences, key=lambda g: g.id)
