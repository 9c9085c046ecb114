"""
Identity Resolver - Map a detection to the asset and geofences it concerns

Looks up tag, reader, asset, expected office and the geofences of the
reader's office through the Directory. Every lookup runs under a bounded
timeout; expiry is reported as DependencyTimeout.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Awaitable, TypeVar

from geotrack.exceptions import DependencyTimeout, TagUnassigned, UnknownReader, UnknownTag
from geotrack.models.tracking import (
    Asset, Coordinate, DetectionEvent, Geofence, Office, RfidReader, RfidTag
)
from geotrack.modules.rfid_manager.directory import Directory
from geotrack.utils.logger import get_logger

T = TypeVar("T")

@dataclass(frozen=True)
class ResolvedContext:
    """Everything needed to evaluate one detection"""
    event: DetectionEvent
    tag: RfidTag
    asset: Asset
    expected_office: Optional[Office]
    reader: RfidReader
    geofences: List[Geofence] = field(default_factory=list)

    @property
    def coordinate(self) -> Coordinate:
        """Detections carry no GPS fix; the reader position stands in"""
        return self.reader.coordinate

class IdentityResolver:
    """Resolve detection events against the directory"""

    def __init__(self, directory: Directory, lookup_timeout_seconds: float = 2.0):
        self.directory = directory
        self.lookup_timeout_seconds = lookup_timeout_seconds
        self.logger = get_logger(__name__)

    async def lookup(self, what: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.lookup_timeout_seconds)
        except asyncio.TimeoutError:
            raise DependencyTimeout(f"Lookup of {what} timed out after {self.lookup_timeout_seconds}s")

    async def resolve(self, event: DetectionEvent, include_geofences: bool = True) -> ResolvedContext:
        """Resolve tag, reader and asset; raises UnknownTag, UnknownReader or TagUnassigned"""

        tag = await self.lookup(f"tag {event.tag_epc}", self.directory.get_tag_by_epc(event.tag_epc))
        if tag is None:
            raise UnknownTag(f"Tag {event.tag_epc} is not registered", event_id=event.id)
        if not tag.is_active:
            raise UnknownTag(f"Tag {event.tag_epc} is inactive", event_id=event.id)

        reader = await self.lookup(f"reader {event.reader_id}", self.directory.get_reader(event.reader_id))
        if reader is None:
            raise UnknownReader(f"Reader {event.reader_id} is not registered", event_id=event.id)

        asset = await self.lookup(f"asset for tag {tag.id}", self.directory.get_asset_by_tag(tag.id))
        if asset is None:
            raise TagUnassigned(f"Tag {event.tag_epc} is not assigned to an asset", event_id=event.id)

        expected_office = None
        if asset.expected_office_id is not None:
            expected_office = await self.lookup(
                f"office {asset.expected_office_id}",
                self.directory.get_office(asset.expected_office_id)
            )

        geofences: List[Geofence] = []
        if include_geofences:
            geofences = await self.lookup(
                f"geofences of office {reader.office_id}",
                self.directory.list_geofences(reader.office_id)
            )
            # Each reader evaluates only the geofences of its own office
            geofences = [g for g in geofences if g.office_id == reader.office_id]

        self.logger.debug(
            f"Resolved event {event.id}: asset {asset.id}, reader {reader.id}, "
            f"{len(geofences)} geofence(s)"
        )

        return ResolvedContext(
            event=event,
            tag=tag,
            asset=asset,
            expected_office=expected_office,
            reader=reader,
            geofences=geofences
        )
