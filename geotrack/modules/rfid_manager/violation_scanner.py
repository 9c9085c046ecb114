"""
Violation Scanner - Snapshot query for assets detected outside their office

For every tag, only its latest detection inside the trailing window counts.
The scan holds no state and takes no per-asset locks, so it may run
repeatedly or in parallel with ingestion.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional, Callable, Protocol

from geotrack.exceptions import ErrorInfo, TagUnassigned
from geotrack.models.tracking import Violation, utc_now
from geotrack.modules.rfid_manager.event_store import EventStore
from geotrack.modules.rfid_manager.identity_resolver import IdentityResolver
from geotrack.utils.logger import get_logger

DEFAULT_WINDOW = timedelta(minutes=5)

class CancellationToken(Protocol):
    """Anything with is_set(), e.g. asyncio.Event or threading.Event"""

    def is_set(self) -> bool:
        ...

@dataclass(frozen=True)
class ScanFailure:
    """One scanned event that could not be evaluated"""
    event_id: str
    tag_epc: str
    error: ErrorInfo

    def to_dict(self) -> Dict[str, Any]:
        return {"event_id": self.event_id, "tag_epc": self.tag_epc, "error": self.error.to_dict()}

@dataclass
class ViolationScanReport:
    """Result of one scan"""
    window_start: datetime
    window_end: datetime
    violations: List[Violation] = field(default_factory=list)
    failures: List[ScanFailure] = field(default_factory=list)
    scanned: int = 0
    unassigned: int = 0
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "violations": [v.to_dict() for v in self.violations],
            "failures": [f.to_dict() for f in self.failures],
            "scanned": self.scanned,
            "unassigned": self.unassigned,
            "cancelled": self.cancelled
        }

class ViolationScanner:
    """Recompute office-assignment violations on demand"""

    def __init__(self, events: EventStore, resolver: IdentityResolver,
                 window: timedelta = DEFAULT_WINDOW,
                 clock: Callable[[], datetime] = utc_now):
        if window <= timedelta(0):
            raise ValueError(f"Violation window must be positive, got {window}")

        self.events = events
        self.resolver = resolver
        self.window = window
        self.clock = clock
        self.logger = get_logger(__name__)

    async def scan(self, now: Optional[datetime] = None,
                   cancel: Optional[CancellationToken] = None) -> ViolationScanReport:
        """Scan the latest detection of each tag inside the window

        Cancellation is honoured between events only.
        """

        window_end = now or self.clock()
        window_start = window_end - self.window
        report = ViolationScanReport(window_start=window_start, window_end=window_end)

        for event in self.events.latest_per_tag(window_start, window_end):
            if cancel is not None and cancel.is_set():
                report.cancelled = True
                self.logger.info(f"Violation scan cancelled after {report.scanned} event(s)")
                break

            report.scanned += 1

            try:
                context = await self.resolver.resolve(event, include_geofences=False)
            except TagUnassigned:
                report.unassigned += 1
                continue
            except Exception as e:
                self.logger.warning(f"Violation scan skipped event {event.id}: {e}")
                report.failures.append(ScanFailure(
                    event_id=event.id,
                    tag_epc=event.tag_epc,
                    error=ErrorInfo.from_exception(e)
                ))
                continue

            if context.asset.expected_office_id != context.reader.office_id:
                report.violations.append(Violation(
                    asset_id=context.asset.id,
                    expected_office_id=context.asset.expected_office_id,
                    detected_office_id=context.reader.office_id,
                    detected_at=event.detected_at,
                    reader_id=context.reader.id,
                    event_id=event.id
                ))

        self.logger.debug(
            f"Violation scan: {report.scanned} scanned, {len(report.violations)} violation(s), "
            f"{len(report.failures)} failure(s)"
        )

        return report

    async def get_violations(self, now: Optional[datetime] = None) -> List[Violation]:
        report = await self.scan(now=now)
        return report.violations
