"""
Event Store - Bounded log of raw detection events

Every detection is persisted before any other processing so the audit trail
survives later failures. Persistence is idempotent by event id and assigns
the monotonic received order used to break timestamp ties.
"""

import heapq
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Any, Optional, Tuple

from geotrack.exceptions import InvalidDetection
from geotrack.models.tracking import DetectionEvent, parse_timestamp, utc_now

@dataclass(frozen=True)
class RawDetection:
    """Parsed detection before persistence"""
    event_id: str
    tag_epc: str
    reader_id: str
    detected_at: datetime
    rssi: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Stored timestamps are always timezone-aware UTC
        try:
            detected_at = parse_timestamp(self.detected_at)
        except (ValueError, OverflowError, OSError) as e:
            raise InvalidDetection(f"Invalid detected_at {self.detected_at!r}: {e}")
        object.__setattr__(self, "detected_at", detected_at)

class EventStore:
    """In-memory detection event log

    Bounded two ways: events detected more than `retention` before the
    clock are pruned on each persist, and past `max_events` the oldest
    inserted event is forgotten.
    """

    def __init__(self, max_events: Optional[int] = None,
                 retention: Optional[timedelta] = None,
                 clock: Callable[[], datetime] = utc_now):
        if max_events is not None and max_events <= 0:
            raise ValueError(f"max_events must be > 0, got {max_events}")
        if retention is not None and retention <= timedelta(0):
            raise ValueError(f"retention must be positive, got {retention}")

        self.max_events = max_events
        self.retention = retention
        self.clock = clock

        self._guard = threading.Lock()
        # Insertion ordered, so the first key is the oldest persisted event
        self._events: Dict[str, DetectionEvent] = {}
        self._by_age: List[Tuple[datetime, int, str]] = []
        self._next_order = 1

    def persist(self, raw: RawDetection) -> Tuple[DetectionEvent, bool]:
        """Store a detection; returns (event, created)

        Re-persisting a known event id returns the stored event unchanged,
        with its original received order.
        """

        with self._guard:
            existing = self._events.get(raw.event_id)
            if existing is not None:
                return existing, False

            self._prune_expired()

            event = DetectionEvent(
                id=raw.event_id,
                tag_epc=raw.tag_epc,
                reader_id=raw.reader_id,
                detected_at=raw.detected_at,
                received_order=self._next_order,
                rssi=raw.rssi,
                metadata=dict(raw.metadata)
            )
            self._next_order += 1

            if self.max_events is not None and len(self._events) >= self.max_events:
                del self._events[next(iter(self._events))]

            self._events[event.id] = event
            if self.retention is not None:
                heapq.heappush(self._by_age, (event.detected_at, event.received_order, event.id))

            return event, True

    def prune(self) -> int:
        """Drop events older than the retention period; returns how many"""

        with self._guard:
            return self._prune_expired()

    def _prune_expired(self) -> int:
        if self.retention is None:
            return 0

        cutoff = self.clock() - self.retention
        pruned = 0

        while self._by_age and self._by_age[0][0] < cutoff:
            _, order, event_id = heapq.heappop(self._by_age)
            stored = self._events.get(event_id)
            # The id may have been evicted already, or reused by a newer event
            if stored is not None and stored.received_order == order:
                del self._events[event_id]
                pruned += 1

        return pruned

    def get(self, event_id: str) -> Optional[DetectionEvent]:
        with self._guard:
            return self._events.get(event_id)

    def since(self, start: datetime, end: Optional[datetime] = None) -> List[DetectionEvent]:
        """Events detected in [start, end]"""

        with self._guard:
            events = list(self._events.values())

        return [
            e for e in events
            if e.detected_at >= start and (end is None or e.detected_at <= end)
        ]

    def latest_per_tag(self, start: datetime, end: Optional[datetime] = None) -> List[DetectionEvent]:
        """Most recent event of each tag inside [start, end], newest first"""

        latest: Dict[str, DetectionEvent] = {}

        for event in self.since(start, end):
            current = latest.get(event.tag_epc)
            if current is None or event.ordering_key > current.ordering_key:
                latest[event.tag_epc] = event

        return sorted(latest.values(), key=lambda e: e.ordering_key, reverse=True)

    def recent(self, limit: int = 50) -> List[DetectionEvent]:
        """Newest events by detection time"""

        with self._guard:
            events = list(self._events.values())

        events.sort(key=lambda e: e.ordering_key, reverse=True)
        return events[:limit]

    def __len__(self) -> int:
        with self._guard:
            return len(self._events)
