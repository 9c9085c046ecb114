"""
Transition Tracker - Stateful entry/exit detection per asset and geofence

This module provides:
- ContainmentStore: the owned keyed store of containment state
- KeyedLock: per-asset mutual exclusion shared by threads and event loops
- TransitionTracker: edge detection with stale event rejection

Events for one asset are ordered by (detected_at, received_order). An event
whose key is not newer than the stored key for a pair is stale; replaying an
event is therefore always stale.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple, Callable, Iterator, Sequence

from geotrack.exceptions import StaleEvent
from geotrack.models.tracking import (
    ContainmentState, DetectionEvent, Transition, TransitionType
)
from geotrack.modules.geofence_manager.containment import ContainmentResult
from geotrack.utils.logger import get_logger

@dataclass(frozen=True)
class TrackingOutcome:
    """Result of feeding one containment result to the tracker"""
    geofence_id: str
    state: Optional[ContainmentState]
    transition: Optional[Transition] = None
    first_observation: bool = False
    stale: bool = False

class KeyedLock:
    """One lock per key, created on demand and dropped when idle"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._holders: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._holders[key] = self._holders.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._holders[key] -= 1
                if self._holders[key] == 0:
                    del self._holders[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

class ContainmentStore:
    """In-memory containment state keyed by (asset_id, geofence_id)

    Writes go through TransitionTracker, which holds the asset lock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._states: Dict[Tuple[str, str], ContainmentState] = {}

    def get(self, asset_id: str, geofence_id: str) -> Optional[ContainmentState]:
        with self._guard:
            return self._states.get((asset_id, geofence_id))

    def put(self, state: ContainmentState) -> None:
        with self._guard:
            self._states[(state.asset_id, state.geofence_id)] = state

    def for_asset(self, asset_id: str) -> List[ContainmentState]:
        with self._guard:
            states = [s for (a, _), s in self._states.items() if a == asset_id]
        return sorted(states, key=lambda s: s.geofence_id)

    def all(self) -> List[ContainmentState]:
        with self._guard:
            return list(self._states.values())

    def __len__(self) -> int:
        with self._guard:
            return len(self._states)

class TransitionTracker:
    """Detect containment edges for asset/geofence pairs"""

    def __init__(self, store: Optional[ContainmentStore] = None):
        self.store = store or ContainmentStore()
        self.logger = get_logger(__name__)
        self._asset_locks = KeyedLock()

    def observe(self, asset_id: str, result: ContainmentResult,
                event: DetectionEvent) -> TrackingOutcome:
        """Apply one evaluation; raises StaleEvent for out-of-order events"""

        with self._asset_locks.hold(asset_id):
            return self._apply(asset_id, result, event)

    def track(self, asset_id: str, event: DetectionEvent,
              results: Sequence[ContainmentResult],
              on_transition: Optional[Callable[[Transition], None]] = None) -> List[TrackingOutcome]:
        """Apply all evaluations of one event under a single asset lock

        on_transition runs inside the lock, so callbacks for one asset see
        transitions in processing order. Stale pairs are reported in the
        outcome instead of raising.
        """

        outcomes = []

        with self._asset_locks.hold(asset_id):
            for result in results:
                try:
                    outcome = self._apply(asset_id, result, event)
                except StaleEvent as e:
                    self.logger.warning(f"Dropped stale event: {e.message}")
                    outcome = TrackingOutcome(
                        geofence_id=result.geofence_id,
                        state=self.store.get(asset_id, result.geofence_id),
                        stale=True
                    )

                if outcome.transition is not None and on_transition is not None:
                    on_transition(outcome.transition)

                outcomes.append(outcome)

        return outcomes

    def _apply(self, asset_id: str, result: ContainmentResult,
               event: DetectionEvent) -> TrackingOutcome:
        """Decide and store; caller holds the asset lock"""

        current = self.store.get(asset_id, result.geofence_id)

        if current is None:
            state = ContainmentState(
                asset_id=asset_id,
                geofence_id=result.geofence_id,
                is_inside=result.is_inside,
                last_evaluated_at=event.detected_at,
                last_received_order=event.received_order,
                last_event_id=event.id,
                distance_meters=result.distance_meters
            )
            self.store.put(state)
            self.logger.debug(
                f"First observation of asset {asset_id} for geofence {result.geofence_id}: "
                f"{'inside' if result.is_inside else 'outside'}"
            )
            return TrackingOutcome(geofence_id=result.geofence_id, state=state, first_observation=True)

        if event.ordering_key <= current.ordering_key:
            raise StaleEvent(
                f"Event {event.id} at {event.detected_at.isoformat()} (order {event.received_order}) "
                f"is not newer than {current.last_evaluated_at.isoformat()} "
                f"(order {current.last_received_order}) for asset {asset_id}, "
                f"geofence {result.geofence_id}",
                asset_id=asset_id,
                geofence_id=result.geofence_id,
                event_id=event.id
            )

        transition = None
        if result.is_inside != current.is_inside:
            transition = Transition(
                transition_type=TransitionType.ENTRY if result.is_inside else TransitionType.EXIT,
                asset_id=asset_id,
                geofence_id=result.geofence_id,
                distance_meters=result.distance_meters,
                occurred_at=event.detected_at,
                source_event_id=event.id
            )

        state = replace(
            current,
            is_inside=result.is_inside,
            last_evaluated_at=event.detected_at,
            last_received_order=event.received_order,
            last_event_id=event.id,
            distance_meters=result.distance_meters,
            version=current.version + 1
        )
        self.store.put(state)

        if transition is not None:
            self.logger.info(
                f"Asset {asset_id} {transition.transition_type.value} geofence "
                f"{result.geofence_id} at {result.distance_meters:.1f}m"
            )

        return TrackingOutcome(geofence_id=result.geofence_id, state=state, transition=transition)

    def states_for(self, asset_id: str) -> List[ContainmentState]:
        return self.store.for_asset(asset_id)
