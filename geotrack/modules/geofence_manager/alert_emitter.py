"""
Alert Emitter - Turn containment transitions into alerts

This module handles:
- Filtering transitions by each geofence's alert flags
- Appending alerts to the append-only alert store
- Forwarding alerts to registered sinks (callbacks, Kafka)

Duplicate suppression and delivery are left to alert consumers.
"""

import json
import threading
import uuid
from typing import List, Optional, Callable, Dict, Any

from kafka import KafkaProducer

from geotrack.models.tracking import Alert, AlertType, Geofence, Transition, TransitionType
from geotrack.utils.logger import get_logger

AlertSink = Callable[[Alert], None]

class AlertStore:
    """Append-only in-memory alert log"""

    def __init__(self):
        self._guard = threading.Lock()
        self._alerts: List[Alert] = []

    def append(self, alert: Alert) -> None:
        with self._guard:
            self._alerts.append(alert)

    def list(self, asset_id: Optional[str] = None) -> List[Alert]:
        with self._guard:
            alerts = list(self._alerts)

        if asset_id is not None:
            alerts = [a for a in alerts if a.asset_id == asset_id]

        return alerts

    def counts(self) -> Dict[str, int]:
        with self._guard:
            alerts = list(self._alerts)

        counts = {alert_type.value: 0 for alert_type in AlertType}
        for alert in alerts:
            counts[alert.type.value] += 1

        return counts

    def __len__(self) -> int:
        with self._guard:
            return len(self._alerts)

def alert_type_for(transition_type: TransitionType) -> AlertType:
    """Map every transition type to its alert type"""

    if transition_type is TransitionType.ENTRY:
        return AlertType.ENTRY
    elif transition_type is TransitionType.EXIT:
        return AlertType.EXIT

    raise ValueError(f"Unhandled transition type: {transition_type!r}")

def alert_enabled(geofence: Geofence, alert_type: AlertType) -> bool:
    """Whether the geofence asks for alerts of this type"""

    if alert_type is AlertType.ENTRY:
        return geofence.alert_on_entry
    elif alert_type is AlertType.EXIT:
        return geofence.alert_on_exit

    raise ValueError(f"Unhandled alert type: {alert_type!r}")

class AlertEmitter:
    """Produce alerts for transitions that match geofence configuration"""

    def __init__(self, store: Optional[AlertStore] = None):
        self.store = store or AlertStore()
        self.sinks: List[AlertSink] = []
        self.logger = get_logger(__name__)

    def emit(self, transition: Transition, geofence: Geofence) -> Optional[Alert]:
        """Append and forward an alert when the geofence enables this transition"""

        if transition.geofence_id != geofence.id:
            raise ValueError(
                f"Transition for geofence {transition.geofence_id} emitted against {geofence.id}"
            )

        alert_type = alert_type_for(transition.transition_type)
        if not alert_enabled(geofence, alert_type):
            return None

        alert = Alert(
            id=str(uuid.uuid4()),
            type=alert_type,
            asset_id=transition.asset_id,
            geofence_id=transition.geofence_id,
            distance_meters=transition.distance_meters,
            occurred_at=transition.occurred_at,
            source_event_id=transition.source_event_id
        )

        self.store.append(alert)
        self.logger.info(
            f"Alert {alert.type.value} for asset {alert.asset_id} "
            f"geofence {alert.geofence_id} ({alert.distance_meters:.1f}m)"
        )

        for sink in list(self.sinks):
            try:
                sink(alert)
            except Exception as e:
                self.logger.error(f"Alert sink error: {e}")

        return alert

    def add_sink(self, sink: AlertSink) -> None:
        """Add a callback invoked for every emitted alert"""
        self.sinks.append(sink)

    def remove_sink(self, sink: AlertSink) -> None:
        """Remove a callback"""
        if sink in self.sinks:
            self.sinks.remove(sink)

class KafkaAlertPublisher:
    """Alert sink that publishes alerts to a Kafka topic keyed by asset id"""

    def __init__(self, kafka_config: Dict[str, Any], producer: Optional[KafkaProducer] = None):
        self.kafka_config = kafka_config
        self.topic = kafka_config.get("alerts_topic", "geofence-alerts")
        self.producer = producer
        self.logger = get_logger(__name__)

    def start(self) -> None:
        """Create the Kafka producer if one was not injected"""

        if self.producer is None:
            self.producer = KafkaProducer(
                bootstrap_servers=self.kafka_config.get("bootstrap_servers", ["localhost:9092"]),
                value_serializer=lambda v: json.dumps(v, default=str).encode('utf-8'),
                key_serializer=lambda k: k.encode('utf-8') if k else None,
                acks='all',
                retries=3,
                retry_backoff_ms=1000
            )
            self.logger.info(f"Alert publisher connected, topic {self.topic}")

    def close(self) -> None:
        if self.producer:
            self.producer.flush()
            self.producer.close()
            self.producer = None

    def __call__(self, alert: Alert) -> None:
        if self.producer is None:
            raise RuntimeError("KafkaAlertPublisher.start() must be called before publishing")

        future = self.producer.send(self.topic, key=alert.asset_id, value=alert.to_dict())

        # Don't block - fire and forget
        future.add_errback(lambda e: self.logger.error(f"Failed to publish alert {alert.id}: {e}"))
