"""
RFID Manager Module Package - Detection ingestion and identity resolution

This package provides:
- Read-only directory access to tags, readers, assets, offices and geofences
- The raw detection event log
- Identity resolution of detections
- The event ingestion pipeline and its Kafka stream
- The office-assignment violation scan
"""

from geotrack.modules.rfid_manager.directory import Directory, HttpDirectory, InMemoryDirectory
from geotrack.modules.rfid_manager.event_store import EventStore, RawDetection
from geotrack.modules.rfid_manager.identity_resolver import IdentityResolver, ResolvedContext
from geotrack.modules.rfid_manager.ingestion_pipeline import (
    EventIngestionPipeline, IngestResult, IngestStatus, parse_detection
)
from geotrack.modules.rfid_manager.kafka_detection_stream import KafkaDetectionStream
from geotrack.modules.rfid_manager.violation_scanner import (
    ScanFailure, ViolationScanReport, ViolationScanner
)

__all__ = [
    "Directory",
    "HttpDirectory",
    "InMemoryDirectory",
    "EventStore",
    "RawDetection",
    "IdentityResolver",
    "ResolvedContext",
    "EventIngestionPipeline",
    "IngestResult",
    "IngestStatus",
    "parse_detection",
    "KafkaDetectionStream",
    "ScanFailure",
    "ViolationScanReport",
    "ViolationScanner"
]
