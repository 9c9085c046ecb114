"""
Kafka Detection Stream - Feed reader detections from Kafka into the pipeline

This module provides:
- Kafka-based detection ingestion
- Concurrent processing of each polled batch
- Publication of failed detections for inspection
"""

import asyncio
import json
from typing import Dict, List, Any, Optional

from kafka import KafkaProducer, KafkaConsumer

from geotrack.exceptions import ErrorInfo, InvalidDetection
from geotrack.models.tracking import utc_now
from geotrack.modules.rfid_manager.ingestion_pipeline import (
    EventIngestionPipeline, IngestResult, IngestStatus
)
from geotrack.utils.logger import get_logger

class KafkaDetectionStream:
    """Kafka consumer loop around the ingestion pipeline"""

    def __init__(self, pipeline: EventIngestionPipeline, kafka_config: Dict[str, Any],
                 consumer: Optional[KafkaConsumer] = None,
                 producer: Optional[KafkaProducer] = None):
        self.pipeline = pipeline
        self.kafka_config = kafka_config
        self.logger = get_logger(__name__)

        # Kafka components
        self.consumer = consumer
        self.producer = producer

        # Topics
        self.detections_topic = kafka_config.get("detections_topic", "rfid-detections")
        self.failures_topic = kafka_config.get("failures_topic", "rfid-ingest-failures")

        self.running = False
        self.stream_task: Optional[asyncio.Task] = None
        self.stats = {"received": 0, "processed": 0, "unassigned": 0, "failed": 0}

    async def start_streaming(self) -> None:
        """Connect to Kafka and start the processing loop as a task"""

        try:
            if self.producer is None:
                self.producer = KafkaProducer(
                    bootstrap_servers=self.kafka_config.get("bootstrap_servers", ["localhost:9092"]),
                    value_serializer=lambda v: json.dumps(v, default=str).encode('utf-8'),
                    key_serializer=lambda k: k.encode('utf-8') if k else None,
                    acks='all',
                    retries=3
                )

            if self.consumer is None:
                self.consumer = KafkaConsumer(
                    self.detections_topic,
                    bootstrap_servers=self.kafka_config.get("bootstrap_servers", ["localhost:9092"]),
                    value_deserializer=lambda m: json.loads(m.decode('utf-8')),
                    key_deserializer=lambda k: k.decode('utf-8') if k else None,
                    group_id=self.kafka_config.get("group_id", "geofence-tracking-engine"),
                    auto_offset_reset='latest',
                    enable_auto_commit=True,
                    max_poll_records=500
                )

            self.running = True
            self.stream_task = asyncio.create_task(self._processing_loop())

            self.logger.info(f"Started detection streaming from {self.detections_topic}")

        except Exception as e:
            self.logger.error(f"Failed to start detection streaming: {e}")
            raise

    async def stop_streaming(self) -> None:
        """Stop the loop and close Kafka clients"""

        self.running = False

        if self.stream_task:
            self.stream_task.cancel()
            try:
                await self.stream_task
            except asyncio.CancelledError:
                pass
            self.stream_task = None

        if self.producer:
            self.producer.flush()
            self.producer.close()

        if self.consumer:
            self.consumer.close()

        self.logger.info("Stopped detection streaming")

    async def _processing_loop(self) -> None:
        """Main detection processing loop"""

        loop = asyncio.get_running_loop()

        while self.running:
            try:
                # poll() blocks, keep it off the event loop
                message_batch = await loop.run_in_executor(
                    None, lambda: self.consumer.poll(timeout_ms=1000)
                )

                messages = [m for batch in message_batch.values() for m in batch]
                if messages:
                    await self.process_batch(messages)

            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in detection processing loop: {e}")
                await asyncio.sleep(1)  # Back off on error

    async def process_batch(self, messages: List[Any]) -> List[Optional[IngestResult]]:
        """Ingest a batch concurrently; the tracker serializes events per asset"""

        return list(await asyncio.gather(*(self._process_message(m) for m in messages)))

    async def _process_message(self, message) -> Optional[IngestResult]:
        """Ingest one Kafka message"""

        self.stats["received"] += 1
        payload = message.value

        # Readers key their messages by reader id
        if isinstance(payload, dict) and message.key and "readerIdentifier" not in payload:
            payload = {**payload, "readerIdentifier": message.key}

        try:
            result = await self.pipeline.ingest(payload)
        except InvalidDetection as e:
            self.stats["failed"] += 1
            self.logger.warning(f"Rejected detection message: {e.message}")
            self._publish_failure(message.key, payload, ErrorInfo.from_exception(e), event_id=None)
            return None

        if result.status is IngestStatus.PROCESSED:
            self.stats["processed"] += 1
        elif result.status is IngestStatus.TAG_UNASSIGNED:
            self.stats["unassigned"] += 1
        else:
            self.stats["failed"] += 1
            self._publish_failure(message.key, payload, result.error, event_id=result.event_id)

        return result

    def _publish_failure(self, key: Optional[str], payload: Any,
                         error: Optional[ErrorInfo], event_id: Optional[str]) -> None:
        """Send a failed detection to the failures topic"""

        if self.producer is None:
            return

        failure = {
            "event_id": event_id,
            "payload": payload,
            "error": error.to_dict() if error else None,
            "timestamp": utc_now().isoformat()
        }

        future = self.producer.send(self.failures_topic, key=key, value=failure)
        future.add_errback(lambda e: self.logger.error(f"Failed to publish ingest failure: {e}"))
