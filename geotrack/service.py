"""
Service - Run the tracking engine against Kafka

Reads GEOTRACK_* settings (and a .env file), connects the alert publisher
and the detection stream, and runs until interrupted.
"""

import asyncio
import signal
from typing import Optional

from geotrack.config import TrackingConfig
from geotrack.engine import GeofenceTrackingEngine
from geotrack.modules.geofence_manager.alert_emitter import KafkaAlertPublisher
from geotrack.modules.rfid_manager.directory import HttpDirectory
from geotrack.modules.rfid_manager.kafka_detection_stream import KafkaDetectionStream
from geotrack.utils.logger import configure_logging, get_logger

async def run(config: TrackingConfig, stop: Optional[asyncio.Event] = None) -> None:
    """Run ingestion until stop is set"""

    logger = get_logger(__name__)

    if not config.directory_base_url:
        raise ValueError("GEOTRACK_DIRECTORY_BASE_URL is required to run the service")

    engine = GeofenceTrackingEngine.from_config(config)

    publisher = KafkaAlertPublisher(config.kafka_config)
    publisher.start()
    engine.emitter.add_sink(publisher)

    stream = KafkaDetectionStream(engine.pipeline, config.kafka_config)
    stop = stop or asyncio.Event()

    try:
        await stream.start_streaming()
        logger.info("Geofence tracking service running")
        await stop.wait()
    finally:
        await stream.stop_streaming()
        publisher.close()
        if isinstance(engine.directory, HttpDirectory):
            await engine.directory.close()
        logger.info("Geofence tracking service stopped")

def main() -> None:
    config = TrackingConfig.from_env()
    configure_logging(config.log_level)

    async def _main() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                pass
        await run(config, stop)

    asyncio.run(_main())

if __name__ == "__main__":
    main()
