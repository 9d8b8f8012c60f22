# practice/kafka.py
import json
import logging
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from practice import config as settings

logger = logging.getLogger(__name__)

producer: AIOKafkaProducer | None = None


async def start_kafka():
    """Starts the shared producer; the API still serves requests when the broker is down."""
    global producer
    if not settings.KAFKA_ENABLED:
        logger.info("[kafka] disabled")
        return
    p = AIOKafkaProducer(
        bootstrap_servers=settings.KAFKA_BOOTSTRAP,
        value_serializer=lambda v: json.dumps(v).encode(),
        key_serializer=lambda v: str(v).encode(),
        linger_ms=5,
        acks="all",
        enable_idempotence=True,
    )
    try:
        await p.start()
    except KafkaError as e:
        logger.warning("[kafka] producer unavailable (%s): transcription queue disabled", e)
        await p.stop()
        return
    producer = p


async def stop_kafka():
    global producer
    if producer:
        await producer.stop()
        producer = None


async def publish_transcription(recording_id: str) -> None:
    await producer.send_and_wait(
        settings.KAFKA_TOPIC_TRANSCRIPTIONS,
        key=recording_id,
        value={"recording_id": recording_id},
    )
