# practice/workers/transcription_worker.py
import asyncio
import json
import logging
from typing import Optional

from aiokafka import AIOKafkaConsumer  # type: ignore
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from practice import config as settings
from practice.db import SessionLocal
from practice.models import Recording
from practice.services.recording_reconciliation import (
    audio_filename_from_url, encode_transcript, parse_transcript_payload,
)
from practice.services.storage import LocalBucket
from practice.services.transcription import Transcriber, TranscriptionError, transcribe_audio

logger = logging.getLogger(__name__)


async def _mark(db, recording_id: str, **values) -> None:
    await db.execute(update(Recording).where(Recording.id == recording_id).values(**values))
    await db.commit()


async def _fail(db, recording_id: str) -> None:
    await db.rollback()
    try:
        await _mark(db, recording_id, transcript_status="failed")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("[transcription_worker] could not mark %s failed", recording_id)


async def handle_message(
    payload: dict,
    bucket: Optional[LocalBucket] = None,
    transcriber: Transcriber = transcribe_audio,
    session_factory=SessionLocal,
) -> Optional[str]:
    """Transcribes one queued recording; returns the final transcript_status."""
    recording_id = payload.get("recording_id")
    if not recording_id:
        logger.warning("[transcription_worker] payload without recording_id: %s", payload)
        return None

    bucket = bucket or LocalBucket(settings.AUDIO_STORAGE_DIR)

    async with session_factory() as db:
        recording = await db.get(Recording, recording_id)
        if recording is None:
            logger.warning("[transcription_worker] recording %s not found", recording_id)
            return None

        filename = audio_filename_from_url(recording.audio_url, recording.id)
        previous = recording.transcript

        try:
            await _mark(db, recording_id, transcript_status="processing")

            data = bucket.download(filename)
            if data is None:
                logger.error("[transcription_worker] audio %s missing for %s", filename, recording_id)
                await _mark(db, recording_id, transcript_status="failed")
                return "failed"

            text = await transcriber(data, filename)

            _, notes = parse_transcript_payload(previous)
            await _mark(
                db, recording_id,
                transcript=encode_transcript(text, notes),
                transcript_status="complete",
            )
        except TranscriptionError as e:
            logger.error("[transcription_worker] %s failed: %s", recording_id, e)
            await _fail(db, recording_id)
            return "failed"
        except Exception:
            # storage errors and anything else the transcriber raises
            logger.exception("[transcription_worker] %s failed unexpectedly", recording_id)
            await _fail(db, recording_id)
            return "failed"
        logger.info("[transcription_worker] %s transcribed (%d chars)", recording_id, len(text))
        return "complete"


async def main():
    logger.info(
        "[transcription_worker] start bootstrap=%s topic=%s group=%s",
        settings.KAFKA_BOOTSTRAP, settings.KAFKA_TOPIC_TRANSCRIPTIONS, settings.KAFKA_GROUP_TRANSCRIBERS,
    )
    consumer = AIOKafkaConsumer(
        settings.KAFKA_TOPIC_TRANSCRIPTIONS,
        bootstrap_servers=settings.KAFKA_BOOTSTRAP,
        group_id=settings.KAFKA_GROUP_TRANSCRIBERS,
        value_deserializer=lambda v: json.loads(v),
        key_deserializer=lambda v: v.decode() if v is not None else None,
        enable_auto_commit=False,
        auto_offset_reset="earliest",
    )
    await consumer.start()
    try:
        while True:
            batch = await consumer.getmany(timeout_ms=1000)
            for tp, messages in batch.items():
                for msg in messages:
                    logger.info("[transcription_worker] message offset=%s key=%s", msg.offset, msg.key)
                    await handle_message(msg.value)
                    await consumer.commit()
    finally:
        await consumer.stop()


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
