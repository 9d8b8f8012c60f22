from __future__ import annotations
import logging
import os
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import practice.kafka as kafka
from practice import config as settings
from practice.api.routers.clients import get_owned_client
from practice.api.routers.sessions import get_owned_session
from practice.db import get_db
from practice.models import Recording, User, new_id
from practice.schemas import RecordingOut
from practice.services.auth_service import get_current_user
from practice.services.recording_reconciliation import AUDIO_EXT, RECORDINGS_FOLDER, audio_url_for
from practice.services.storage import LocalBucket, StorageError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recordings"])


def get_audio_bucket() -> LocalBucket:
    return LocalBucket(settings.AUDIO_STORAGE_DIR)


@router.get("/recordings", response_model=List[RecordingOut])
async def list_recordings(
    client_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    q = select(Recording).where(Recording.user_id == current_user.id)
    if client_id:
        q = q.where(Recording.client_id == client_id)
    res = await db.execute(q.order_by(Recording.created_at.desc()))
    return res.scalars().all()


@router.post("/recordings", response_model=RecordingOut, status_code=201)
async def upload_recording(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    session_id: Optional[str] = Form(None),
    duration: int = Form(0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bucket: LocalBucket = Depends(get_audio_bucket),
):
    if client_id:
        await get_owned_client(db, client_id, current_user)
    if session_id:
        await get_owned_session(db, session_id, current_user)
    data = await file.read()
    if not data:
        raise HTTPException(400, "empty audio file")

    recording_id = new_id()
    name = f"{RECORDINGS_FOLDER}/{recording_id}.webm"
    bucket.upload(name, data)

    recording = Recording(
        id=recording_id,
        user_id=current_user.id,
        client_id=client_id,
        session_id=session_id,
        title=title or "Untitled Recording",
        audio_url=audio_url_for(name),
        duration=duration,
        recording_status="uploaded",
        transcript_status="pending",
        allocation_status="allocated" if client_id or session_id else "unallocated",
    )
    db.add(recording)
    await db.commit()
    await db.refresh(recording)
    return recording


@router.get("/audio/{filename:path}")
async def get_audio(filename: str, bucket: LocalBucket = Depends(get_audio_bucket)):
    if not AUDIO_EXT.search(filename):
        raise HTTPException(404, "audio not found")
    try:
        path = bucket.path_for(filename)
    except StorageError:
        raise HTTPException(400, "invalid filename")
    if not os.path.isfile(path):
        raise HTTPException(404, "audio not found")
    return FileResponse(path)


@router.post("/recordings/{recording_id}/retry-transcription")
async def retry_transcription(
    recording_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    recording = await db.get(Recording, recording_id)
    if recording is None:
        raise HTTPException(404, "recording not found")
    if recording.user_id != current_user.id:
        raise HTTPException(403, "Not authorized for this recording")

    if not kafka.producer:
        raise HTTPException(503, "transcription queue not available")

    recording.transcript_status = "queued"
    await db.flush()
    await kafka.publish_transcription(recording.id)
    await db.commit()
    logger.info("[recordings] queued transcription for %s", recording.id)
    return {"recording_id": recording.id, "transcript_status": "queued"}
