from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from practice.api.routers.clients import get_owned_client
from practice.api.routers.sessions import get_owned_session
from practice.db import get_db
from practice.models import SessionNote, User
from practice.schemas import SessionNoteCreate, SessionNoteOut
from practice.services.auth_service import get_current_user

router = APIRouter(prefix="/session-notes", tags=["session-notes"])


@router.get("", response_model=List[SessionNoteOut])
async def list_session_notes(
    client_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    q = select(SessionNote).where(SessionNote.user_id == current_user.id)
    if client_id:
        q = q.where(SessionNote.client_id == client_id)
    res = await db.execute(q.order_by(SessionNote.created_at.desc()))
    return res.scalars().all()


@router.post("", response_model=SessionNoteOut, status_code=201)
async def create_session_note(
    payload: SessionNoteCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if payload.client_id:
        await get_owned_client(db, payload.client_id, current_user)
    if payload.session_id:
        await get_owned_session(db, payload.session_id, current_user)
    note = SessionNote(user_id=current_user.id, **payload.model_dump())
    db.add(note)
    await db.commit()
    await db.refresh(note)
    return note
