from __future__ import annotations
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from practice.api.routers.clients import get_owned_client
from practice.db import get_db
from practice.models import Session, User
from practice.schemas import SessionCreate, SessionOut, SessionUpdate
from practice.services.auth_service import get_current_user
from practice.utils import as_utc, parse_metadata, utcnow

router = APIRouter(prefix="/sessions", tags=["sessions"])


async def get_owned_session(db: AsyncSession, session_id: str, user: User) -> Session:
    session = await db.get(Session, session_id)
    if session is None:
        raise HTTPException(404, "session not found")
    if session.user_id != user.id:
        raise HTTPException(403, "Not authorized for this session")
    return session


@router.get("", response_model=List[SessionOut])
async def list_sessions(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    q = select(Session).where(Session.user_id == current_user.id)
    if start:
        q = q.where(Session.date >= as_utc(start))
    if end:
        q = q.where(Session.date <= as_utc(end))
    res = await db.execute(q.order_by(Session.date.asc()))
    return res.scalars().all()


@router.post("", response_model=SessionOut, status_code=201)
async def create_session(
    payload: SessionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if payload.client_id:
        await get_owned_client(db, payload.client_id, current_user)
    session = Session(
        user_id=current_user.id,
        client_id=payload.client_id,
        date=as_utc(payload.date),
        duration=payload.duration,
        type=payload.type,
        notes=payload.notes,
        meta=payload.metadata or {},
    )
    db.add(session)
    await db.commit()
    await db.refresh(session)
    return session


@router.put("/{session_id}", response_model=SessionOut)
async def update_session(
    session_id: str,
    payload: SessionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    session = await get_owned_session(db, session_id, current_user)
    data = payload.model_dump(exclude_unset=True)
    if data.get("client_id"):
        await get_owned_client(db, data["client_id"], current_user)
    if "metadata" in data:
        # merged so reminder flags set by the cron job survive edits
        session.meta = {**parse_metadata(session.meta), **(data.pop("metadata") or {})}
    if data.get("date"):
        data["date"] = as_utc(data["date"])
    for key, value in data.items():
        setattr(session, key, value)
    session.updated_at = utcnow()
    await db.commit()
    await db.refresh(session)
    return session


@router.delete("/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    session = await get_owned_session(db, session_id, current_user)
    await db.delete(session)
    await db.commit()
