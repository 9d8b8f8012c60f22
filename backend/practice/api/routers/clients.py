from __future__ import annotations
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from practice.db import get_db
from practice.models import Client, User
from practice.schemas import ArchiveReq, ClientCreate, ClientOut, ClientUpdate
from practice.services.auth_service import get_current_user
from practice.services.dedup import DedupError, cleanup_duplicate_clients
from practice.services.relationships import apply_relationship_fixes
from practice.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clients", tags=["clients"])


async def get_owned_client(db: AsyncSession, client_id: str, user: User) -> Client:
    client = await db.get(Client, client_id)
    if client is None:
        raise HTTPException(404, "client not found")
    if client.user_id != user.id:
        raise HTTPException(403, "Not authorized for this client")
    return client


@router.get("", response_model=List[ClientOut])
async def list_clients(
    archived: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    res = await db.execute(
        select(Client)
        .where(Client.user_id == current_user.id, Client.archived.is_(archived))
        .order_by(Client.name.asc())
    )
    return res.scalars().all()


@router.post("", response_model=ClientOut, status_code=201)
async def create_client(
    payload: ClientCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    client = Client(
        user_id=current_user.id,
        name=payload.name.strip(),
        email=payload.email,
        phone=payload.phone,
        notes=payload.notes,
        meta=payload.metadata or {},
        relationships=[r.model_dump() for r in payload.relationships or []],
        new_client_form_signed=payload.new_client_form_signed,
    )
    db.add(client)
    await db.commit()
    await db.refresh(client)
    return client


@router.put("/{client_id}", response_model=ClientOut)
async def update_client(
    client_id: str,
    payload: ClientUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    client = await get_owned_client(db, client_id, current_user)
    data = payload.model_dump(exclude_unset=True)
    if "metadata" in data:
        client.meta = data.pop("metadata")
    if "relationships" in data:
        client.relationships = [dict(r) for r in data.pop("relationships") or []]
    for key, value in data.items():
        setattr(client, key, value)
    client.updated_at = utcnow()
    await db.commit()
    await db.refresh(client)
    return client


@router.post("/archive", response_model=ClientOut)
async def archive_client(
    req: ArchiveReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    client = await get_owned_client(db, req.id, current_user)
    client.archived = not req.restore
    client.archived_at = None if req.restore else utcnow()
    client.updated_at = utcnow()
    await db.commit()
    await db.refresh(client)
    return client


@router.post("/cleanup-duplicates")
async def cleanup_duplicates(
    dry_run: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await cleanup_duplicate_clients(db, user_id=current_user.id, dry_run=dry_run)
    except DedupError as e:
        return JSONResponse(status_code=500, content={
            "error": str(e),
            "sessionsReassigned": e.sessions_reassigned,
            "notesReassigned": e.notes_reassigned,
            "recordingsReassigned": e.recordings_reassigned,
        })
    except Exception as e:
        logger.exception("[dedup] cleanup failed")
        return JSONResponse(status_code=500, content={"error": str(e) or "Failed to cleanup duplicates"})


@router.post("/fix-relationships")
async def fix_relationships(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        processed, changed = await apply_relationship_fixes(db, current_user.id)
    except Exception as e:
        logger.exception("[relationships] fix failed")
        return JSONResponse(status_code=500, content={"error": str(e) or "Failed to fix relationships"})
    return {
        "success": True,
        "message": f"Fixed relationships for {processed} clients",
        "fixed": processed,
        "changed": changed,
    }
