from __future__ import annotations
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from practice.db import get_db
from practice.models import EmailHistory, User
from practice.schemas import EmailHistoryOut
from practice.services.auth_service import get_current_user
from practice.services.settings_service import get_practice_settings, save_practice_settings

router = APIRouter(tags=["settings"])


@router.get("/settings")
async def read_settings(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await get_practice_settings(db)


@router.put("/settings")
async def write_settings(
    config: Dict[str, Any],
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await save_practice_settings(db, config)


@router.get("/emails/history", response_model=List[EmailHistoryOut])
async def email_history(
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    res = await db.execute(
        select(EmailHistory)
        .where(EmailHistory.user_id == current_user.id)
        .order_by(EmailHistory.sent_at.desc())
        .limit(min(limit, 500))
    )
    return res.scalars().all()
