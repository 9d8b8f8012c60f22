from __future__ import annotations
import logging
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from practice.config import DEFAULT_PRACTICE_SETTINGS, SETTINGS_ROW_ID, ReminderConfig
from practice.models import Setting

logger = logging.getLogger(__name__)


async def get_stored_settings(db: AsyncSession) -> Dict[str, Any]:
    res = await db.execute(select(Setting.config).where(Setting.id == SETTINGS_ROW_ID))
    return res.scalar_one_or_none() or {}


async def get_practice_settings(db: AsyncSession) -> Dict[str, Any]:
    merged = dict(DEFAULT_PRACTICE_SETTINGS)
    merged.update(await get_stored_settings(db))
    return merged


async def save_practice_settings(db: AsyncSession, config: Dict[str, Any]) -> Dict[str, Any]:
    row = await db.get(Setting, SETTINGS_ROW_ID)
    if row is None:
        db.add(Setting(id=SETTINGS_ROW_ID, config=dict(config)))
    else:
        row.config = dict(config)
    await db.commit()
    return await get_practice_settings(db)


async def load_reminder_config(db: AsyncSession) -> ReminderConfig:
    """Falls back to defaults when the settings row cannot be read."""
    try:
        stored = await get_stored_settings(db)
    except SQLAlchemyError as e:
        logger.warning("[settings] could not load settings, using defaults: %s", e)
        await db.rollback()
        return ReminderConfig()
    return ReminderConfig.from_settings(stored)
