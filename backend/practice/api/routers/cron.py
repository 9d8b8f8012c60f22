from __future__ import annotations
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from practice.db import get_db
from practice.services.admin_reminders import run_admin_reminders
from practice.services.auth_service import verify_cron_secret
from practice.services.reminders import ReminderJobError, run_send_reminders
from practice.services.settings_service import load_reminder_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.get("/send-reminders")
async def send_reminders(db: AsyncSession = Depends(get_db)):
    try:
        config = await load_reminder_config(db)
        result = await run_send_reminders(db, config)
    except ReminderJobError as e:
        return JSONResponse(status_code=500, content={"error": str(e), "details": e.details})
    except Exception as e:
        logger.exception("[reminders] run failed")
        return JSONResponse(status_code=500, content={"error": str(e) or "Internal server error"})

    return {
        "success": True,
        "message": f"Processed {result.checked} appointments",
        **result.as_dict(),
    }


@router.get("/admin-reminders")
async def admin_reminders(db: AsyncSession = Depends(get_db)):
    try:
        results = await run_admin_reminders(db)
    except Exception as e:
        logger.exception("[admin_reminders] run failed")
        return JSONResponse(status_code=500, content={"error": str(e) or "Internal server error"})
    return {"success": True, **results}
