from __future__ import annotations
import logging
from dataclasses import replace
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from practice.db import get_db
from practice.models import AdminReminder, EmailHistory, User
from practice.schemas import AdminReminderOut, TestEmailReq
from practice.services.auth_service import get_current_user
from practice.services.email_service import EmailConfigError, send_reminder_email
from practice.services.settings_service import load_reminder_config
from practice.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reminders"])


@router.post("/reminders/test-email")
async def send_test_email(
    req: TestEmailReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not req.email:
        raise HTTPException(400, "Email address is required")

    config = await load_reminder_config(db)
    if req.template and (req.template.subject or req.template.body):
        config = replace(config, email_template=req.template.model_dump())

    appointment = utcnow() + timedelta(hours=24)
    try:
        email = await send_reminder_email(req.email, "Test Client", appointment, "Therapy Session", 60, config)
    except EmailConfigError as e:
        raise HTTPException(500, str(e))
    except Exception as e:
        logger.exception("[reminders] test email failed")
        db.add(EmailHistory(user_id=current_user.id, to_email=req.email, kind="test", status="failed", error=str(e)))
        await db.commit()
        raise HTTPException(502, f"Failed to send test email: {e}")

    db.add(EmailHistory(user_id=current_user.id, to_email=req.email, subject=email.subject, kind="test", status="sent"))
    await db.commit()
    return {"success": True, "message": f"Test email sent to {req.email}", "subject": email.subject}


@router.get("/admin-reminders", response_model=list[AdminReminderOut])
async def list_admin_reminders(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    res = await db.execute(
        select(AdminReminder)
        .where(AdminReminder.user_id == current_user.id, AdminReminder.is_active.is_(True))
        .order_by(AdminReminder.created_at.desc())
    )
    return res.scalars().all()


@router.post("/admin-reminders/{reminder_id}/dismiss")
async def dismiss_admin_reminder(
    reminder_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    res = await db.execute(
        update(AdminReminder)
        .where(AdminReminder.id == reminder_id, AdminReminder.user_id == current_user.id)
        .values(is_active=False, updated_at=utcnow())
    )
    if not res.rowcount:
        raise HTTPException(404, "reminder not found")
    await db.commit()
    return {"success": True}
