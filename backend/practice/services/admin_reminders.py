"""
Daily practitioner to-do reminders.

Two kinds are derived from the data on every run:

- ``new_client_form``: active clients whose intake form is not signed yet;
- ``unpaid_session``: past sessions whose ``paymentStatus`` is not ``paid``.

Reminder ids are deterministic (``new_form_<user>_<client>``,
``unpaid_<user>_<session>``) so reruns update the same rows. A run refreshes
``last_sent_at`` and re-activates reminders that still apply, including ones
dismissed since the last run.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from practice.models import AdminReminder, Client, Session, User
from practice.utils import as_utc, parse_metadata, utcnow

logger = logging.getLogger(__name__)


def new_form_reminder_id(user_id: int, client_id: str) -> str:
    return f"new_form_{user_id}_{client_id}"


def unpaid_reminder_id(user_id: int, session_id: str) -> str:
    return f"unpaid_{user_id}_{session_id}"


def is_paid(metadata: Any) -> bool:
    return (parse_metadata(metadata).get("paymentStatus") or "unpaid") == "paid"


async def _upsert(db: AsyncSession, reminder_id: str, now: datetime, **fields) -> None:
    existing = await db.get(AdminReminder, reminder_id, populate_existing=True)
    if existing is None:
        db.add(AdminReminder(id=reminder_id, is_active=True, last_sent_at=now, **fields))
    else:
        existing.last_sent_at = now
        existing.is_active = True
        existing.updated_at = now


async def _process_user(db: AsyncSession, user_id: int, now: datetime) -> Dict[str, int]:
    counts = {"forms": 0, "unpaid": 0}

    res = await db.execute(
        select(Client.id, Client.name).where(
            Client.user_id == user_id,
            Client.new_client_form_signed.is_(False),
            Client.archived.is_(False),
        )
    )
    for client in res.all():
        await _upsert(
            db, new_form_reminder_id(user_id, client.id), now,
            user_id=user_id,
            type="new_client_form",
            client_id=client.id,
            title=f"New Client Form Required: {client.name}",
            description=f"Please ensure the new client form is ready and signed for {client.name}",
        )
        counts["forms"] += 1

    res = await db.execute(
        select(Session.id, Session.client_id, Session.date, Session.meta.label("meta"))
        .where(Session.user_id == user_id, Session.date < now)
    )
    sessions = res.all()

    client_ids = {s.client_id for s in sessions if s.client_id}
    names: Dict[str, Optional[str]] = {}
    if client_ids:
        res = await db.execute(
            select(Client.id, Client.name).where(Client.id.in_(client_ids), Client.user_id == user_id)
        )
        names = {c.id: c.name for c in res.all()}

    for session in sessions:
        reminder_id = unpaid_reminder_id(user_id, session.id)
        if is_paid(session.meta):
            await db.execute(
                update(AdminReminder).where(AdminReminder.id == reminder_id).values(is_active=False)
            )
            continue

        client_name = names.get(session.client_id) or "Unknown Client"
        session_date = as_utc(session.date).strftime("%d %b %Y")
        await _upsert(
            db, reminder_id, now,
            user_id=user_id,
            type="unpaid_session",
            client_id=session.client_id,
            session_id=session.id,
            title=f"Unpaid Session: {client_name} - {session_date}",
            description=f"Session on {session_date} for {client_name} has not been marked as paid",
        )
        counts["unpaid"] += 1

    await db.commit()
    return counts


async def run_admin_reminders(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now) if now else utcnow()
    res = await db.execute(select(User.id).order_by(User.id))
    user_ids = list(res.scalars().all())

    results: Dict[str, Any] = {
        "usersProcessed": 0,
        "newClientFormReminders": 0,
        "unpaidSessionReminders": 0,
        "errors": [],
    }
    for user_id in user_ids:
        results["usersProcessed"] += 1
        try:
            counts = await _process_user(db, user_id, now)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("[admin_reminders] user %s failed: %s", user_id, e)
            results["errors"].append(f"Failed to process reminders for user {user_id}")
            continue
        results["newClientFormReminders"] += counts["forms"]
        results["unpaidSessionReminders"] += counts["unpaid"]

    logger.info(
        "[admin_reminders] users=%d forms=%d unpaid=%d errors=%d",
        results["usersProcessed"], results["newClientFormReminders"],
        results["unpaidSessionReminders"], len(results["errors"]),
    )
    return results
