"""
Appointment reminder job.

Invoked periodically by an external scheduler (``GET /cron/send-reminders``).
Each run looks at sessions starting ``reminder_hours_before`` hours from now,
give or take one hour, and sends one reminder email per session. The
``reminderSent``/``reminderSent24h`` flags in the session metadata make repeated
runs idempotent.

Known limitations:
- a reminder whose window passes without a successful send is never retried;
- two overlapping runs can both send for the same session (there is no lock).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from practice.config import ReminderConfig
from practice.models import Client, EmailHistory, Session
from practice.services.email_service import RenderedEmail, send_reminder_email
from practice.utils import as_utc, isoformat, parse_metadata, utcnow

logger = logging.getLogger(__name__)

WINDOW_SLACK = timedelta(hours=1)

SendReminder = Callable[[str, str, datetime, Optional[str], Optional[int], ReminderConfig], Awaitable[Optional[RenderedEmail]]]


class ReminderJobError(RuntimeError):
    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.details = details


@dataclass
class ReminderRunResult:
    checked: int = 0
    sent: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "sent": self.sent,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


def reminder_window(now: datetime, hours_before: float) -> Tuple[datetime, datetime]:
    target = as_utc(now) + timedelta(hours=hours_before)
    return target - WINDOW_SLACK, target + WINDOW_SLACK


def has_reminder_been_sent(metadata: Any) -> bool:
    meta = parse_metadata(metadata)
    return meta.get("reminderSent") is True or meta.get("reminderSent24h") is True


def mark_reminder_sent(metadata: Any, now: datetime) -> Dict[str, Any]:
    meta = parse_metadata(metadata)
    meta["reminderSent"] = True
    meta["reminderSent24h"] = True
    meta["reminderSentAt"] = isoformat(now)
    return meta


async def run_send_reminders(
    db: AsyncSession,
    config: ReminderConfig,
    now: Optional[datetime] = None,
    send: SendReminder = send_reminder_email,
) -> ReminderRunResult:
    now = as_utc(now) if now else utcnow()
    window_start, window_end = reminder_window(now, config.reminder_hours_before)
    logger.info(
        "[reminders] checking appointments %sh from now (%s .. %s)",
        config.reminder_hours_before, window_start.isoformat(), window_end.isoformat(),
    )

    # plain rows, not ORM instances: a per-item rollback must not expire them
    try:
        res = await db.execute(
            select(
                Session.id, Session.user_id, Session.client_id, Session.date,
                Session.duration, Session.type, Session.meta.label("meta"),
            )
            .where(Session.date >= window_start, Session.date <= window_end)
            .order_by(Session.date.asc())
        )
        sessions = list(res.all())

        client_ids = {s.client_id for s in sessions if s.client_id}
        clients = {}
        if client_ids:
            res = await db.execute(
                select(Client.id, Client.name, Client.email).where(Client.id.in_(client_ids))
            )
            clients = {c.id: c for c in res.all()}
    except SQLAlchemyError as e:
        logger.error("[reminders] failed to fetch sessions/clients: %s", e)
        raise ReminderJobError("Failed to fetch sessions", details=str(e)) from e

    result = ReminderRunResult()
    if not sessions:
        logger.info("[reminders] no appointments in the window")
        return result

    logger.info("[reminders] found %d appointments to check", len(sessions))

    for session in sessions:
        result.checked += 1

        if has_reminder_been_sent(session.meta):
            logger.info("[reminders] already sent for session %s", session.id)
            result.skipped += 1
            continue

        client = clients.get(session.client_id) if session.client_id else None
        if client is None:
            logger.warning("[reminders] no client for session %s", session.id)
            result.skipped += 1
            continue
        if not client.email:
            logger.warning("[reminders] no email for client %s (session %s)", client.name, session.id)
            result.skipped += 1
            continue

        appointment_date = as_utc(session.date)
        try:
            email = await send(
                client.email,
                client.name or "",
                appointment_date,
                session.type,
                session.duration or 60,
                config,
            )

            await db.execute(
                update(Session)
                .where(Session.id == session.id)
                .values({Session.meta: mark_reminder_sent(session.meta, now), Session.updated_at: now})
            )
            db.add(EmailHistory(
                user_id=session.user_id,
                client_id=client.id,
                session_id=session.id,
                to_email=client.email,
                subject=email.subject if email else None,
                kind="reminder",
                status="sent",
                sent_at=now,
            ))
            await db.commit()
            result.sent += 1
            logger.info("[reminders] sent to %s for %s", client.email, appointment_date.isoformat())
        except Exception as e:
            await db.rollback()
            msg = f"Failed to send reminder for session {session.id}: {e}"
            logger.error("[reminders] %s", msg)
            result.errors.append(msg)

    logger.info(
        "[reminders] complete: %d sent, %d skipped, %d errors",
        result.sent, result.skipped, len(result.errors),
    )
    return result
