"""
Calendly webhook handling: bookings become sessions, cancellations mark them.

Calendly has sent several payload shapes over time (nested under ``payload``,
flat invitee fields, or bare resource URIs). The extraction helpers accept all
of them; URIs are resolved with a plain GET.
"""
from __future__ import annotations
import base64
import hashlib
import hmac
import logging
import secrets
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import httpx
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from practice import config as settings
from practice.models import Client, Session
from practice.utils import as_utc, parse_metadata, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TYPE = "Therapy Session"
SIGNATURE_HEADERS = ("calendly-webhook-signature", "x-calendly-webhook-signature")


class CalendlyPayloadError(ValueError):
    pass


def compute_signature(raw_body: bytes, signing_key: str) -> str:
    digest = hmac.new(signing_key.encode(), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_signature(raw_body: bytes, signature: str, signing_key: str) -> bool:
    return hmac.compare_digest(signature.encode(), compute_signature(raw_body, signing_key).encode())


def _is_uri(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("http")


def extract_email(invitee: Any) -> Optional[str]:
    if not isinstance(invitee, dict):
        return None
    if invitee.get("email"):
        return invitee["email"]
    if invitee.get("email_address"):
        return invitee["email_address"]
    for qa in invitee.get("questions_and_answers") or []:
        if "email" in str(qa.get("question") or "").lower():
            return qa.get("answer")
    return None


def extract_name(invitee: Any) -> str:
    if not isinstance(invitee, dict):
        return "Calendly Booking"
    if invitee.get("name"):
        return invitee["name"]
    parts = [invitee.get("first_name"), invitee.get("last_name")]
    if any(parts):
        return " ".join(p for p in parts if p)
    return "Calendly Booking"


def event_name(payload: Dict[str, Any]) -> str:
    inner = payload.get("payload") if isinstance(payload.get("payload"), dict) else {}
    event = payload.get("event") if isinstance(payload.get("event"), str) else None
    return event or payload.get("event_type") or inner.get("event_type") or "invitee.created"


def extract_invitee_and_event(payload: Dict[str, Any]) -> Tuple[Any, Any]:
    inner = payload.get("payload") if isinstance(payload.get("payload"), dict) else None
    event_obj = payload.get("event") if isinstance(payload.get("event"), dict) else None

    invitee = (inner or {}).get("invitee") or payload.get("invitee") or (event_obj or {}).get("invitee")
    event_data = (inner or {}).get("scheduled_event") or payload.get("scheduled_event") or event_obj

    # newer webhooks send the invitee fields flat in payload.payload
    if not invitee and inner and (inner.get("email") or inner.get("uri") or inner.get("name")):
        invitee = dict(inner)
        if not invitee.get("name"):
            invitee["name"] = f"{inner.get('first_name') or ''} {inner.get('last_name') or ''}".strip()
    if event_data is None and isinstance(invitee, dict):
        event_data = invitee.get("scheduled_event")
    return invitee, event_data


async def fetch_resource(http: httpx.AsyncClient, uri: str) -> Optional[Dict[str, Any]]:
    try:
        resp = await http.get(uri, headers={"Accept": "application/json"})
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("[calendly] failed to fetch %s: %s", uri, e)
        return None
    return data.get("resource", data) if isinstance(data, dict) else None


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError as e:
        raise CalendlyPayloadError(f"Invalid start time: {value}") from e


def event_times(invitee: Any, event_data: Any) -> Tuple[Optional[datetime], Optional[datetime]]:
    sources = [s for s in (invitee, event_data) if isinstance(s, dict)]
    if isinstance(invitee, dict) and isinstance(invitee.get("scheduled_event"), dict):
        sources.append(invitee["scheduled_event"])
    start = end = None
    for src in sources:
        start = start or src.get("start_time") or src.get("startTime")
        end = end or src.get("end_time") or src.get("endTime")
    return _parse_time(start), _parse_time(end)


async def resolve_session_type(http: httpx.AsyncClient, event_data: Dict[str, Any]) -> str:
    event_type = event_data.get("event_type") or event_data.get("eventType")
    if _is_uri(event_type):
        resource = await fetch_resource(http, event_type)
        if resource:
            return resource.get("name") or resource.get("slug") or DEFAULT_SESSION_TYPE
        return DEFAULT_SESSION_TYPE
    if isinstance(event_type, dict) and event_type.get("name"):
        return event_type["name"]
    if isinstance(event_type, str) and event_type:
        return event_type
    return event_data.get("name") or DEFAULT_SESSION_TYPE


def _email_filter(email: str):
    return or_(
        func.lower(Client.email) == email.lower(),
        Client.meta["email"].as_string() == email,
    )


async def find_or_create_client(db: AsyncSession, email: str, name: str) -> Client:
    res = await db.execute(select(Client).where(_email_filter(email)).limit(1))
    client = res.scalars().first()
    if client is not None:
        return client

    client = Client(
        id=f"{int(time.time() * 1000)}-{secrets.token_hex(5)}",
        user_id=settings.CALENDLY_USER_ID,
        name=name or email.split("@")[0],
        email=email,
        notes="Created from Calendly booking",
    )
    db.add(client)
    await db.flush()
    logger.info("[calendly] created client %s for %s", client.id, email)
    return client


def _booking_notes(invitee: Dict[str, Any]) -> str:
    qas = invitee.get("questions_and_answers") or []
    if not qas:
        return "Booked via Calendly"
    lines = "\n".join(f"{qa.get('question')}: {qa.get('answer')}" for qa in qas)
    return f"Booked via Calendly\n\n{lines}"


async def handle_invitee_created(db: AsyncSession, payload: Dict[str, Any], http: httpx.AsyncClient) -> Dict[str, Any]:
    invitee, event_data = extract_invitee_and_event(payload)
    if _is_uri(invitee):
        invitee = await fetch_resource(http, invitee)
    if _is_uri(event_data):
        event_data = await fetch_resource(http, event_data) or {}
    event_data = event_data if isinstance(event_data, dict) else {}

    if not invitee:
        raise CalendlyPayloadError("No invitee data")
    email = extract_email(invitee)
    if not email:
        raise CalendlyPayloadError("No email found")

    start, end = event_times(invitee, event_data)
    if start is None and _is_uri(invitee.get("scheduled_event")):
        event_data = await fetch_resource(http, invitee["scheduled_event"]) or event_data
        start, end = event_times(invitee, event_data)
    if start is None:
        raise CalendlyPayloadError("No start time in Calendly event")
    end = end or start + timedelta(hours=1)

    client = await find_or_create_client(db, email, extract_name(invitee))

    res = await db.execute(
        select(Session.id).where(Session.client_id == client.id, Session.date == start).limit(1)
    )
    existing = res.scalar_one_or_none()
    if existing is not None:
        await db.commit()
        return {"success": True, "clientId": client.id, "clientName": client.name,
                "sessionId": existing, "message": f"Session already exists for {client.name}"}

    session = Session(
        id=f"cal-{int(time.time() * 1000)}-{secrets.token_hex(5)}",
        user_id=client.user_id,
        client_id=client.id,
        date=start,
        duration=round((end - start).total_seconds() / 60) or 60,
        type=await resolve_session_type(http, event_data),
        notes=_booking_notes(invitee),
        meta={
            "source": "calendly",
            "calendlyEventUri": event_data.get("uri") or event_data.get("event_uri"),
            "calendlyInviteeUri": invitee.get("uri") or invitee.get("invitee_uri"),
            "status": "confirmed",
            "paymentStatus": "unpaid",
        },
    )
    db.add(session)
    await db.commit()
    logger.info("[calendly] booked session %s for %s at %s", session.id, client.name, start.isoformat())
    return {"success": True, "clientId": client.id, "clientName": client.name,
            "sessionId": session.id, "message": f"Session created for {client.name}"}


async def handle_invitee_canceled(db: AsyncSession, payload: Dict[str, Any]) -> Dict[str, Any]:
    invitee, event_data = extract_invitee_and_event(payload)
    email = extract_email(invitee)
    start, _ = event_times(invitee, event_data)

    canceled = None
    if email and start:
        res = await db.execute(select(Client.id).where(_email_filter(email)).limit(1))
        client_id = res.scalar_one_or_none()
        if client_id:
            res = await db.execute(
                select(Session.id, Session.meta.label("meta"))
                .where(Session.client_id == client_id, Session.date == start)
                .limit(1)
            )
            row = res.first()
            if row is not None:
                meta = parse_metadata(row.meta)
                meta["status"] = "canceled"
                await db.execute(
                    update(Session).where(Session.id == row.id)
                    .values({Session.meta: meta, Session.updated_at: utcnow()})
                )
                await db.commit()
                canceled = row.id
                logger.info("[calendly] canceled session %s", row.id)
    return {"success": True, "sessionId": canceled, "message": "Cancellation processed"}


async def process_webhook(
    db: AsyncSession,
    payload: Dict[str, Any],
    http: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    name = event_name(payload)
    if "created" in name:
        if http is None:
            async with httpx.AsyncClient(timeout=10) as client:
                result = await handle_invitee_created(db, payload, client)
        else:
            result = await handle_invitee_created(db, payload, http)
    elif "canceled" in name:
        result = await handle_invitee_canceled(db, payload)
    else:
        result = {"success": True, "message": "Event received but not processed"}
    result["event"] = name
    return result
