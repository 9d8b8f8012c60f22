import json
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import func, select

from practice import config as settings
from practice.models import Client, Session
from practice.services.calendly_service import (
    CalendlyPayloadError, compute_signature, extract_invitee_and_event, process_webhook, verify_signature,
)

START = "2025-03-12T14:00:00.000000Z"
END = "2025-03-12T14:50:00.000000Z"
EVENT_URI = "https://api.calendly.com/scheduled_events/EV1"
INVITEE_URI = f"{EVENT_URI}/invitees/INV1"
EVENT_TYPE_URI = "https://api.calendly.com/event_types/ET1"


def booking(email="claire@example.com", name="Claire Schillaci"):
    return {
        "event": "invitee.created",
        "payload": {
            "invitee": {
                "email": email,
                "name": name,
                "uri": INVITEE_URI,
                "questions_and_answers": [{"question": "What would you like to work on?", "answer": "Sleep"}],
            },
            "scheduled_event": {
                "uri": EVENT_URI,
                "start_time": START,
                "end_time": END,
                "event_type": "Initial Consultation",
            },
        },
    }


@pytest.fixture
async def calendly_api():
    resources = {
        INVITEE_URI: {"email": "sam@example.com", "first_name": "Sam", "last_name": "Byrne", "uri": INVITEE_URI},
        EVENT_URI: {"uri": EVENT_URI, "start_time": START, "end_time": END, "event_type": EVENT_TYPE_URI},
        EVENT_TYPE_URI: {"name": "Discovery Session", "slug": "discovery"},
    }
    requested = []

    def handler(request):
        url = str(request.url)
        requested.append(url)
        if url not in resources:
            return httpx.Response(404, json={"message": "not found"})
        return httpx.Response(200, json={"resource": resources[url]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        http.requested = requested
        yield http


async def session_rows(db):
    res = await db.execute(
        select(Session.id, Session.client_id, Session.user_id, Session.date, Session.duration, Session.type,
               Session.notes, Session.meta.label("meta"))
    )
    return res.all()


def test_signature_round_trip():
    body = b'{"event": "invitee.created"}'
    signature = compute_signature(body, "whsec")
    assert verify_signature(body, signature, "whsec")
    assert not verify_signature(body, signature, "other-key")
    assert not verify_signature(body + b" ", signature, "whsec")


def test_flat_invitee_fields_are_recognised():
    invitee, event = extract_invitee_and_event({
        "event": "invitee.canceled",
        "payload": {"email": "a@example.com", "first_name": "Ann", "last_name": "Lee",
                    "scheduled_event": {"start_time": START}},
    })
    assert invitee["email"] == "a@example.com"
    assert invitee["name"] == "Ann Lee"
    assert event == {"start_time": START}


async def test_booking_creates_client_and_session(db, user, calendly_api, monkeypatch):
    monkeypatch.setattr(settings, "CALENDLY_USER_ID", user.id)

    result = await process_webhook(db, booking(), http=calendly_api)

    assert result["success"] is True
    assert result["event"] == "invitee.created"
    assert result["clientName"] == "Claire Schillaci"
    assert result["sessionId"].startswith("cal-")

    res = await db.execute(select(Client.id, Client.user_id, Client.email, Client.notes))
    client = res.one()
    assert client.user_id == user.id
    assert client.notes == "Created from Calendly booking"

    [session] = await session_rows(db)
    assert session.client_id == client.id
    assert session.user_id == user.id
    assert session.date.replace(tzinfo=timezone.utc) == datetime(2025, 3, 12, 14, 0, tzinfo=timezone.utc)
    assert session.duration == 50
    assert session.type == "Initial Consultation"
    assert "What would you like to work on?: Sleep" in session.notes
    assert session.meta == {
        "source": "calendly",
        "calendlyEventUri": EVENT_URI,
        "calendlyInviteeUri": INVITEE_URI,
        "status": "confirmed",
        "paymentStatus": "unpaid",
    }


async def test_repeat_booking_does_not_duplicate(db, calendly_api):
    first = await process_webhook(db, booking(), http=calendly_api)
    second = await process_webhook(db, booking(email="Claire@Example.com"), http=calendly_api)

    assert second["sessionId"] == first["sessionId"]
    assert second["message"] == "Session already exists for Claire Schillaci"
    assert (await db.execute(select(func.count()).select_from(Session))).scalar_one() == 1
    assert (await db.execute(select(func.count()).select_from(Client))).scalar_one() == 1


async def test_existing_client_is_reused(db, calendly_api):
    db.add(Client(id="known", name="Claire S", email="claire@example.com"))
    await db.commit()

    result = await process_webhook(db, booking(), http=calendly_api)

    assert result["clientId"] == "known"
    assert result["clientName"] == "Claire S"


async def test_cancellation_marks_session(db, calendly_api):
    created = await process_webhook(db, booking(), http=calendly_api)

    result = await process_webhook(db, {
        "event": "invitee.canceled",
        "payload": {"email": "claire@example.com", "scheduled_event": {"start_time": START}},
    })

    assert result == {
        "success": True,
        "sessionId": created["sessionId"],
        "message": "Cancellation processed",
        "event": "invitee.canceled",
    }
    [session] = await session_rows(db)
    assert session.meta["status"] == "canceled"
    assert session.meta["source"] == "calendly"


async def test_booking_without_email_is_rejected(db, calendly_api):
    payload = booking()
    del payload["payload"]["invitee"]["email"]

    with pytest.raises(CalendlyPayloadError, match="No email found"):
        await process_webhook(db, payload, http=calendly_api)


async def test_resource_uris_are_fetched(db, calendly_api):
    payload = {"event": "invitee.created", "payload": {"invitee": INVITEE_URI, "scheduled_event": EVENT_URI}}

    result = await process_webhook(db, payload, http=calendly_api)

    assert result["clientName"] == "Sam Byrne"
    assert calendly_api.requested == [INVITEE_URI, EVENT_URI, EVENT_TYPE_URI]
    [session] = await session_rows(db)
    assert session.type == "Discovery Session"
    assert session.duration == 50


async def test_unknown_events_are_acknowledged(db):
    result = await process_webhook(db, {"event": "routing_form.submitted", "payload": {}})
    assert result["success"] is True


async def test_webhook_rejects_bad_signature(client, monkeypatch):
    monkeypatch.setattr(settings, "CALENDLY_WEBHOOK_SIGNING_KEY", "whsec")
    body = json.dumps({"event": "invitee.canceled", "payload": {}}).encode()

    bad = await client.post(
        "/api/calendly/webhook", content=body,
        headers={"Content-Type": "application/json", "calendly-webhook-signature": "bogus"},
    )
    good = await client.post(
        "/api/calendly/webhook", content=body,
        headers={"Content-Type": "application/json", "calendly-webhook-signature": compute_signature(body, "whsec")},
    )

    assert bad.status_code == 401
    assert good.status_code == 200
    assert good.json()["message"] == "Cancellation processed"


async def test_webhook_rejects_invalid_json(client):
    resp = await client.post("/api/calendly/webhook", content=b"{not json",
                             headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
