import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from practice.config import ReminderConfig
from practice.models import Client, EmailHistory, Session
from practice.services.email_service import RenderedEmail
from practice.services.reminders import (
    ReminderJobError, has_reminder_been_sent, mark_reminder_sent, reminder_window, run_send_reminders,
)

NOW = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)
CONFIG = ReminderConfig(reminder_hours_before=24)


class FakeSender:
    def __init__(self, fail_for=()):
        self.calls = []
        self.fail_for = set(fail_for)

    async def __call__(self, to, client_name, appointment_date, appointment_type, duration, config):
        self.calls.append((to, client_name, appointment_date, appointment_type, duration))
        if to in self.fail_for:
            raise RuntimeError("smtp down")
        return RenderedEmail(subject=f"Reminder for {client_name}", html="<p>hi</p>", text="hi")


async def add_client(db, cid, name="Claire Schillaci", email="claire@example.com"):
    db.add(Client(id=cid, name=name, email=email))
    await db.commit()


async def add_session(db, sid, client_id, when, meta=None):
    db.add(Session(id=sid, client_id=client_id, date=when, duration=50, type="Therapy Session", meta=meta))
    await db.commit()


async def session_meta(db, sid):
    res = await db.execute(select(Session.meta).where(Session.id == sid))
    return res.scalar_one()


def test_window_is_one_hour_either_side_of_target():
    start, end = reminder_window(NOW, 24)
    assert start == NOW + timedelta(hours=23)
    assert end == NOW + timedelta(hours=25)


def test_sent_flags_accept_json_strings():
    assert has_reminder_been_sent(json.dumps({"reminderSent24h": True}))
    assert not has_reminder_been_sent("not json")
    assert not has_reminder_been_sent({"reminderSent": "yes"})


def test_mark_reminder_sent_copies_metadata():
    original = {"fee": 80}
    marked = mark_reminder_sent(original, NOW)
    assert original == {"fee": 80}
    assert marked == {
        "fee": 80,
        "reminderSent": True,
        "reminderSent24h": True,
        "reminderSentAt": "2025-03-03T12:00:00Z",
    }


def test_reminder_config_falls_back_on_bad_settings():
    config = ReminderConfig.from_settings({"reminderHoursBefore": "soon", "timezone": 5})
    assert config.reminder_hours_before == 24
    assert config.timezone == "UTC"
    assert ReminderConfig.from_settings({"reminderHoursBefore": -3}).reminder_hours_before == 24
    assert ReminderConfig.from_settings({"reminderHoursBefore": "48"}).reminder_hours_before == 48
    assert ReminderConfig.from_settings(None) == ReminderConfig()


async def test_sends_once_and_second_run_skips(db):
    await add_client(db, "c1")
    await add_session(db, "s1", "c1", NOW + timedelta(hours=24, minutes=5), meta={"fee": 80})
    sender = FakeSender()

    first = await run_send_reminders(db, CONFIG, now=NOW, send=sender)
    assert (first.checked, first.sent, first.skipped, first.errors) == (1, 1, 0, [])
    assert sender.calls[0][0] == "claire@example.com"
    assert sender.calls[0][4] == 50

    meta = await session_meta(db, "s1")
    assert meta["reminderSent"] is True
    assert meta["reminderSent24h"] is True
    assert meta["reminderSentAt"] == "2025-03-03T12:00:00Z"
    assert meta["fee"] == 80

    second = await run_send_reminders(db, CONFIG, now=NOW + timedelta(minutes=1), send=sender)
    assert (second.checked, second.sent, second.skipped) == (1, 0, 1)
    assert len(sender.calls) == 1

    history = (await db.execute(select(EmailHistory))).scalars().all()
    assert len(history) == 1
    assert history[0].session_id == "s1"
    assert history[0].subject == "Reminder for Claire Schillaci"


async def test_sessions_outside_window_are_not_touched(db):
    await add_client(db, "c1")
    await add_session(db, "early", "c1", NOW + timedelta(hours=22, minutes=59))
    await add_session(db, "late", "c1", NOW + timedelta(hours=25, minutes=1))
    await add_session(db, "edge", "c1", NOW + timedelta(hours=25))
    await add_session(db, "lower-edge", "c1", NOW + timedelta(hours=23))
    sender = FakeSender()

    result = await run_send_reminders(db, CONFIG, now=NOW, send=sender)

    assert result.checked == 2
    assert result.sent == 2
    assert await session_meta(db, "lower-edge") is not None
    assert await session_meta(db, "early") is None
    assert await session_meta(db, "late") is None


async def test_skips_flagged_and_unreachable_sessions(db):
    await add_client(db, "c1")
    await add_client(db, "c2", name="No Email", email=None)
    when = NOW + timedelta(hours=24)
    await add_session(db, "flagged", "c1", when, meta=json.dumps({"reminderSent": True}))
    await add_session(db, "no-email", "c2", when)
    await add_session(db, "no-client", None, when)
    sender = FakeSender()

    result = await run_send_reminders(db, CONFIG, now=NOW, send=sender)

    assert (result.checked, result.sent, result.skipped) == (3, 0, 3)
    assert sender.calls == []


async def test_send_failure_is_recorded_and_processing_continues(db):
    await add_client(db, "c1", email="broken@example.com")
    await add_client(db, "c2", name="Other Client", email="ok@example.com")
    await add_session(db, "s-bad", "c1", NOW + timedelta(hours=23, minutes=30))
    await add_session(db, "s-ok", "c2", NOW + timedelta(hours=24, minutes=30))
    sender = FakeSender(fail_for={"broken@example.com"})

    result = await run_send_reminders(db, CONFIG, now=NOW, send=sender)

    assert result.sent == 1
    assert result.errors == ["Failed to send reminder for session s-bad: smtp down"]
    assert await session_meta(db, "s-bad") is None
    assert (await session_meta(db, "s-ok"))["reminderSent"] is True


async def test_lead_time_comes_from_config(db):
    await add_client(db, "c1")
    await add_session(db, "s1", "c1", NOW + timedelta(hours=48))
    sender = FakeSender()

    assert (await run_send_reminders(db, CONFIG, now=NOW, send=sender)).checked == 0
    result = await run_send_reminders(db, ReminderConfig(reminder_hours_before=48), now=NOW, send=sender)
    assert result.sent == 1


class BrokenDb:
    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is unreachable"))


async def test_fetch_failure_aborts_the_run():
    with pytest.raises(ReminderJobError) as exc:
        await run_send_reminders(BrokenDb(), CONFIG, now=NOW, send=FakeSender())
    assert str(exc.value) == "Failed to fetch sessions"
    assert "unreachable" in exc.value.details
