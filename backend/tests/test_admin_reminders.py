from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update

from practice.models import AdminReminder, Client, Session, User
from practice.services.admin_reminders import is_paid, run_admin_reminders

NOW = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)


async def reminders(db):
    res = await db.execute(
        select(AdminReminder.id, AdminReminder.type, AdminReminder.title, AdminReminder.is_active)
        .order_by(AdminReminder.id)
    )
    return {r.id: r for r in res.all()}


def test_is_paid():
    assert is_paid({"paymentStatus": "paid"})
    assert is_paid('{"paymentStatus": "paid"}')
    assert not is_paid({"paymentStatus": "unpaid"})
    assert not is_paid(None)


async def test_new_client_form_reminders(db, user):
    db.add_all([
        Client(id="c-new", user_id=user.id, name="Claire Schillaci"),
        Client(id="c-signed", user_id=user.id, name="Signed Client", new_client_form_signed=True),
        Client(id="c-archived", user_id=user.id, name="Old Client", archived=True),
    ])
    await db.commit()

    result = await run_admin_reminders(db, now=NOW)

    assert result == {"usersProcessed": 1, "newClientFormReminders": 1, "unpaidSessionReminders": 0, "errors": []}
    rows = await reminders(db)
    assert list(rows) == [f"new_form_{user.id}_c-new"]
    assert rows[f"new_form_{user.id}_c-new"].title == "New Client Form Required: Claire Schillaci"


async def test_unpaid_session_reminders(db, user):
    db.add(Client(id="c1", user_id=user.id, name="Claire Schillaci", new_client_form_signed=True))
    await db.commit()
    db.add_all([
        Session(id="past-unpaid", user_id=user.id, client_id="c1", date=NOW - timedelta(days=2),
                meta={"paymentStatus": "unpaid"}),
        Session(id="past-paid", user_id=user.id, client_id="c1", date=NOW - timedelta(days=1),
                meta={"paymentStatus": "paid"}),
        Session(id="past-orphan", user_id=user.id, client_id=None, date=NOW - timedelta(days=3)),
        Session(id="future", user_id=user.id, client_id="c1", date=NOW + timedelta(days=1)),
    ])
    await db.commit()

    result = await run_admin_reminders(db, now=NOW)

    assert result["unpaidSessionReminders"] == 2
    rows = await reminders(db)
    assert set(rows) == {f"unpaid_{user.id}_past-unpaid", f"unpaid_{user.id}_past-orphan"}
    assert rows[f"unpaid_{user.id}_past-unpaid"].title == "Unpaid Session: Claire Schillaci - 08 Mar 2025"
    assert rows[f"unpaid_{user.id}_past-orphan"].title == "Unpaid Session: Unknown Client - 07 Mar 2025"


async def test_paying_deactivates_the_reminder(db, user):
    db.add(Session(id="s1", user_id=user.id, date=NOW - timedelta(days=1), meta={"paymentStatus": "unpaid"}))
    await db.commit()
    await run_admin_reminders(db, now=NOW)

    await db.execute(update(Session).where(Session.id == "s1").values({Session.meta: {"paymentStatus": "paid"}}))
    await db.commit()
    await run_admin_reminders(db, now=NOW + timedelta(days=1))

    rows = await reminders(db)
    assert rows[f"unpaid_{user.id}_s1"].is_active is False


async def test_rerun_reactivates_dismissed_reminders(db, user):
    db.add(Client(id="c-new", user_id=user.id, name="Claire Schillaci"))
    await db.commit()
    await run_admin_reminders(db, now=NOW)
    reminder_id = f"new_form_{user.id}_c-new"

    await db.execute(update(AdminReminder).where(AdminReminder.id == reminder_id).values(is_active=False))
    await db.commit()
    await run_admin_reminders(db, now=NOW + timedelta(days=1))

    rows = await reminders(db)
    assert len(rows) == 1
    assert rows[reminder_id].is_active is True
    res = await db.execute(select(AdminReminder.last_sent_at).where(AdminReminder.id == reminder_id))
    assert res.scalar_one().replace(tzinfo=timezone.utc) == NOW + timedelta(days=1)


async def test_every_user_is_processed(db, user):
    other = User(email="second@example.com", name="Second")
    db.add(other)
    await db.commit()
    db.add(Client(id="c-other", user_id=other.id, name="Other Client"))
    await db.commit()

    result = await run_admin_reminders(db, now=NOW)

    assert result["usersProcessed"] == 2
    assert result["newClientFormReminders"] == 1
