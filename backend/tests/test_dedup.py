from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.dml import Delete

from practice.models import Client, Recording, Session, SessionNote
from practice.services.dedup import (
    DedupError, cleanup_duplicate_clients, filled_field_count, normalize_name, plan_duplicate_cleanup,
)

EARLY = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
LATE = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


def test_normalize_name():
    assert normalize_name("  Claire Schillaci ") == "claire schillaci"
    assert normalize_name(None) == ""


def test_filled_field_count_ignores_none_and_empty():
    assert filled_field_count({"id": "a", "name": "x", "email": "", "phone": None}) == 2


def test_richer_record_is_kept():
    clients = [
        {"id": "late", "name": "claire schillaci", "email": None, "phone": None, "created_at": LATE},
        {"id": "early", "name": "Claire Schillaci", "email": "claire@example.com", "phone": "0871234567",
         "created_at": EARLY},
    ]
    [group] = plan_duplicate_cleanup(clients)
    assert group.keep["id"] == "early"
    assert [c["id"] for c in group.delete] == ["late"]
    assert group.as_dict() == {
        "name": "Claire Schillaci",
        "kept": {"id": "early", "name": "Claire Schillaci"},
        "deleted": [{"id": "late", "name": "claire schillaci"}],
    }


def test_newer_record_wins_a_field_count_tie():
    clients = [
        {"id": "old", "name": "Sam", "email": "a@example.com", "created_at": EARLY},
        {"id": "new", "name": "sam ", "email": "b@example.com", "created_at": LATE},
    ]
    [group] = plan_duplicate_cleanup(clients)
    assert group.keep["id"] == "new"


def test_full_ties_keep_input_order():
    clients = [
        {"id": "first", "name": "Sam", "created_at": EARLY},
        {"id": "second", "name": "Sam", "created_at": EARLY},
        {"id": "third", "name": "SAM", "created_at": EARLY},
    ]
    [group] = plan_duplicate_cleanup(clients)
    assert group.keep["id"] == "first"
    assert [c["id"] for c in group.delete] == ["second", "third"]


def test_unique_and_nameless_clients_are_left_alone():
    clients = [
        {"id": "a", "name": "Alex"},
        {"id": "b", "name": ""},
        {"id": "c", "name": None},
        {"id": "d", "name": "   "},
    ]
    assert plan_duplicate_cleanup(clients) == []


async def seed_duplicates(db, user_id=None):
    db.add_all([
        Client(id="keep", user_id=user_id, name="Claire Schillaci", email="claire@example.com",
               phone="0871234567", notes="intake done", created_at=EARLY),
        Client(id="dup", user_id=user_id, name="claire schillaci", created_at=LATE),
        Client(id="other", user_id=user_id, name="Alex Byrne", email="alex@example.com", created_at=EARLY),
    ])
    await db.commit()
    db.add_all([
        Session(id="s1", client_id="dup", date=LATE),
        Session(id="s2", client_id="dup", date=LATE),
        Session(id="s3", client_id="keep", date=EARLY),
        SessionNote(id="n1", client_id="dup", content="notes"),
        Recording(id="r1", client_id="dup"),
    ])
    await db.commit()


async def client_ids(db):
    res = await db.execute(select(Client.id).order_by(Client.id))
    return list(res.scalars().all())


async def count(db, model):
    res = await db.execute(select(func.count()).select_from(model))
    return res.scalar_one()


async def test_cleanup_reassigns_dependents_and_deletes_duplicates(db):
    await seed_duplicates(db)

    report = await cleanup_duplicate_clients(db)

    assert report["deleted"] == 1
    assert report["sessionsReassigned"] == 2
    assert report["notesReassigned"] == 1
    assert report["recordingsReassigned"] == 1
    assert report["duplicates"][0]["kept"]["id"] == "keep"
    assert report["dry_run"] is False

    assert await client_ids(db) == ["keep", "other"]
    res = await db.execute(select(Session.client_id).order_by(Session.id))
    assert res.scalars().all() == ["keep", "keep", "keep"]
    assert await count(db, Session) == 3
    assert await count(db, SessionNote) == 1
    res = await db.execute(select(Recording.client_id))
    assert res.scalar_one() == "keep"


async def test_second_run_finds_nothing(db):
    await seed_duplicates(db)
    await cleanup_duplicate_clients(db)

    report = await cleanup_duplicate_clients(db)

    assert report == {"message": "No duplicates found", "deleted": 0, "duplicates": []}


async def test_dry_run_changes_nothing(db):
    await seed_duplicates(db)

    report = await cleanup_duplicate_clients(db, dry_run=True)

    assert report["deleted"] == 1
    assert report["sessionsReassigned"] == 0
    assert report["dry_run"] is True
    assert await client_ids(db) == ["dup", "keep", "other"]
    res = await db.execute(select(Session.client_id).where(Session.id == "s1"))
    assert res.scalar_one() == "dup"


async def test_cleanup_can_be_scoped_to_one_user(db, user):
    await seed_duplicates(db, user_id=user.id)
    db.add_all([
        Client(id="x1", name="Unowned Twin", created_at=EARLY),
        Client(id="x2", name="unowned twin", created_at=LATE),
    ])
    await db.commit()

    report = await cleanup_duplicate_clients(db, user_id=user.id)

    assert report["deleted"] == 1
    assert "x1" in await client_ids(db)
    assert "x2" in await client_ids(db)


class FailingDelete:
    """Session proxy whose DELETE statements fail."""

    def __init__(self, db):
        self._db = db

    async def execute(self, stmt, *args, **kwargs):
        if isinstance(stmt, Delete):
            raise OperationalError("DELETE", {}, Exception("database is locked"))
        return await self._db.execute(stmt, *args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._db, name)


async def test_delete_failure_keeps_reassignments(db):
    await seed_duplicates(db)

    with pytest.raises(DedupError) as exc:
        await cleanup_duplicate_clients(FailingDelete(db))

    assert exc.value.sessions_reassigned == 2
    assert exc.value.notes_reassigned == 1
    assert exc.value.recordings_reassigned == 1
    assert await client_ids(db) == ["dup", "keep", "other"]
    res = await db.execute(select(Session.client_id).where(Session.id == "s1"))
    assert res.scalar_one() == "keep"

    # a rerun finishes the job
    report = await cleanup_duplicate_clients(db)
    assert report["deleted"] == 1
    assert report["sessionsReassigned"] == 0
    assert await client_ids(db) == ["keep", "other"]
