"""
Duplicate-client cleanup.

Clients are grouped by normalized name. In each group the record with the
most filled-in columns (then the most recent ``created_at``) is kept; the
others have their sessions, session notes and recordings pointed at the kept
record and are then deleted in one batch.

The reassignment and the delete are committed separately. If the delete
fails, the reassignments stay in place and a rerun finishes the job.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from practice.models import Client, Recording, Session, SessionNote
from practice.utils import EPOCH, as_utc

logger = logging.getLogger(__name__)


class DedupError(RuntimeError):
    def __init__(self, message: str, sessions_reassigned: int = 0, notes_reassigned: int = 0,
                 recordings_reassigned: int = 0):
        super().__init__(message)
        self.sessions_reassigned = sessions_reassigned
        self.notes_reassigned = notes_reassigned
        self.recordings_reassigned = recordings_reassigned


@dataclass
class DuplicateGroup:
    name: str
    keep: Dict[str, Any]
    delete: List[Dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kept": {"id": self.keep["id"], "name": self.keep.get("name")},
            "deleted": [{"id": c["id"], "name": c.get("name")} for c in self.delete],
        }


def normalize_name(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def filled_field_count(client: Mapping[str, Any]) -> int:
    return sum(1 for v in client.values() if v is not None and v != "")


def _rank(client: Mapping[str, Any]):
    return filled_field_count(client), as_utc(client.get("created_at")) or EPOCH


def plan_duplicate_cleanup(clients: Iterable[Mapping[str, Any]]) -> List[DuplicateGroup]:
    """
    Groups keep first-seen order. Within a group the sort is stable, so full
    ties keep the order the clients were given in.
    """
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for client in clients:
        key = normalize_name(client.get("name"))
        if not key:
            continue
        groups.setdefault(key, []).append(dict(client))

    plan: List[DuplicateGroup] = []
    for members in groups.values():
        if len(members) < 2:
            continue
        ranked = sorted(members, key=_rank, reverse=True)
        plan.append(DuplicateGroup(name=ranked[0].get("name") or "", keep=ranked[0], delete=ranked[1:]))
    return plan


async def _reassign(db: AsyncSession, model, old_id: str, new_id: str) -> int:
    res = await db.execute(
        update(model).where(model.client_id == old_id).values(client_id=new_id)
    )
    return res.rowcount or 0


async def cleanup_duplicate_clients(
    db: AsyncSession,
    user_id: Optional[int] = None,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """
    Runs the whole cleanup and returns the report. ``user_id`` limits the pass
    to one practitioner's clients; ``None`` covers the whole table.
    """
    stmt = select(Client.__table__).order_by(Client.created_at.desc())
    if user_id is not None:
        stmt = stmt.where(Client.user_id == user_id)
    res = await db.execute(stmt)
    clients = [dict(r) for r in res.mappings().all()]

    plan = plan_duplicate_cleanup(clients)
    if not plan:
        logger.info("[dedup] no duplicates among %d clients", len(clients))
        return {"message": "No duplicates found", "deleted": 0, "duplicates": []}

    to_delete = [c["id"] for group in plan for c in group.delete]
    logger.info("[dedup] %d duplicate groups, %d clients to delete", len(plan), len(to_delete))

    sessions_moved = notes_moved = recordings_moved = 0
    if not dry_run:
        for group in plan:
            keep_id = group.keep["id"]
            for dup in group.delete:
                sessions_moved += await _reassign(db, Session, dup["id"], keep_id)
                notes_moved += await _reassign(db, SessionNote, dup["id"], keep_id)
                recordings_moved += await _reassign(db, Recording, dup["id"], keep_id)
        await db.commit()

        try:
            await db.execute(delete(Client).where(Client.id.in_(to_delete)))
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("[dedup] delete failed after reassignment: %s", e)
            raise DedupError(
                f"Failed to delete duplicates: {e}",
                sessions_reassigned=sessions_moved,
                notes_reassigned=notes_moved,
                recordings_reassigned=recordings_moved,
            ) from e

    logger.info(
        "[dedup] deleted=%d sessions=%d notes=%d recordings=%d dry_run=%s",
        len(to_delete), sessions_moved, notes_moved, recordings_moved, dry_run,
    )
    return {
        "deleted": len(to_delete),
        "duplicates": [g.as_dict() for g in plan],
        "sessionsReassigned": sessions_moved,
        "notesReassigned": notes_moved,
        "recordingsReassigned": recordings_moved,
        "dry_run": dry_run,
    }
