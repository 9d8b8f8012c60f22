from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from practice.models import Client
from practice.utils import utcnow

logger = logging.getLogger(__name__)

RECIPROCAL_TYPES: Dict[str, str] = {
    "Mum": "Daughter",
    "Mother": "Daughter",
    "Dad": "Son",
    "Father": "Son",
    "Daughter": "Mum",
    "Son": "Dad",
    "Wife": "Husband",
    "Husband": "Wife",
    "Partner": "Partner",
    "Sister": "Sister",
    "Brother": "Brother",
    "Friend": "Friend",
    "Guardian": "Ward",
    "Ward": "Guardian",
}


def reciprocal_type(rel_type: Optional[str]) -> Optional[str]:
    """Unknown types (and None) map to themselves."""
    if rel_type is None:
        return None
    return RECIPROCAL_TYPES.get(rel_type, rel_type)


@dataclass
class FixedClient:
    id: str
    relationships: List[Dict[str, Any]]
    changed: bool


def _find_back(entries: Optional[Iterable[Mapping[str, Any]]], client_id: str) -> Optional[Mapping[str, Any]]:
    for entry in entries or []:
        if entry.get("relatedClientId") == client_id:
            return entry
    return None


def fix_relationship_types(clients: Iterable[Mapping[str, Any]]) -> List[FixedClient]:
    """
    Make each relationship entry the reciprocal of the entry pointing back at it.

    ``clients`` are mappings with ``id`` and ``relationships``. Every decision
    reads the input snapshot, so the result does not depend on client order,
    and the inputs are left untouched. Entries whose related client is absent
    or has no entry pointing back are kept as they are.
    """
    snapshot = list(clients)
    by_id = {c["id"]: c for c in snapshot}

    fixed: List[FixedClient] = []
    for client in snapshot:
        entries = client.get("relationships") or []
        out: List[Dict[str, Any]] = []
        changed = False
        for rel in entries:
            rel = dict(rel)
            related = by_id.get(rel.get("relatedClientId"))
            back = _find_back(related.get("relationships"), client["id"]) if related else None
            if back is not None:
                rel_type, back_type = rel.get("type"), back.get("type")
                if reciprocal_type(rel_type) != back_type and reciprocal_type(back_type) != rel_type:
                    rel["type"] = reciprocal_type(back_type)
                    changed = True
            out.append(rel)
        fixed.append(FixedClient(id=client["id"], relationships=out, changed=changed))
    return fixed


async def apply_relationship_fixes(db: AsyncSession, user_id: int) -> Tuple[int, int]:
    """Fix active and archived clients of one user; returns (processed, changed)."""
    res = await db.execute(
        select(Client.id, Client.relationships).where(Client.user_id == user_id)
    )
    rows = [{"id": r.id, "relationships": r.relationships} for r in res.all()]

    results = fix_relationship_types(rows)
    now = utcnow()
    changed = 0
    for item in results:
        if not item.changed:
            continue
        await db.execute(
            update(Client)
            .where(Client.id == item.id)
            .values(relationships=item.relationships, updated_at=now)
        )
        changed += 1
    await db.commit()

    logger.info("[relationships] user=%s processed=%d changed=%d", user_id, len(results), changed)
    return len(results), changed
