"""
Merge clients that share a name (case and surrounding whitespace ignored).

Usage: python -m practice.scripts.cleanup_duplicate_clients [--dry-run] [--user-id N]
"""
import argparse
import asyncio
import sys
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from practice.db import SessionLocal
from practice.services.dedup import DedupError, cleanup_duplicate_clients


async def run(dry_run: bool, user_id: Optional[int]) -> dict:
    async with SessionLocal() as db:
        return await cleanup_duplicate_clients(db, user_id=user_id, dry_run=dry_run)


def print_report(report: dict) -> None:
    if report.get("dry_run"):
        print("DRY RUN - no database changes were made\n")
    if not report["duplicates"]:
        print(report.get("message", "No duplicates found"))
        return
    for group in report["duplicates"]:
        print(f"{group['name']}: keep {group['kept']['id']}")
        for dup in group["deleted"]:
            print(f"   delete {dup['id']} ({dup['name']})")
    print(f"\nDeleted:               {report['deleted']}")
    print(f"Sessions reassigned:   {report['sessionsReassigned']}")
    print(f"Notes reassigned:      {report['notesReassigned']}")
    print(f"Recordings reassigned: {report['recordingsReassigned']}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="show the plan without changing anything")
    parser.add_argument("--user-id", type=int, default=None, help="only this practitioner's clients")
    args = parser.parse_args(argv)
    try:
        report = asyncio.run(run(args.dry_run, args.user_id))
    except DedupError as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        print(f"   sessions reassigned before failure: {e.sessions_reassigned}", file=sys.stderr)
        print(f"   notes reassigned before failure: {e.notes_reassigned}", file=sys.stderr)
        return 1
    except SQLAlchemyError as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1
    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
