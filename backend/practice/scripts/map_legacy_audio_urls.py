"""
Link legacy recordings to their audio files.

Recordings with an empty audio_url and a legacy timestamp id get
/api/audio/<id>.<ext> when that file sits at the audio bucket root.

Usage: python -m practice.scripts.map_legacy_audio_urls [--dry-run]
"""
import argparse
import asyncio
import sys

from sqlalchemy.exc import SQLAlchemyError

from practice import config as settings
from practice.db import SessionLocal
from practice.services.recording_reconciliation import map_legacy_audio_urls
from practice.services.storage import LocalBucket, StorageError


async def run(dry_run: bool) -> dict:
    async with SessionLocal() as db:
        return await map_legacy_audio_urls(db, LocalBucket(settings.AUDIO_STORAGE_DIR), dry_run=dry_run)


def print_report(report: dict) -> None:
    if report["dry_run"]:
        print("DRY RUN - no database changes were made\n")
    print(f"Root audio files:          {report['files']}")
    print(f"Legacy recordings w/o url: {report['candidates']}")
    print(f"Matched:                   {len(report['matched'])}")
    for item in report["matched"]:
        print(f"   {item['id']} -> {item['audio_url']}")
    print(f"Unmatched:                 {len(report['unmatched'])}")
    for rid in report["unmatched"][:10]:
        print(f"   {rid}")
    if not report["dry_run"]:
        print(f"Updated:                   {report['updated']}")
    for err in report["errors"]:
        print(f"   error: {err}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="report matches without updating rows")
    args = parser.parse_args(argv)
    try:
        report = asyncio.run(run(args.dry_run))
    except (SQLAlchemyError, StorageError) as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1
    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
