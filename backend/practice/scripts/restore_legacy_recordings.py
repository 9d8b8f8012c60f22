"""
Create recordings rows for orphan audio files at the audio bucket root.

Only inserts: files are never moved or deleted, and existing rows and
transcripts are left alone.

Usage: python -m practice.scripts.restore_legacy_recordings [--dry-run]
"""
import argparse
import asyncio
import sys

from sqlalchemy.exc import SQLAlchemyError

from practice import config as settings
from practice.db import SessionLocal
from practice.services.recording_reconciliation import restore_orphan_recordings
from practice.services.storage import LocalBucket, StorageError


async def run(dry_run: bool) -> dict:
    async with SessionLocal() as db:
        return await restore_orphan_recordings(db, LocalBucket(settings.AUDIO_STORAGE_DIR), dry_run=dry_run)


def print_report(report: dict) -> None:
    if report["dry_run"]:
        print("DRY RUN - no database changes were made\n")
    print(f"Root audio files: {report['files']}")
    print(f"Orphan files:     {len(report['orphans'])}")
    if not report["orphans"]:
        print("No orphan files to restore.")
        return
    print(f"   with transcript from session notes: {report['with_transcript']}")
    print(f"   pending transcription:              {len(report['rows']) - report['with_transcript']}")
    for row in report["rows"][:10]:
        print(f"   {row['id']} | {row['audio_url']} | {row['transcript_status']}")
    if not report["dry_run"]:
        print(f"Inserted: {len(report['inserted'])}")
        print(f"Skipped (row already exists): {len(report['skipped'])}")
    for err in report["errors"]:
        print(f"   error: {err}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="report orphans without inserting rows")
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
