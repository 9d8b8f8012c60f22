"""
Read-only health report for recordings: transcripts, audio files, durations.

Usage: python -m practice.scripts.sanity_check_recordings
"""
import argparse
import asyncio
import sys

from sqlalchemy.exc import SQLAlchemyError

from practice import config as settings
from practice.db import SessionLocal
from practice.services.recording_reconciliation import sanity_check_recordings
from practice.services.storage import LocalBucket, StorageError


async def run() -> dict:
    async with SessionLocal() as db:
        return await sanity_check_recordings(db, LocalBucket(settings.AUDIO_STORAGE_DIR))


def _ids(ids: list) -> str:
    more = "..." if len(ids) > 10 else ""
    return ", ".join(ids[:10]) + more


def print_report(report: dict) -> None:
    print(f"Total recordings checked:           {report['total']}")
    print(f"Valid transcripts:                  {report['valid_transcripts']}")
    rows = [
        ("\"No transcript captured\"", "no_transcript_captured"),
        ("Missing/empty transcript", "missing_transcript"),
        ("Missing audio file", "missing_audio"),
        ("Zero or missing duration", "zero_duration"),
        ("Unallocated (no client/session)", "unallocated"),
        ("Flagged for review", "flagged"),
    ]
    for label, key in rows:
        print(f"{label + ':':<36}{len(report[key])}")
        if report[key]:
            print(f"   IDs: {_ids(report[key])}")
    if report["errors"]:
        print("\nErrors:")
        for e in report["errors"][:20]:
            print(f"   {e['id']}: {e['msg']}")
        if len(report["errors"]) > 20:
            print(f"   ... and {len(report['errors']) - 20} more")
    print("\n" + ("All recordings have transcripts and audio." if report["ok"] else "Some recordings need attention."))


def main(argv=None) -> int:
    argparse.ArgumentParser(description=__doc__.strip().splitlines()[0]).parse_args(argv)
    try:
        report = asyncio.run(run())
    except (SQLAlchemyError, StorageError) as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1
    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
