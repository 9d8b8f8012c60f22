"""
Transcribe recordings that have audio but no usable transcript.

Targets empty transcripts and the "No transcript captured" placeholder;
existing notes are kept. Needs OPENAI_API_KEY.

Usage: python -m practice.scripts.backfill_transcripts [--dry-run] [--pause 1.0]
"""
import argparse
import asyncio
import os
import sys

from sqlalchemy.exc import SQLAlchemyError

from practice import config as settings
from practice.db import SessionLocal
from practice.services.recording_reconciliation import backfill_transcripts
from practice.services.storage import LocalBucket, StorageError
from practice.services.transcription import transcribe_audio


async def run(dry_run: bool, pause: float) -> dict:
    async with SessionLocal() as db:
        return await backfill_transcripts(
            db, LocalBucket(settings.AUDIO_STORAGE_DIR), transcribe_audio,
            dry_run=dry_run, pause_seconds=pause,
        )


def print_report(report: dict) -> None:
    if report["dry_run"]:
        print("DRY RUN - nothing was transcribed\n")
    print(f"Recordings without transcript: {report['candidates']}")
    label = "Would transcribe" if report["dry_run"] else "Transcribed"
    print(f"{label}: {len(report['transcribed'])}")
    print(f"Audio missing: {len(report['missing_audio'])}")
    print(f"Failed: {len(report['failed'])}")
    for err in report["errors"]:
        print(f"   error: {err}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="list candidates without transcribing")
    parser.add_argument("--pause", type=float, default=1.0, help="seconds between transcription calls")
    args = parser.parse_args(argv)
    if not args.dry_run and not os.getenv("OPENAI_API_KEY"):
        print("Fatal error: OPENAI_API_KEY is not set", file=sys.stderr)
        return 1
    try:
        report = asyncio.run(run(args.dry_run, args.pause))
    except (SQLAlchemyError, StorageError) as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1
    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
