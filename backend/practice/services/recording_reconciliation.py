"""
Reconciliation between audio files in the audio bucket and ``recordings`` rows.

Legacy recordings were stored as ``<millisecond timestamp>.<ext>`` at the bucket
root, and some rows lost their ``audio_url`` (or never got a row at all). The
procedures here re-link them. None of them deletes files or overwrites a
non-empty ``audio_url`` or a real transcript. With ``dry_run`` every decision
is still made and reported, only the writes are skipped.
"""
from __future__ import annotations
import asyncio
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from practice.models import Recording, SessionNote
from practice.services.storage import LocalBucket, StorageError
from practice.services.transcription import Transcriber, TranscriptionError
from practice.utils import utcnow

logger = logging.getLogger(__name__)

AUDIO_EXT = re.compile(r"\.(webm|m4a|mp3|wav|mp4|ogg|mpeg)$", re.I)
UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)
LEGACY_EXTENSIONS = ("webm", "m4a", "mp3", "wav")
RECORDINGS_FOLDER = "recordings"
NO_TRANSCRIPT_PLACEHOLDER = "No transcript captured"
AUDIO_URL_PREFIX = "/api/audio/"

MIN_TIMESTAMP_MS = 1_000_000_000_000
MAX_TIMESTAMP_MS = 99_999_999_999_999


def is_uuid(value: Any) -> bool:
    return bool(UUID_RE.match(str(value or "").strip()))


def is_audio_file(name: str) -> bool:
    return bool(AUDIO_EXT.search(name))


def audio_url_for(filename: str) -> str:
    return f"{AUDIO_URL_PREFIX}{filename}"


def legacy_candidates(recording_id: str) -> List[str]:
    return [f"{recording_id}.{ext}" for ext in LEGACY_EXTENSIONS]


def timestamp_from_filename(filename: str) -> Optional[str]:
    """'1739123456789.webm' -> '1739123456789'; None unless the stem is a plausible ms timestamp."""
    stem = AUDIO_EXT.sub("", filename)
    if not re.fullmatch(r"\d{10,15}", stem):
        return None
    if not MIN_TIMESTAMP_MS <= int(stem) <= MAX_TIMESTAMP_MS:
        return None
    return stem


def audio_filename_from_url(audio_url: Optional[str], recording_id: str) -> str:
    """Storage filename for /api/audio/<name>, full storage URLs and bare filenames."""
    if not audio_url or not isinstance(audio_url, str):
        return f"{recording_id}.webm"
    url = audio_url.strip()
    # keep sub-folders such as recordings/<id>.webm
    if AUDIO_URL_PREFIX in url:
        return url.split(AUDIO_URL_PREFIX)[-1].split("?")[0].strip()
    if "/audio/" in url:
        return url.split("/audio/")[-1].split("?")[0].strip()
    m = re.search(r"/([^/]+\.(?:webm|m4a|mp3|wav|mp4|ogg|mpeg))$", url, re.I)
    if m:
        return m.group(1)
    if re.fullmatch(r"[^/]+\.(?:webm|m4a|mp3|wav|mp4|ogg|mpeg)", url, re.I):
        return url
    return f"{recording_id}.webm"


def _note_text(note: Any) -> str:
    if isinstance(note, str):
        return note
    if isinstance(note, dict):
        return note.get("content") or note.get("text") or ""
    return ""


def parse_transcript_payload(raw: Optional[str]) -> Tuple[str, List[Any]]:
    """
    Returns (transcript text, notes) from the stored transcript column.

    The column normally holds ``{"transcript": ..., "notes": [...]}``; older rows
    hold a JSON list of notes or plain text.
    """
    if not raw or not isinstance(raw, str):
        return "", []
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw.strip(), []
    if isinstance(parsed, dict):
        notes = parsed.get("notes")
        return (parsed.get("transcript") or "").strip(), notes if isinstance(notes, list) else []
    if isinstance(parsed, list):
        text = "\n\n".join(_note_text(n) for n in parsed).strip()
        return text, parsed
    return raw.strip(), []


def is_missing_transcript(raw: Optional[str]) -> bool:
    text, _ = parse_transcript_payload(raw)
    return not text or text == NO_TRANSCRIPT_PLACEHOLDER


def encode_transcript(text: str, notes: Optional[List[Any]] = None) -> str:
    return json.dumps({"transcript": text, "notes": list(notes or [])})


def list_root_audio_files(bucket: LocalBucket) -> List[str]:
    """Audio files at the bucket root; the recordings/ folder is not descended into."""
    return [
        name for name in bucket.list_root()
        if name != RECORDINGS_FOLDER and is_audio_file(name)
    ]


def _blank_audio_url():
    return or_(Recording.audio_url.is_(None), func.trim(Recording.audio_url) == "")


async def map_legacy_audio_urls(db: AsyncSession, bucket: LocalBucket, dry_run: bool = False) -> Dict[str, Any]:
    """Fill in ``audio_url`` for legacy (timestamp id) recordings whose file sits at the bucket root."""
    files = set(list_root_audio_files(bucket))
    logger.info("[reconcile] %d root audio files", len(files))

    res = await db.execute(
        select(Recording.id)
        .where(_blank_audio_url())
        .order_by(Recording.created_at.desc())
    )
    missing = [r.id for r in res.all()]
    candidates = [rid for rid in missing if not is_uuid(rid)]
    logger.info("[reconcile] %d recordings without audio_url, %d legacy ids", len(missing), len(candidates))

    matched: List[Dict[str, str]] = []
    unmatched: List[str] = []
    for rid in candidates:
        filename = next((name for name in legacy_candidates(rid) if name in files), None)
        if filename is None:
            unmatched.append(rid)
            continue
        matched.append({"id": rid, "filename": filename, "audio_url": audio_url_for(filename)})

    updated = 0
    errors: List[str] = []
    if not dry_run:
        for item in matched:
            try:
                # the filter re-checks emptiness so a url set meanwhile is never replaced
                res = await db.execute(
                    update(Recording)
                    .where(
                        Recording.id == item["id"],
                        _blank_audio_url(),
                    )
                    .values(audio_url=item["audio_url"])
                )
                await db.commit()
                updated += res.rowcount or 0
            except SQLAlchemyError as e:
                await db.rollback()
                errors.append(f"{item['id']}: {e}")
                logger.error("[reconcile] failed to update %s: %s", item["id"], e)

    return {
        "files": len(files),
        "candidates": len(candidates),
        "matched": matched,
        "unmatched": unmatched,
        "updated": updated,
        "errors": errors,
        "dry_run": dry_run,
    }


async def _existing_refs(db: AsyncSession) -> Tuple[Set[str], Set[str]]:
    res = await db.execute(select(Recording.id, Recording.audio_url))
    by_id: Set[str] = set()
    by_filename: Set[str] = set()
    for rid, audio_url in res.all():
        by_id.add(str(rid).strip())
        if audio_url:
            name = audio_url.split("/")[-1]
            if name:
                by_filename.add(name)
    return by_id, by_filename


def has_matching_row(filename: str, by_id: Set[str], by_filename: Set[str]) -> bool:
    if filename in by_filename:
        return True
    ts = timestamp_from_filename(filename)
    return bool(ts and ts in by_id)


async def transcript_from_session_notes(db: AsyncSession, filename: str) -> Optional[str]:
    res = await db.execute(
        select(SessionNote.transcript, SessionNote.content)
        .where(SessionNote.audio_url.ilike(f"%{filename}%"))
        .limit(1)
    )
    row = res.first()
    if row is None:
        return None
    text = (row.transcript or row.content or "").strip()
    return encode_transcript(text) if text else None


async def restore_orphan_recordings(db: AsyncSession, bucket: LocalBucket, dry_run: bool = False) -> Dict[str, Any]:
    """Insert a minimal ``recordings`` row for every root audio file that has none."""
    files = list_root_audio_files(bucket)
    by_id, by_filename = await _existing_refs(db)
    orphans = [f for f in files if not has_matching_row(f, by_id, by_filename)]
    logger.info("[reconcile] %d root audio files, %d orphans", len(files), len(orphans))

    now = utcnow()
    rows: List[Dict[str, Any]] = []
    for filename in orphans:
        ts = timestamp_from_filename(filename)
        transcript = await transcript_from_session_notes(db, filename)
        rows.append({
            "id": ts or str(uuid.uuid4()),
            "audio_url": audio_url_for(filename),
            "client_id": None,
            "session_id": None,
            "user_id": None,
            "transcript": transcript,
            "created_at": datetime.fromtimestamp(int(ts) / 1000, tz=timezone.utc) if ts else now,
            "title": "Untitled Recording",
            "duration": 0,
            "recording_status": "uploaded",
            "transcript_status": "complete" if transcript else "pending",
            "allocation_status": "unallocated",
        })

    inserted: List[str] = []
    skipped: List[str] = []
    errors: List[str] = []
    if not dry_run:
        for row in rows:
            try:
                await db.execute(insert(Recording).values(**row))
                await db.commit()
                inserted.append(row["id"])
            except IntegrityError:
                await db.rollback()
                skipped.append(row["id"])
                logger.info("[reconcile] skipped %s (row already exists)", row["id"])
            except SQLAlchemyError as e:
                await db.rollback()
                errors.append(f"{row['id']}: {e}")
                logger.error("[reconcile] failed to insert %s: %s", row["id"], e)

    return {
        "files": len(files),
        "orphans": orphans,
        "rows": [
            {"id": r["id"], "audio_url": r["audio_url"], "transcript_status": r["transcript_status"]}
            for r in rows
        ],
        "with_transcript": sum(1 for r in rows if r["transcript"]),
        "inserted": inserted,
        "skipped": skipped,
        "errors": errors,
        "dry_run": dry_run,
    }


def _stored(bucket: LocalBucket, filename: str) -> bool:
    try:
        return bucket.exists(filename)
    except StorageError:
        return False


async def backfill_transcripts(
    db: AsyncSession,
    bucket: LocalBucket,
    transcriber: Transcriber,
    dry_run: bool = False,
    pause_seconds: float = 0.0,
) -> Dict[str, Any]:
    """Transcribe recordings that have audio but no usable transcript, keeping their notes."""
    res = await db.execute(
        select(Recording.id, Recording.audio_url, Recording.transcript)
        .order_by(Recording.created_at.desc())
    )
    pending = [r for r in res.all() if is_missing_transcript(r.transcript)]
    logger.info("[backfill] %d recordings without a usable transcript", len(pending))

    report: Dict[str, Any] = {
        "candidates": len(pending),
        "transcribed": [],
        "missing_audio": [],
        "failed": [],
        "errors": [],
        "dry_run": dry_run,
    }

    for i, rec in enumerate(pending):
        filename = audio_filename_from_url(rec.audio_url, rec.id)
        if not _stored(bucket, filename):
            report["missing_audio"].append(rec.id)
            continue
        if dry_run:
            report["transcribed"].append(rec.id)
            continue

        if i and pause_seconds:
            await asyncio.sleep(pause_seconds)
        try:
            data = bucket.download(filename)
            text = await transcriber(data or b"", filename)
        except (TranscriptionError, OSError) as e:
            report["failed"].append(rec.id)
            report["errors"].append(f"{rec.id}: {e}")
            continue

        _, notes = parse_transcript_payload(rec.transcript)
        try:
            # match on the value read above so a transcript written meanwhile is kept
            current = Recording.transcript.is_(None) if rec.transcript is None else Recording.transcript == rec.transcript
            res = await db.execute(
                update(Recording)
                .where(Recording.id == rec.id, current)
                .values(transcript=encode_transcript(text, notes), transcript_status="complete")
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            report["failed"].append(rec.id)
            report["errors"].append(f"{rec.id}: {e}")
            continue
        if res.rowcount:
            report["transcribed"].append(rec.id)
            logger.info("[backfill] transcribed %s (%d chars)", rec.id, len(text))

    return report


async def sanity_check_recordings(db: AsyncSession, bucket: LocalBucket) -> Dict[str, Any]:
    """Read-only health report over all recordings."""
    res = await db.execute(
        select(
            Recording.id, Recording.transcript, Recording.audio_url, Recording.duration,
            Recording.client_id, Recording.session_id, Recording.flagged,
        ).order_by(Recording.created_at.desc())
    )
    recordings = res.all()

    report: Dict[str, Any] = {
        "total": len(recordings),
        "valid_transcripts": 0,
        "no_transcript_captured": [],
        "missing_transcript": [],
        "missing_audio": [],
        "zero_duration": [],
        "unallocated": [],
        "flagged": [],
        "errors": [],
    }
    for rec in recordings:
        text, _ = parse_transcript_payload(rec.transcript)

        if not rec.audio_url or not rec.audio_url.strip():
            report["missing_audio"].append(rec.id)
            report["errors"].append({"id": rec.id, "msg": "Missing audio_url"})
        else:
            filename = audio_filename_from_url(rec.audio_url, rec.id)
            if not _stored(bucket, filename):
                report["missing_audio"].append(rec.id)
                report["errors"].append({"id": rec.id, "msg": f"Audio file not found: {filename}"})

        if not text:
            report["missing_transcript"].append(rec.id)
            report["errors"].append({"id": rec.id, "msg": "Transcript missing or empty"})
        elif text == NO_TRANSCRIPT_PLACEHOLDER:
            report["no_transcript_captured"].append(rec.id)
        else:
            report["valid_transcripts"] += 1

        if not rec.duration or rec.duration <= 0:
            report["zero_duration"].append(rec.id)
        if not rec.client_id and not rec.session_id:
            report["unallocated"].append(rec.id)
        if rec.flagged:
            report["flagged"].append(rec.id)

    report["ok"] = not report["missing_transcript"] and not report["missing_audio"]
    return report
