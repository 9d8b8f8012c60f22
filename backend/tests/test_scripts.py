from sqlalchemy.exc import OperationalError

from practice.scripts import backfill_transcripts, cleanup_duplicate_clients, map_legacy_audio_urls


def test_map_script_prints_dry_run_report(monkeypatch, capsys):
    seen = {}

    async def fake_run(dry_run):
        seen["dry_run"] = dry_run
        return {
            "files": 2, "candidates": 1, "updated": 0, "errors": [], "dry_run": dry_run,
            "matched": [{"id": "1739123456789", "filename": "1739123456789.webm",
                         "audio_url": "/api/audio/1739123456789.webm"}],
            "unmatched": [],
        }

    monkeypatch.setattr(map_legacy_audio_urls, "run", fake_run)

    assert map_legacy_audio_urls.main(["--dry-run"]) == 0
    out = capsys.readouterr().out
    assert seen == {"dry_run": True}
    assert "DRY RUN" in out
    assert "1739123456789 -> /api/audio/1739123456789.webm" in out


def test_database_failure_exits_non_zero(monkeypatch, capsys):
    async def broken_run(dry_run, user_id):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(cleanup_duplicate_clients, "run", broken_run)

    assert cleanup_duplicate_clients.main([]) == 1
    assert "connection refused" in capsys.readouterr().err


def test_backfill_needs_api_key_unless_dry_run(monkeypatch, capsys):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert backfill_transcripts.main([]) == 1
    assert "OPENAI_API_KEY" in capsys.readouterr().err
