from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from openai import OpenAI, OpenAIError

from practice.config import OPENAI_TIMEOUT_S, OPENAI_TRANSCRIBE_MODEL

logger = logging.getLogger(__name__)

# (audio bytes, filename) -> transcript text
Transcriber = Callable[[bytes, str], Awaitable[str]]

_client: Optional[OpenAI] = None


class TranscriptionError(RuntimeError):
    pass


def _get_client() -> OpenAI:
    # created on first use so importing this module does not need OPENAI_API_KEY
    global _client
    if _client is None:
        _client = OpenAI()
    return _client


async def transcribe_audio(data: bytes, filename: str) -> str:
    """Whisper transcription of one audio file. Raises TranscriptionError on failure or empty text."""
    def _call():
        return _get_client().audio.transcriptions.create(
            model=OPENAI_TRANSCRIBE_MODEL,
            file=(filename or "audio.webm", data),
            response_format="json",
            timeout=OPENAI_TIMEOUT_S,
        )

    try:
        resp = await asyncio.to_thread(_call)
    except OpenAIError as e:
        logger.error("[transcription] whisper error for %s: %s", filename, e)
        raise TranscriptionError(str(e)) from e

    text = (getattr(resp, "text", "") or "").strip()
    if not text:
        raise TranscriptionError(f"empty transcript for {filename}")
    return text
