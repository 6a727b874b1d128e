"""Voicemail transcription through the OpenAI audio API."""

from __future__ import annotations

from typing import Optional

from propdesk.ai.client import AIUnavailable, get_client
from propdesk.ai.outcome import AiSucceeded, FallbackUsed, Outcome
from propdesk.config import settings
from propdesk.runtime import Deadline, PerfTimer, get_logger

logger = get_logger(__name__)

EMPTY_TRANSCRIPT = "No transcription available."
UNTRANSCRIBED_PLACEHOLDER = "[Voicemail could not be transcribed. Listen to the recording.]"


def transcribe(audio: bytes, filename: str = "voicemail.mp3", deadline: Optional[Deadline] = None) -> Outcome[str]:
    """Transcribe recorded audio; a failure still yields text so the voicemail gets filed."""
    if not audio:
        return FallbackUsed(UNTRANSCRIBED_PLACEHOLDER, reason="empty recording")
    try:
        client = get_client(deadline)
        with PerfTimer("ai.transcribe", logger=logger):
            result = client.audio.transcriptions.create(
                model=settings().OPENAI_TRANSCRIBE_MODEL,
                file=(filename, audio),
            )
        text = (getattr(result, "text", None) or "").strip()
        return AiSucceeded(text or EMPTY_TRANSCRIPT)
    except AIUnavailable as exc:
        logger.info("Transcription skipped (%s).", exc)
        return FallbackUsed(UNTRANSCRIBED_PLACEHOLDER, reason=str(exc))
    except Exception as exc:
        logger.warning("Audio transcription failed: %s", exc)
        return FallbackUsed(UNTRANSCRIBED_PLACEHOLDER, reason=str(exc))
