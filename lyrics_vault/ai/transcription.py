"""Speech-to-text transcription via a Whisper-compatible HTTP endpoint.

Requests ``verbose_json`` with segment-level timestamps so the pipeline can
use the provider's own timing instead of estimating it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from lyrics_vault.ai.client import OpenAICompatClient
from lyrics_vault.errors import ProviderError, ValidationError

logger = logging.getLogger(__name__)

PROVIDER = "transcription"


@dataclass(frozen=True)
class TranscriptSegment:
    text: str
    start_time: float
    end_time: float | None = None


@dataclass(frozen=True)
class Transcription:
    """Provider output: full text plus zero or more time-coded segments."""

    text: str
    segments: list[TranscriptSegment] = field(default_factory=list)
    language: str | None = None
    duration_seconds: float | None = None


class TranscriptionProvider(Protocol):
    async def transcribe(
        self, audio: bytes, filename: str = "audio.mp3", content_type: str = "audio/mpeg"
    ) -> Transcription: ...


def parse_transcription(payload: dict[str, Any]) -> Transcription:
    """Convert a ``verbose_json`` response body into a Transcription.

    Raises:
        ProviderError: The payload has no text.
    """
    text = payload.get("text")
    if not isinstance(text, str):
        raise ProviderError(PROVIDER, "response has no transcription text")

    segments: list[TranscriptSegment] = []
    for raw in payload.get("segments") or []:
        try:
            segments.append(
                TranscriptSegment(
                    text=str(raw["text"]).strip(),
                    start_time=float(raw["start"]),
                    end_time=float(raw["end"]) if raw.get("end") is not None else None,
                )
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed transcription segment: %r", raw)

    duration = payload.get("duration")
    return Transcription(
        text=text,
        segments=segments,
        language=payload.get("language"),
        duration_seconds=float(duration) if duration is not None else None,
    )


class WhisperApiTranscriber:
    """Transcribes raw audio bytes with ``/audio/transcriptions``."""

    def __init__(self, client: OpenAICompatClient, model: str = "whisper-1") -> None:
        self._client = client
        self._model = model

    async def transcribe(
        self, audio: bytes, filename: str = "audio.mp3", content_type: str = "audio/mpeg"
    ) -> Transcription:
        if not audio:
            raise ValidationError("audio", "empty audio payload")

        payload = await self._client.post_multipart(
            "/audio/transcriptions",
            provider=PROVIDER,
            data={
                "model": self._model,
                "response_format": "verbose_json",
                "timestamp_granularities[]": "segment",
            },
            files={"file": (filename, audio, content_type)},
        )
        transcription = parse_transcription(payload)
        logger.info(
            "Transcription completed: %d chars, %d segments, language=%s",
            len(transcription.text),
            len(transcription.segments),
            transcription.language,
        )
        return transcription
