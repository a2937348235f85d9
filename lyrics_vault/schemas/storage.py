from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class AudioMetadataOut(BaseModel):
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    duration_seconds: float | None = None
    sample_rate: int | None = None
    channels: int | None = None
    bitrate: int | None = None
    format: str | None = None


class ObjectInfoOut(BaseModel):
    key: str
    size_bytes: int
    content_type: str
    modified_at: datetime
    audio: AudioMetadataOut | None = None
