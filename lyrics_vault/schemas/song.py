from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import BaseModel, Field

from lyrics_vault.schemas.lyrics import LyricsOut


class UploadFileIn(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    content_type: str = "audio/mpeg"


class UploadGrantRequest(BaseModel):
    audio: UploadFileIn
    cover: UploadFileIn | None = None


class WriteGrantOut(BaseModel):
    key: str
    upload_url: str
    public_url: str
    content_type: str
    expires_in: int


class UploadGrantResponse(BaseModel):
    audio: WriteGrantOut
    cover: WriteGrantOut | None = None


class SongCreate(BaseModel):
    """Commit phase body: the storage keys returned by the grant phase."""

    title: str = Field(min_length=1, max_length=500)
    artist: str = Field(min_length=1, max_length=500)
    audio_key: str = Field(min_length=1)
    cover_key: str | None = None
    duration_seconds: float | None = Field(default=None, gt=0)
    release_date: date | None = None
    is_unreleased: bool = True


class SongUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    artist: str | None = Field(default=None, min_length=1, max_length=500)
    duration_seconds: float | None = Field(default=None, gt=0)
    release_date: date | None = None
    is_unreleased: bool | None = None


class SongInfo(BaseModel):
    """Song metadata returned in listings and search results."""

    id: uuid.UUID
    title: str
    artist: str
    duration_seconds: float | None = None
    audio_url: str
    cover_art_url: str | None = None
    release_date: date | None = None
    is_unreleased: bool
    play_count: int
    uploaded_by_id: str
    created_at: datetime | None = None


class SongDetail(SongInfo):
    updated_at: datetime | None = None
    lyrics: LyricsOut | None = None


class PlayCountResponse(BaseModel):
    id: uuid.UUID
    play_count: int
