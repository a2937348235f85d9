"""Request/response bodies for lyrics and enrichment job endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from lyrics_vault.models.job import JobKind, JobStatus


class LyricLineIn(BaseModel):
    text: str = Field(min_length=1)
    start_time: float = Field(ge=0)
    end_time: float | None = Field(default=None, ge=0)
    order_index: int = Field(ge=0)


class LyricLineOut(BaseModel):
    id: uuid.UUID
    text: str
    start_time: float
    end_time: float | None = None
    order_index: int


class LyricsOut(BaseModel):
    id: uuid.UUID
    song_id: uuid.UUID
    full_text: str
    is_generated: bool
    is_verified: bool
    lines: list[LyricLineOut]
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LyricsCreate(BaseModel):
    full_text: str = Field(min_length=1)
    lines: list[LyricLineIn] = Field(default_factory=list)


class LyricsUpdate(BaseModel):
    """Partial update. ``lines``, when present, replaces every line."""

    full_text: str | None = Field(default=None, min_length=1)
    is_verified: bool | None = None
    lines: list[LyricLineIn] | None = None


class GenerateLyricsIn(BaseModel):
    duration_seconds: float | None = Field(default=None, gt=0)
    beat_times: list[float] | None = None


class SyncLyricsIn(BaseModel):
    """Re-time lyrics. Without ``full_text`` the song's stored lyrics are used."""

    full_text: str | None = Field(default=None, min_length=1)
    duration_seconds: float | None = Field(default=None, gt=0)
    beat_times: list[float] | None = None


class JobStartedResponse(BaseModel):
    status: Literal["started"] = "started"
    event: str
    song_id: uuid.UUID
    run_id: str


class JobOut(BaseModel):
    id: uuid.UUID
    kind: JobKind
    status: JobStatus
    run_id: str
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
