"""Lyrics endpoints: manual authoring plus background enrichment triggers.

Generate/sync/embed endpoints only publish an event and return the run id;
clients poll ``GET /songs/{id}/jobs`` for the ledger status.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Response

from lyrics_vault.auth.oauth2 import get_current_user_id
from lyrics_vault.deps import get_dispatcher, get_job_ledger, get_lyrics_store, get_song_service
from lyrics_vault.errors import ValidationError
from lyrics_vault.jobs.dispatcher import (
    EVENT_GENERATE_EMBEDDINGS,
    EVENT_GENERATE_LYRICS,
    EVENT_SYNC_LYRICS,
    EventDispatcher,
)
from lyrics_vault.jobs.ledger import JobLedger
from lyrics_vault.lyrics.store import LyricsStore
from lyrics_vault.lyrics.timing import LyricLineData
from lyrics_vault.routers.songs import lyrics_to_out
from lyrics_vault.schemas.errors import ErrorResponse
from lyrics_vault.schemas.lyrics import (
    GenerateLyricsIn,
    JobOut,
    JobStartedResponse,
    LyricLineIn,
    LyricsCreate,
    LyricsOut,
    LyricsUpdate,
    SyncLyricsIn,
)
from lyrics_vault.songs.service import SongService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["lyrics"])

_NOT_FOUND = {404: {"description": "Song or lyrics not found", "model": ErrorResponse}}


def _line_data(lines: list[LyricLineIn]) -> list[LyricLineData]:
    return [
        LyricLineData(
            text=line.text,
            start_time=line.start_time,
            end_time=line.end_time,
            order_index=line.order_index,
        )
        for line in lines
    ]


# ---------------------------------------------------------------------------
# Manual lyrics
# ---------------------------------------------------------------------------


@router.post(
    "/songs/{song_id}/lyrics",
    response_model=LyricsOut,
    status_code=201,
    responses={**_NOT_FOUND, 400: {"description": "Lyrics already exist", "model": ErrorResponse}},
)
async def create_lyrics(
    song_id: uuid.UUID,
    body: LyricsCreate,
    _user_id: str = Depends(get_current_user_id),  # noqa: B008
    store: LyricsStore = Depends(get_lyrics_store),  # noqa: B008
) -> LyricsOut:
    lyrics = await store.create_manual(song_id, body.full_text, _line_data(body.lines))
    return lyrics_to_out(lyrics)


@router.put("/lyrics/{lyrics_id}", response_model=LyricsOut, responses=_NOT_FOUND)
async def update_lyrics(
    lyrics_id: uuid.UUID,
    body: LyricsUpdate,
    _user_id: str = Depends(get_current_user_id),  # noqa: B008
    store: LyricsStore = Depends(get_lyrics_store),  # noqa: B008
) -> LyricsOut:
    """Edit text or verification; ``lines`` replaces the whole line set."""
    lyrics = await store.update(
        lyrics_id,
        full_text=body.full_text,
        is_verified=body.is_verified,
        lines=_line_data(body.lines) if body.lines is not None else None,
    )
    return lyrics_to_out(lyrics)


@router.delete(
    "/lyrics/{lyrics_id}", status_code=204, response_class=Response, responses=_NOT_FOUND
)
async def delete_lyrics(
    lyrics_id: uuid.UUID,
    _user_id: str = Depends(get_current_user_id),  # noqa: B008
    store: LyricsStore = Depends(get_lyrics_store),  # noqa: B008
) -> Response:
    await store.delete(lyrics_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Background jobs
# ---------------------------------------------------------------------------


@router.post(
    "/songs/{song_id}/lyrics/generate",
    response_model=JobStartedResponse,
    status_code=202,
    responses=_NOT_FOUND,
)
async def generate_lyrics(
    song_id: uuid.UUID,
    body: GenerateLyricsIn | None = None,
    _user_id: str = Depends(get_current_user_id),  # noqa: B008
    songs: SongService = Depends(get_song_service),  # noqa: B008
    dispatcher: EventDispatcher = Depends(get_dispatcher),  # noqa: B008
) -> JobStartedResponse:
    """Transcribe the song's audio and store timed lyrics in the background."""
    body = body or GenerateLyricsIn()
    song = await songs.get(song_id)
    run_id = dispatcher.publish(
        EVENT_GENERATE_LYRICS,
        {
            "song_id": str(song.id),
            "audio_url": song.audio_url,
            "title": song.title,
            "artist": song.artist,
            "duration_seconds": body.duration_seconds or song.duration_seconds,
            "beat_times": body.beat_times,
        },
    )
    return JobStartedResponse(event=EVENT_GENERATE_LYRICS, song_id=song.id, run_id=run_id)


@router.post(
    "/songs/{song_id}/lyrics/sync",
    response_model=JobStartedResponse,
    status_code=202,
    responses={**_NOT_FOUND, 400: {"description": "No lyrics to sync", "model": ErrorResponse}},
)
async def sync_lyrics(
    song_id: uuid.UUID,
    body: SyncLyricsIn | None = None,
    _user_id: str = Depends(get_current_user_id),  # noqa: B008
    songs: SongService = Depends(get_song_service),  # noqa: B008
    dispatcher: EventDispatcher = Depends(get_dispatcher),  # noqa: B008
) -> JobStartedResponse:
    """Re-time the given (or stored) lyrics text against the song in the background."""
    body = body or SyncLyricsIn()
    song = await songs.get_with_lyrics(song_id)
    full_text = body.full_text
    if full_text is None and song.lyrics is not None:
        full_text = song.lyrics.full_text
    if not full_text:
        raise ValidationError("full_text", "song has no lyrics to sync")

    run_id = dispatcher.publish(
        EVENT_SYNC_LYRICS,
        {
            "song_id": str(song.id),
            "full_text": full_text,
            "audio_url": song.audio_url,
            "duration_seconds": body.duration_seconds or song.duration_seconds,
            "beat_times": body.beat_times,
        },
    )
    return JobStartedResponse(event=EVENT_SYNC_LYRICS, song_id=song.id, run_id=run_id)


@router.post(
    "/songs/{song_id}/embeddings/generate",
    response_model=JobStartedResponse,
    status_code=202,
    responses=_NOT_FOUND,
)
async def generate_embeddings(
    song_id: uuid.UUID,
    _user_id: str = Depends(get_current_user_id),  # noqa: B008
    songs: SongService = Depends(get_song_service),  # noqa: B008
    dispatcher: EventDispatcher = Depends(get_dispatcher),  # noqa: B008
) -> JobStartedResponse:
    song = await songs.get(song_id)
    run_id = dispatcher.publish(EVENT_GENERATE_EMBEDDINGS, {"song_id": str(song.id)})
    return JobStartedResponse(event=EVENT_GENERATE_EMBEDDINGS, song_id=song.id, run_id=run_id)


@router.get("/songs/{song_id}/jobs", response_model=list[JobOut], responses=_NOT_FOUND)
async def list_jobs(
    song_id: uuid.UUID,
    songs: SongService = Depends(get_song_service),  # noqa: B008
    ledger: JobLedger = Depends(get_job_ledger),  # noqa: B008
) -> list[JobOut]:
    """Ledger rows for the song, newest first."""
    await songs.get(song_id)
    return [
        JobOut(
            id=job.id,
            kind=job.kind,
            status=job.status,
            run_id=job.run_id,
            error=job.error,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )
        for job in await ledger.list_for_song(song_id)
    ]
