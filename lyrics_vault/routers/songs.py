"""Song library endpoints: two-phase upload, listing, detail, plays, edits, delete."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Response

from lyrics_vault.auth.oauth2 import get_current_user_id
from lyrics_vault.deps import get_song_service, get_upload_saga
from lyrics_vault.models import Lyrics, Song
from lyrics_vault.schemas.errors import ErrorResponse
from lyrics_vault.schemas.lyrics import LyricLineOut, LyricsOut
from lyrics_vault.schemas.pagination import PaginatedResponse, PaginationMeta, clamp_page
from lyrics_vault.schemas.song import (
    PlayCountResponse,
    SongCreate,
    SongDetail,
    SongInfo,
    SongUpdate,
    UploadGrantRequest,
    UploadGrantResponse,
    WriteGrantOut,
)
from lyrics_vault.songs.saga import CommitSongRequest, FileSpec, UploadSaga
from lyrics_vault.songs.service import SongService
from lyrics_vault.storage.object_store import WriteGrant

logger = logging.getLogger(__name__)

router = APIRouter(tags=["songs"])

_NOT_FOUND = {404: {"description": "Song not found", "model": ErrorResponse}}
_OWNER_ONLY = {
    401: {"description": "Missing or invalid bearer token", "model": ErrorResponse},
    403: {"description": "Caller is not the uploader", "model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


def song_to_info(song: Song) -> SongInfo:
    """Map a Song ORM model to a SongInfo schema."""
    return SongInfo(
        id=song.id,
        title=song.title,
        artist=song.artist,
        duration_seconds=song.duration_seconds,
        audio_url=song.audio_url,
        cover_art_url=song.cover_art_url,
        release_date=song.release_date,
        is_unreleased=song.is_unreleased,
        play_count=song.play_count,
        uploaded_by_id=song.uploaded_by_id,
        created_at=song.created_at,
    )


def lyrics_to_out(lyrics: Lyrics) -> LyricsOut:
    return LyricsOut(
        id=lyrics.id,
        song_id=lyrics.song_id,
        full_text=lyrics.full_text,
        is_generated=lyrics.is_generated,
        is_verified=lyrics.is_verified,
        lines=[
            LyricLineOut(
                id=line.id,
                text=line.text,
                start_time=line.start_time,
                end_time=line.end_time,
                order_index=line.order_index,
            )
            for line in sorted(lyrics.lines, key=lambda ln: ln.order_index)
        ],
        created_at=lyrics.created_at,
        updated_at=lyrics.updated_at,
    )


def _song_to_detail(song: Song) -> SongDetail:
    """Requires ``song.lyrics`` (and its lines) to be eagerly loaded."""
    return SongDetail(
        **song_to_info(song).model_dump(),
        updated_at=song.updated_at,
        lyrics=lyrics_to_out(song.lyrics) if song.lyrics is not None else None,
    )


def _grant_to_out(grant: WriteGrant) -> WriteGrantOut:
    return WriteGrantOut(
        key=grant.key,
        upload_url=grant.url,
        public_url=grant.public_url,
        content_type=grant.content_type,
        expires_in=grant.expires_in,
    )


# ---------------------------------------------------------------------------
# Upload (grant + commit)
# ---------------------------------------------------------------------------


@router.post(
    "/songs/uploads",
    response_model=UploadGrantResponse,
    responses={400: {"description": "Unsupported content type", "model": ErrorResponse}},
)
async def request_upload(
    body: UploadGrantRequest,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    saga: UploadSaga = Depends(get_upload_saga),  # noqa: B008
) -> UploadGrantResponse:
    """Issue time-boxed write grants for the audio file and optional cover art."""
    grants = await saga.request_grants(
        user_id,
        FileSpec(body.audio.filename, body.audio.content_type),
        FileSpec(body.cover.filename, body.cover.content_type) if body.cover else None,
    )
    return UploadGrantResponse(
        audio=_grant_to_out(grants.audio),
        cover=_grant_to_out(grants.cover) if grants.cover else None,
    )


@router.post(
    "/songs",
    response_model=SongInfo,
    status_code=201,
    responses={400: {"description": "Invalid keys or audio not uploaded", "model": ErrorResponse}},
)
async def commit_song(
    body: SongCreate,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    saga: UploadSaga = Depends(get_upload_saga),  # noqa: B008
) -> SongInfo:
    """Create the Song row for previously uploaded objects."""
    song = await saga.commit(
        user_id,
        CommitSongRequest(
            title=body.title,
            artist=body.artist,
            audio_key=body.audio_key,
            cover_key=body.cover_key,
            duration_seconds=body.duration_seconds,
            release_date=body.release_date,
            is_unreleased=body.is_unreleased,
        ),
    )
    return song_to_info(song)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get(
    "/songs",
    response_model=PaginatedResponse[SongInfo],
    responses={422: {"description": "Validation error"}},
)
async def list_songs(
    page: int = Query(default=1),
    pageSize: int = Query(default=50, alias="pageSize"),  # noqa: N803
    search: str | None = Query(default=None),
    uploadedBy: str | None = Query(default=None, alias="uploadedBy"),  # noqa: N803
    songs: SongService = Depends(get_song_service),  # noqa: B008
) -> PaginatedResponse[SongInfo]:
    """Newest-first page of songs, optionally filtered by a title/artist/lyrics substring."""
    page, page_size = clamp_page(page, pageSize)
    items, total = await songs.list_songs(page, page_size, search, uploadedBy)
    return PaginatedResponse[SongInfo](
        data=[song_to_info(s) for s in items],
        pagination=PaginationMeta.for_page(page, page_size, total),
    )


@router.get("/songs/{song_id}", response_model=SongDetail, responses=_NOT_FOUND)
async def get_song(
    song_id: uuid.UUID,
    songs: SongService = Depends(get_song_service),  # noqa: B008
) -> SongDetail:
    return _song_to_detail(await songs.get_with_lyrics(song_id))


@router.get(
    "/songs/{song_id}/lyrics",
    response_model=LyricsOut,
    responses={404: {"description": "Song or lyrics not found", "model": ErrorResponse}},
)
async def get_song_lyrics(
    song_id: uuid.UUID,
    songs: SongService = Depends(get_song_service),  # noqa: B008
) -> LyricsOut | Response:
    """Lyrics with lines in display order; 204 when the song has none yet."""
    song = await songs.get_with_lyrics(song_id)
    if song.lyrics is None:
        return Response(status_code=204)
    return lyrics_to_out(song.lyrics)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@router.post("/songs/{song_id}/play", response_model=PlayCountResponse, responses=_NOT_FOUND)
async def record_play(
    song_id: uuid.UUID,
    _user_id: str = Depends(get_current_user_id),  # noqa: B008
    songs: SongService = Depends(get_song_service),  # noqa: B008
) -> PlayCountResponse:
    count = await songs.increment_play_count(song_id)
    return PlayCountResponse(id=song_id, play_count=count)


@router.patch(
    "/songs/{song_id}",
    response_model=SongInfo,
    responses={**_NOT_FOUND, **_OWNER_ONLY},
)
async def update_song(
    song_id: uuid.UUID,
    body: SongUpdate,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    songs: SongService = Depends(get_song_service),  # noqa: B008
) -> SongInfo:
    """Owner-only metadata edit; only fields present in the body change."""
    song = await songs.update(user_id, song_id, body.model_dump(exclude_unset=True))
    return song_to_info(song)


@router.delete(
    "/songs/{song_id}",
    status_code=204,
    response_class=Response,
    responses={**_NOT_FOUND, **_OWNER_ONLY},
)
async def delete_song(
    song_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    saga: UploadSaga = Depends(get_upload_saga),  # noqa: B008
) -> Response:
    """Owner-only delete of the row, its vectors and its stored objects."""
    await saga.delete(user_id, song_id)
    return Response(status_code=204)
