"""Object storage endpoints: grant-authorised uploads and public reads."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse

from lyrics_vault.deps import get_object_store
from lyrics_vault.schemas.errors import ErrorResponse
from lyrics_vault.schemas.storage import AudioMetadataOut, ObjectInfoOut
from lyrics_vault.storage.object_store import LocalObjectStore, ObjectInfo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["storage"])


def _info_to_out(info: ObjectInfo) -> ObjectInfoOut:
    audio = None
    if info.audio is not None:
        audio = AudioMetadataOut(
            title=info.audio.title,
            artist=info.audio.artist,
            album=info.audio.album,
            duration_seconds=info.audio.duration_seconds,
            sample_rate=info.audio.sample_rate,
            channels=info.audio.channels,
            bitrate=info.audio.bitrate,
            format=info.audio.format,
        )
    return ObjectInfoOut(
        key=info.key,
        size_bytes=info.size_bytes,
        content_type=info.content_type,
        modified_at=info.modified_at,
        audio=audio,
    )


@router.put(
    "/storage/{key:path}",
    response_model=ObjectInfoOut,
    status_code=201,
    responses={400: {"description": "Invalid grant or content", "model": ErrorResponse}},
)
async def upload_object(
    key: str,
    request: Request,
    grant: str = Query(..., min_length=1),
    store: LocalObjectStore = Depends(get_object_store),  # noqa: B008
) -> ObjectInfoOut:
    """Store the raw request body under ``key`` using a write grant from ``/songs/uploads``."""
    data = await request.body()
    info = await store.write_with_grant(key, grant, data)
    return _info_to_out(info)


@router.get(
    "/storage/{key:path}/metadata",
    response_model=ObjectInfoOut,
    responses={404: {"description": "Object not found", "model": ErrorResponse}},
)
async def get_object_metadata(
    key: str,
    store: LocalObjectStore = Depends(get_object_store),  # noqa: B008
) -> ObjectInfoOut:
    return _info_to_out(await store.head(key))


@router.get(
    "/storage/{key:path}",
    response_model=None,
    responses={
        200: {"content": {"audio/mpeg": {}}, "description": "Stored object"},
        206: {"description": "Partial content (Range request)"},
        404: {"description": "Object not found", "model": ErrorResponse},
    },
)
async def get_object(
    key: str,
    store: LocalObjectStore = Depends(get_object_store),  # noqa: B008
) -> FileResponse:
    """Public read. Starlette's FileResponse handles Range requests for seeking."""
    path, media_type = await store.locate(key)
    return FileResponse(path=path, media_type=media_type, filename=path.name)
