"""Song upload and delete flows across object storage and the database.

Create is two-phase:

1. Grant: derive a storage key per artifact and hand out a time-boxed write
   grant. Nothing is persisted.
2. Commit: after the client uploaded the bytes, insert the Song row. Keys
   already stored on a song are rejected before anything runs. If the
   commit fails, the attempt's keys that no stored song references are
   deleted, with bounded concurrency and an overall deadline. Compensation
   errors are logged and swallowed; the caller always sees the original
   commit error.

Delete checks ownership before any side effect, removes the row first and
then best-effort deletes vectors and storage objects.
"""

from __future__ import annotations

import functools
import logging
import re
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from lyrics_vault.concurrency import bounded_gather
from lyrics_vault.embeddings.vector_index import VectorIndex
from lyrics_vault.errors import AuthorizationError, ValidationError
from lyrics_vault.jobs.dispatcher import EVENT_GENERATE_EMBEDDINGS, Dispatcher
from lyrics_vault.models import Song
from lyrics_vault.settings import settings
from lyrics_vault.songs.service import NewSong, SongService
from lyrics_vault.storage.object_store import ObjectStore, WriteGrant

logger = logging.getLogger(__name__)

AUDIO_PREFIX = "audio"
COVER_PREFIX = "covers"
COVER_CONTENT_TYPES: frozenset[str] = frozenset({"image/jpeg", "image/png", "image/webp"})

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


@dataclass(frozen=True)
class FileSpec:
    filename: str
    content_type: str


@dataclass(frozen=True)
class UploadGrants:
    audio: WriteGrant
    cover: WriteGrant | None = None


@dataclass(frozen=True)
class CommitSongRequest:
    title: str
    artist: str
    audio_key: str
    cover_key: str | None = None
    duration_seconds: float | None = None
    release_date: date | None = None
    is_unreleased: bool = True


def sanitize(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value)


def storage_key(prefix: str, uploader_id: str, filename: str, now_ms: int) -> str:
    """``{prefix}/{uploader}/{epoch_ms}-{sanitized filename}``."""
    return f"{prefix}/{sanitize(uploader_id)}/{now_ms}-{sanitize(filename)}"


class UploadSaga:
    def __init__(
        self,
        songs: SongService,
        store: ObjectStore,
        vector_index: VectorIndex | None = None,
        dispatcher: Dispatcher | None = None,
        *,
        grant_ttl_seconds: int = settings.storage_grant_ttl_seconds,
        compensation_concurrency: int = settings.compensation_concurrency,
        compensation_timeout_seconds: float = settings.compensation_timeout_seconds,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._songs = songs
        self._store = store
        self._index = vector_index
        self._dispatcher = dispatcher
        self._ttl = grant_ttl_seconds
        self._concurrency = compensation_concurrency
        self._compensation_timeout = compensation_timeout_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Grant phase
    # ------------------------------------------------------------------

    async def request_grants(
        self, uploader_id: str, audio: FileSpec, cover: FileSpec | None = None
    ) -> UploadGrants:
        if not audio.filename.strip():
            raise ValidationError("audio.filename", "must not be blank")
        if not audio.content_type.startswith("audio/"):
            raise ValidationError("audio.content_type", "must be an audio/* type")
        if cover is not None:
            if not cover.filename.strip():
                raise ValidationError("cover.filename", "must not be blank")
            if cover.content_type not in COVER_CONTENT_TYPES:
                raise ValidationError(
                    "cover.content_type", f"must be one of {sorted(COVER_CONTENT_TYPES)}"
                )

        now_ms = int(self._clock() * 1000)
        audio_grant = await self._store.presign_write(
            storage_key(AUDIO_PREFIX, uploader_id, audio.filename, now_ms),
            audio.content_type,
            self._ttl,
        )
        cover_grant = None
        if cover is not None:
            cover_grant = await self._store.presign_write(
                storage_key(COVER_PREFIX, uploader_id, cover.filename, now_ms),
                cover.content_type,
                self._ttl,
            )

        logger.info("Issued upload grants for %s (cover=%s)", uploader_id, cover is not None)
        return UploadGrants(audio=audio_grant, cover=cover_grant)

    # ------------------------------------------------------------------
    # Commit phase
    # ------------------------------------------------------------------

    async def commit(self, uploader_id: str, request: CommitSongRequest) -> Song:
        """Persist the Song; on failure delete this attempt's unclaimed storage keys.

        A key already stored on another song is rejected up front and is
        never compensated, so a retried commit cannot orphan a live song.

        Raises:
            ValidationError: A key does not belong to the uploader, is
                already used by a song, or the audio object was never
                uploaded.
            DatabaseError: The insert failed (after compensation ran).
        """
        self._check_owned_key(uploader_id, request.audio_key, AUDIO_PREFIX, "audio_key")
        if request.cover_key is not None:
            self._check_owned_key(uploader_id, request.cover_key, COVER_PREFIX, "cover_key")

        keys = [k for k in (request.audio_key, request.cover_key) if k]
        claimed = await self._songs.referenced_keys(keys)
        if claimed:
            field = "audio_key" if request.audio_key in claimed else "cover_key"
            raise ValidationError(field, "storage key already belongs to a song")

        try:
            if not await self._store.exists(request.audio_key):
                raise ValidationError("audio_key", "audio object has not been uploaded")
            song = await self._songs.create(
                uploader_id,
                NewSong(
                    title=request.title,
                    artist=request.artist,
                    audio_url=self._store.public_url(request.audio_key),
                    audio_key=request.audio_key,
                    cover_art_url=(
                        self._store.public_url(request.cover_key) if request.cover_key else None
                    ),
                    cover_key=request.cover_key,
                    duration_seconds=request.duration_seconds,
                    release_date=request.release_date,
                    is_unreleased=request.is_unreleased,
                ),
            )
        except Exception as exc:
            logger.warning("Song commit failed for %s, compensating: %s", uploader_id, exc)
            await self._delete_objects(await self._unclaimed(keys))
            raise

        self._publish_embeddings(song)
        return song

    @staticmethod
    def _check_owned_key(uploader_id: str, key: str, prefix: str, field: str) -> None:
        expected = f"{prefix}/{sanitize(uploader_id)}/"
        if not key.startswith(expected):
            raise ValidationError(field, f"must start with {expected!r}")

    async def _unclaimed(self, keys: list[str]) -> list[str]:
        # A concurrent commit may have stored one of these keys meanwhile
        try:
            claimed = await self._songs.referenced_keys(keys)
        except Exception as exc:
            logger.warning("Cannot verify %s are unused, keeping them: %s", keys, exc)
            return []
        for key in claimed:
            logger.info("Keeping %s, it belongs to a stored song", key)
        return [key for key in keys if key not in claimed]

    async def _delete_objects(self, keys: list[str]) -> None:
        if not keys:
            return
        outcomes = await bounded_gather(
            [functools.partial(self._store.delete, key) for key in keys],
            limit=self._concurrency,
            timeout=self._compensation_timeout,
        )
        for key, outcome in zip(keys, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.warning("Storage delete of %s failed: %r", key, outcome)
            else:
                logger.info("Storage delete of %s done", key)

    def _publish_embeddings(self, song: Song) -> None:
        if self._dispatcher is None:
            return
        try:
            self._dispatcher.publish(EVENT_GENERATE_EMBEDDINGS, {"song_id": str(song.id)})
        except Exception as exc:
            logger.warning("Could not schedule embeddings for song %s: %s", song.id, exc)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, actor_id: str, song_id: uuid.UUID) -> None:
        """Owner-only delete.

        Raises:
            NotFoundError: No such song.
            AuthorizationError: ``actor_id`` is not the uploader; nothing
                has been touched.
        """
        song = await self._songs.get(song_id)
        if song.uploaded_by_id != actor_id:
            raise AuthorizationError(actor_id, f"song {song_id}")

        await self._songs.delete(song_id)
        logger.info("Deleted song %s for %s", song_id, actor_id)

        if self._index is not None:
            try:
                await self._index.delete_for_song(song_id)
            except Exception as exc:
                logger.warning("Could not delete vectors for song %s: %s", song_id, exc)

        keys = [k for k in (song.audio_key, song.cover_key) if k]
        await self._delete_objects(keys)
