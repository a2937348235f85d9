"""Song persistence: CRUD, play counts, lexical lookup and batch fetch."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from lyrics_vault.errors import AuthorizationError, DatabaseError, NotFoundError, ValidationError
from lyrics_vault.models import Lyrics, Song

logger = logging.getLogger(__name__)

# Fields an owner may edit after creation
EDITABLE_FIELDS: frozenset[str] = frozenset(
    {"title", "artist", "release_date", "is_unreleased", "duration_seconds"}
)


@dataclass(frozen=True)
class NewSong:
    title: str
    artist: str
    audio_url: str
    audio_key: str | None = None
    cover_art_url: str | None = None
    cover_key: str | None = None
    duration_seconds: float | None = None
    release_date: date | None = None
    is_unreleased: bool = True


def like_pattern(query: str) -> str:
    """Case-insensitive substring pattern with LIKE wildcards escaped."""
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _search_clause(query: str):
    pattern = like_pattern(query)
    return or_(
        Song.title.ilike(pattern, escape="\\"),
        Song.artist.ilike(pattern, escape="\\"),
        Lyrics.full_text.ilike(pattern, escape="\\"),
    )


class SongService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, uploaded_by_id: str, data: NewSong) -> Song:
        if not data.title.strip():
            raise ValidationError("title", "must not be blank")
        if not data.audio_url:
            raise ValidationError("audio_url", "is required")

        try:
            async with self._session_factory() as session:
                song = Song(
                    title=data.title.strip(),
                    artist=data.artist.strip(),
                    audio_url=data.audio_url,
                    audio_key=data.audio_key,
                    cover_art_url=data.cover_art_url,
                    cover_key=data.cover_key,
                    duration_seconds=data.duration_seconds,
                    release_date=data.release_date,
                    is_unreleased=data.is_unreleased,
                    uploaded_by_id=uploaded_by_id,
                    play_count=0,
                )
                session.add(song)
                await session.commit()
                await session.refresh(song)
        except IntegrityError as exc:
            raise ValidationError("audio_key", "storage key already belongs to a song") from exc
        except SQLAlchemyError as exc:
            raise DatabaseError("create_song", str(exc)) from exc

        logger.info(
            "Created song %s (%s - %s) for %s", song.id, song.artist, song.title, uploaded_by_id
        )
        return song

    async def get(self, song_id: uuid.UUID) -> Song:
        try:
            async with self._session_factory() as session:
                song = await session.get(Song, song_id)
        except SQLAlchemyError as exc:
            raise DatabaseError("get_song", str(exc)) from exc
        if song is None:
            raise NotFoundError("song", song_id)
        return song

    async def get_with_lyrics(self, song_id: uuid.UUID) -> Song:
        songs = await self.get_many([song_id])
        if song_id not in songs:
            raise NotFoundError("song", song_id)
        return songs[song_id]

    async def get_many(self, song_ids: list[uuid.UUID]) -> dict[uuid.UUID, Song]:
        """Batch fetch songs with lyrics and lines loaded, keyed by id."""
        if not song_ids:
            return {}
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Song)
                    .where(Song.id.in_(song_ids))
                    .options(selectinload(Song.lyrics).selectinload(Lyrics.lines))
                )
                return {s.id: s for s in result.scalars().all()}
        except SQLAlchemyError as exc:
            raise DatabaseError("get_songs", str(exc)) from exc

    async def referenced_keys(self, keys: list[str]) -> set[str]:
        """The subset of ``keys`` used as audio or cover key by a stored song."""
        if not keys:
            return set()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Song.audio_key, Song.cover_key).where(
                        or_(Song.audio_key.in_(keys), Song.cover_key.in_(keys))
                    )
                )
                used = {key for row in result.all() for key in row if key is not None}
        except SQLAlchemyError as exc:
            raise DatabaseError("referenced_keys", str(exc)) from exc
        return used & set(keys)

    async def list_songs(
        self,
        page: int = 1,
        page_size: int = 50,
        search: str | None = None,
        uploaded_by_id: str | None = None,
    ) -> tuple[list[Song], int]:
        """Newest-first page of songs plus the total match count."""
        stmt = select(Song).outerjoin(Lyrics, Lyrics.song_id == Song.id)
        count_stmt = select(func.count(Song.id)).outerjoin(Lyrics, Lyrics.song_id == Song.id)
        if search and search.strip():
            clause = _search_clause(search.strip())
            stmt = stmt.where(clause)
            count_stmt = count_stmt.where(clause)
        if uploaded_by_id is not None:
            stmt = stmt.where(Song.uploaded_by_id == uploaded_by_id)
            count_stmt = count_stmt.where(Song.uploaded_by_id == uploaded_by_id)

        stmt = stmt.order_by(Song.created_at.desc(), Song.id).offset((page - 1) * page_size)
        stmt = stmt.limit(page_size)

        try:
            async with self._session_factory() as session:
                total = (await session.execute(count_stmt)).scalar_one()
                songs = list((await session.execute(stmt)).scalars().all())
        except SQLAlchemyError as exc:
            raise DatabaseError("list_songs", str(exc)) from exc
        return songs, total

    async def search_lexical(self, query: str, limit: int) -> list[Song]:
        """Songs whose title, artist or lyrics contain ``query`` (any case).

        Returned in store order (newest first), lyrics loaded.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Song)
                    .outerjoin(Lyrics, Lyrics.song_id == Song.id)
                    .where(_search_clause(query))
                    .options(selectinload(Song.lyrics))
                    .order_by(Song.created_at.desc(), Song.id)
                    .limit(limit)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise DatabaseError("search_songs", str(exc)) from exc

    async def increment_play_count(self, song_id: uuid.UUID) -> int:
        """Atomically add one play; returns the new count."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(Song)
                    .where(Song.id == song_id)
                    .values(play_count=Song.play_count + 1)
                    .returning(Song.play_count)
                )
                count = result.scalar_one_or_none()
                await session.commit()
        except SQLAlchemyError as exc:
            raise DatabaseError("increment_play_count", str(exc)) from exc
        if count is None:
            raise NotFoundError("song", song_id)
        return count

    async def update(self, actor_id: str, song_id: uuid.UUID, changes: dict[str, Any]) -> Song:
        """Owner-only metadata update. Unknown fields are rejected."""
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(", ".join(sorted(unknown)), "field is not editable")
        for name in ("title", "artist"):
            if name in changes and not str(changes[name] or "").strip():
                raise ValidationError(name, "must not be blank")
        if "is_unreleased" in changes and changes["is_unreleased"] is None:
            raise ValidationError("is_unreleased", "must be true or false")

        try:
            async with self._session_factory() as session:
                song = await session.get(Song, song_id)
                if song is None:
                    raise NotFoundError("song", song_id)
                if song.uploaded_by_id != actor_id:
                    raise AuthorizationError(actor_id, f"song {song_id}")
                for name, value in changes.items():
                    setattr(song, name, value)
                await session.commit()
                await session.refresh(song)
        except SQLAlchemyError as exc:
            raise DatabaseError("update_song", str(exc)) from exc
        return song

    async def save_title_embedding(self, song_id: uuid.UUID, vector: list[float]) -> None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(Song).where(Song.id == song_id).values(title_embedding=vector)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise DatabaseError("save_title_embedding", str(exc)) from exc
        if result.rowcount == 0:
            raise NotFoundError("song", song_id)

    async def delete(self, song_id: uuid.UUID) -> None:
        """Delete the row; lyrics, lines and jobs cascade in the database."""
        try:
            async with self._session_factory() as session:
                await session.execute(delete(Song).where(Song.id == song_id))
                await session.commit()
        except SQLAlchemyError as exc:
            raise DatabaseError("delete_song", str(exc)) from exc
