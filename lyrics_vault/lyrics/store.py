"""Persistence for Lyrics and their timed lines.

Line sets are always replaced as a whole inside one transaction: every
existing line of the Lyrics row is deleted before the new set is inserted,
so ``order_index`` stays a contiguous 0-based sequence.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from lyrics_vault.errors import DatabaseError, NotFoundError, ValidationError
from lyrics_vault.lyrics.timing import LyricLineData
from lyrics_vault.models import LyricLine, Lyrics, Song

logger = logging.getLogger(__name__)


def _line_rows(lyrics_id: uuid.UUID, lines: Sequence[LyricLineData]) -> list[LyricLine]:
    return [
        LyricLine(
            lyrics_id=lyrics_id,
            text=line.text,
            start_time=line.start_time,
            end_time=line.end_time,
            order_index=line.order_index,
        )
        for line in lines
    ]


def _check_contiguous(lines: Sequence[LyricLineData]) -> None:
    if sorted(line.order_index for line in lines) != list(range(len(lines))):
        raise ValidationError("lines", "order_index must be a contiguous 0-based sequence")
    if any(line.start_time < 0 for line in lines):
        raise ValidationError("lines", "start_time must be non-negative")


class LyricsStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_song_id(self, song_id: uuid.UUID) -> Lyrics | None:
        """Lyrics for a song with lines in ``order_index`` order, or None."""
        try:
            async with self._session_factory() as session:
                return await self._load(session, Lyrics.song_id == song_id)
        except SQLAlchemyError as exc:
            raise DatabaseError("get_lyrics", str(exc)) from exc

    async def exists_for_song(self, song_id: uuid.UUID) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(Lyrics.id).where(Lyrics.song_id == song_id))
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as exc:
            raise DatabaseError("check_lyrics", str(exc)) from exc

    async def create_manual(
        self,
        song_id: uuid.UUID,
        full_text: str,
        lines: Sequence[LyricLineData] = (),
    ) -> Lyrics:
        """Create user-authored lyrics, optionally with pre-timed lines.

        Raises:
            ValidationError: Blank text, bad line ordering, or the song
                already has lyrics.
            NotFoundError: The song does not exist.
        """
        if not full_text.strip():
            raise ValidationError("full_text", "must not be blank")
        _check_contiguous(lines)

        try:
            async with self._session_factory() as session:
                if await session.get(Song, song_id) is None:
                    raise NotFoundError("song", song_id)

                lyrics = Lyrics(
                    id=uuid.uuid4(),
                    song_id=song_id,
                    full_text=full_text,
                    is_generated=False,
                    is_verified=False,
                )
                session.add(lyrics)
                await session.flush()
                session.add_all(_line_rows(lyrics.id, lines))
                await session.commit()
                return await self._load(session, Lyrics.id == lyrics.id)
        except IntegrityError as exc:
            raise ValidationError("song_id", "lyrics already exist for this song") from exc
        except SQLAlchemyError as exc:
            raise DatabaseError("create_lyrics", str(exc)) from exc

    async def update(
        self,
        lyrics_id: uuid.UUID,
        *,
        full_text: str | None = None,
        is_verified: bool | None = None,
        lines: Sequence[LyricLineData] | None = None,
    ) -> Lyrics:
        """Update lyrics in place; ``lines`` (when given) replaces every line."""
        if full_text is not None and not full_text.strip():
            raise ValidationError("full_text", "must not be blank")
        if lines is not None:
            _check_contiguous(lines)

        try:
            async with self._session_factory() as session:
                lyrics = await session.get(Lyrics, lyrics_id)
                if lyrics is None:
                    raise NotFoundError("lyrics", lyrics_id)

                if full_text is not None:
                    lyrics.full_text = full_text
                if is_verified is not None:
                    lyrics.is_verified = is_verified
                if lines is not None:
                    await session.execute(
                        delete(LyricLine).where(LyricLine.lyrics_id == lyrics_id)
                    )
                    session.add_all(_line_rows(lyrics_id, lines))

                await session.commit()
                return await self._load(session, Lyrics.id == lyrics_id)
        except SQLAlchemyError as exc:
            raise DatabaseError("update_lyrics", str(exc)) from exc

    async def replace_lines(
        self,
        song_id: uuid.UUID,
        full_text: str,
        lines: Sequence[LyricLineData],
        *,
        is_generated: bool | None = True,
    ) -> Lyrics:
        """Transactional replace-all of a song's Lyrics row and lines.

        Creates the Lyrics row when absent. ``is_generated=None`` keeps the
        flag of an existing row (new rows default to user-authored).
        """
        _check_contiguous(lines)
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(select(Lyrics).where(Lyrics.song_id == song_id))
                lyrics = result.scalar_one_or_none()
                if lyrics is None:
                    lyrics = Lyrics(
                        id=uuid.uuid4(),
                        song_id=song_id,
                        full_text=full_text,
                        is_generated=bool(is_generated),
                    )
                    session.add(lyrics)
                    await session.flush()
                else:
                    lyrics.full_text = full_text
                    if is_generated is not None:
                        lyrics.is_generated = is_generated
                    await session.execute(
                        delete(LyricLine).where(LyricLine.lyrics_id == lyrics.id)
                    )

                session.add_all(_line_rows(lyrics.id, lines))
                lyrics_id = lyrics.id

            async with self._session_factory() as session:
                saved = await self._load(session, Lyrics.id == lyrics_id)
        except SQLAlchemyError as exc:
            raise DatabaseError("replace_lyrics", str(exc)) from exc

        logger.info("Replaced lyrics for song %s with %d lines", song_id, len(lines))
        return saved

    async def get(self, lyrics_id: uuid.UUID) -> Lyrics:
        try:
            async with self._session_factory() as session:
                lyrics = await self._load(session, Lyrics.id == lyrics_id)
        except SQLAlchemyError as exc:
            raise DatabaseError("get_lyrics", str(exc)) from exc
        if lyrics is None:
            raise NotFoundError("lyrics", lyrics_id)
        return lyrics

    async def delete(self, lyrics_id: uuid.UUID) -> None:
        """Delete a Lyrics row; its lines cascade."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(Lyrics).where(Lyrics.id == lyrics_id))
                await session.commit()
        except SQLAlchemyError as exc:
            raise DatabaseError("delete_lyrics", str(exc)) from exc
        if result.rowcount == 0:
            raise NotFoundError("lyrics", lyrics_id)
        logger.info("Deleted lyrics %s", lyrics_id)

    async def save_embedding(self, lyrics_id: uuid.UUID, vector: list[float]) -> None:
        try:
            async with self._session_factory() as session:
                lyrics = await session.get(Lyrics, lyrics_id)
                if lyrics is None:
                    raise NotFoundError("lyrics", lyrics_id)
                lyrics.embedding = vector
                await session.commit()
        except SQLAlchemyError as exc:
            raise DatabaseError("save_lyrics_embedding", str(exc)) from exc

    @staticmethod
    async def _load(session: AsyncSession, criterion) -> Lyrics | None:
        result = await session.execute(
            select(Lyrics)
            .where(criterion)
            .options(selectinload(Lyrics.lines))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
