from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lyrics_vault.models import Base


class Song(Base):
    __tablename__ = "songs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Core metadata
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    artist: Mapped[str] = mapped_column(String(500), nullable=False)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_unreleased: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Storage artifacts (public URL + object key for cleanup); a key backs at most one song
    audio_url: Mapped[str] = mapped_column(Text, nullable=False)
    audio_key: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    cover_art_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_key: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)

    # Only ever incremented, never assigned
    play_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Ownership: only the uploader may delete or edit
    uploaded_by_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Vector copy of the title embedding (search reads Qdrant, not this column)
    title_embedding: Mapped[list[float] | None] = mapped_column(JSON, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    lyrics: Mapped[Lyrics | None] = relationship(
        back_populates="song",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_songs_uploaded_by", "uploaded_by_id"),
        Index("ix_songs_created_at", "created_at"),
        Index("ix_songs_artist_title", "artist", "title"),
    )


class Lyrics(Base):
    __tablename__ = "lyrics"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    song_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("songs.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    full_text: Mapped[str] = mapped_column(Text, nullable=False)
    is_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    song: Mapped[Song] = relationship(back_populates="lyrics")
    lines: Mapped[list[LyricLine]] = relationship(
        back_populates="lyrics",
        order_by="LyricLine.order_index",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class LyricLine(Base):
    __tablename__ = "lyric_lines"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lyrics_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("lyrics.id", ondelete="CASCADE"),
        nullable=False,
    )

    text: Mapped[str] = mapped_column(Text, nullable=False)
    start_time: Mapped[float] = mapped_column(Float, nullable=False)
    end_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    # Authoritative display order; insertion order is not
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    lyrics: Mapped[Lyrics] = relationship(back_populates="lines")

    __table_args__ = (UniqueConstraint("lyrics_id", "order_index", name="uq_lyric_lines_order"),)
