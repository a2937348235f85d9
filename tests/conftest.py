"""Shared fixtures.

Store and ledger tests run against a file-backed SQLite database (via
aiosqlite) so that concurrent sessions get their own connections, as they
would with PostgreSQL.
"""

from __future__ import annotations

import io
import math
import struct
import uuid
import wave
from collections.abc import AsyncIterator
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from lyrics_vault import deps
from lyrics_vault.auth.jwt import create_access_token
from lyrics_vault.jobs.ledger import JobLedger
from lyrics_vault.lyrics.store import LyricsStore
from lyrics_vault.models import Base, LyricLine, Lyrics, Song
from lyrics_vault.search.ranker import HybridSearchRanker
from lyrics_vault.songs.saga import UploadSaga
from lyrics_vault.songs.service import SongService
from lyrics_vault.storage.object_store import LocalObjectStore

OWNER_ID = "user_owner"
OTHER_USER_ID = "user_other"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Fresh SQLite database per test with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable foreign keys for SQLite (off by default)."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def make_song(session_factory):
    """Insert a Song (optionally with lyrics) and return it."""

    async def _make(
        title: str = "Lucid Dreams",
        artist: str = "Juice WRLD",
        *,
        uploaded_by_id: str = OWNER_ID,
        lyrics: str | None = None,
        audio_key: str | None = None,
        cover_key: str | None = None,
        duration_seconds: float | None = None,
        created_at: datetime | None = None,
    ) -> Song:
        song = Song(
            id=uuid.uuid4(),
            title=title,
            artist=artist,
            audio_url=f"http://test/api/v1/storage/{audio_key or 'audio/x/song.mp3'}",
            audio_key=audio_key,
            cover_key=cover_key,
            duration_seconds=duration_seconds,
            uploaded_by_id=uploaded_by_id,
            play_count=0,
        )
        if created_at is not None:
            song.created_at = created_at
        async with session_factory() as session:
            session.add(song)
            await session.flush()
            if lyrics is not None:
                row = Lyrics(id=uuid.uuid4(), song_id=song.id, full_text=lyrics)
                session.add(row)
                await session.flush()
                session.add_all(
                    LyricLine(
                        lyrics_id=row.id,
                        text=text,
                        start_time=float(i),
                        end_time=float(i + 1),
                        order_index=i,
                    )
                    for i, text in enumerate(lyrics.splitlines())
                )
            await session.commit()
        return song

    return _make


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------


def _make_wav(duration_seconds: float = 1.0, sample_rate: int = 8000) -> bytes:
    """A mono 16-bit sine WAV, in memory."""
    buf = io.BytesIO()
    num_frames = int(sample_rate * duration_seconds)
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        frames = bytearray()
        for i in range(num_frames):
            sample = int(16000 * math.sin(2 * math.pi * 440 * i / sample_rate))
            frames.extend(struct.pack("<h", sample))
        wf.writeframes(bytes(frames))
    return buf.getvalue()


@pytest.fixture
def wav_bytes() -> bytes:
    return _make_wav()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def app():
    """The real application; the lifespan does not run under ASGITransport."""
    from lyrics_vault.main import create_app

    return create_app()


@pytest.fixture
def services(app, session_factory, tmp_path) -> SimpleNamespace:
    """Real SQLite-backed services wired into ``app`` via dependency overrides.

    The dispatcher and vector index are mocks; search runs without an
    embedder, so only the lexical lane answers.
    """
    dispatcher = MagicMock()
    dispatcher.publish.return_value = "run_test"
    index = AsyncMock()

    songs = SongService(session_factory)
    object_store = LocalObjectStore(tmp_path / "storage", "http://test", "test-secret")
    ns = SimpleNamespace(
        songs=songs,
        lyrics=LyricsStore(session_factory),
        ledger=JobLedger(session_factory),
        dispatcher=dispatcher,
        index=index,
        object_store=object_store,
        saga=UploadSaga(songs, object_store, index, dispatcher),
        ranker=HybridSearchRanker(songs),
    )

    app.dependency_overrides.update(
        {
            deps.get_song_service: lambda: ns.songs,
            deps.get_lyrics_store: lambda: ns.lyrics,
            deps.get_job_ledger: lambda: ns.ledger,
            deps.get_dispatcher: lambda: ns.dispatcher,
            deps.get_upload_saga: lambda: ns.saga,
            deps.get_ranker: lambda: ns.ranker,
            deps.get_object_store: lambda: ns.object_store,
        }
    )
    return ns


@pytest.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(OWNER_ID)}"}


@pytest.fixture
def other_auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(OTHER_USER_ID)}"}
