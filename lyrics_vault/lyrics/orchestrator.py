"""Lyrics enrichment orchestration: fetch, transcribe, time, persist, embed.

One run is a sequential pipeline of remote calls:

    START -> CHECK_EXISTING -> FETCH_AUDIO -> TRANSCRIBE -> SYNC_TIMESTAMPS
          -> PERSIST -> EMBED -> DONE

with FAILED reachable from every phase. Each phase transition is written to
the JobLedger under the run's ``run_id``, so re-delivering the same event
updates the same ledger row instead of creating a new one.

Retry policy for TRANSCRIBE: exponential backoff (base 0.6s, doubling),
retried only while the error is classified transient, capped at 5
attempts. On exhaustion the error propagates and the run is recorded
FAILED, unless ``placeholder_on_exhaustion`` is set, in which case a
placeholder lyrics body is persisted and the run completes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from lyrics_vault.ai.text_embedding import EmbeddingProvider
from lyrics_vault.ai.transcription import Transcription, TranscriptionProvider
from lyrics_vault.audio.fetch import AudioFetcher
from lyrics_vault.audio.metadata import probe_audio
from lyrics_vault.embeddings.vector_index import (
    KIND_LYRICS,
    KIND_SONG_TITLE,
    PREVIEW_CHARS,
    VectorIndex,
    lyrics_record_key,
    song_record_key,
)
from lyrics_vault.errors import (
    AudioFetchError,
    DatabaseError,
    ProviderError,
    ValidationError,
    is_transient,
)
from lyrics_vault.jobs.ledger import JobLedger
from lyrics_vault.lyrics.store import LyricsStore
from lyrics_vault.lyrics.timing import (
    DEFAULT_DURATION_SECONDS,
    TimedLine,
    TimestampSynchronizer,
    improve_timestamps,
    to_lyric_lines,
)
from lyrics_vault.models import Lyrics
from lyrics_vault.models.job import JobKind, JobStatus
from lyrics_vault.settings import settings
from lyrics_vault.songs.service import SongService

logger = logging.getLogger(__name__)

PLACEHOLDER_LYRICS = "[Instrumental / could not transcribe]"


class Phase(StrEnum):
    START = "START"
    CHECK_EXISTING = "CHECK_EXISTING"
    FETCH_AUDIO = "FETCH_AUDIO"
    TRANSCRIBE = "TRANSCRIBE"
    SYNC_TIMESTAMPS = "SYNC_TIMESTAMPS"
    PERSIST = "PERSIST"
    EMBED = "EMBED"
    DONE = "DONE"
    FAILED = "FAILED"


class RunOutcome(StrEnum):
    COMPLETED = "completed"
    ALREADY_EXISTS = "already_exists"


# ---------------------------------------------------------------------------
# Requests / results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerateLyricsRequest:
    song_id: uuid.UUID
    run_id: str
    audio_url: str
    title: str = ""
    artist: str = ""
    duration_seconds: float | None = None
    beat_times: Sequence[float] | None = None

    @classmethod
    def from_event(cls, payload: dict[str, Any], run_id: str) -> GenerateLyricsRequest:
        return cls(
            song_id=uuid.UUID(str(payload["song_id"])),
            run_id=run_id,
            audio_url=payload["audio_url"],
            title=payload.get("title", ""),
            artist=payload.get("artist", ""),
            duration_seconds=payload.get("duration_seconds"),
            beat_times=payload.get("beat_times"),
        )


@dataclass(frozen=True)
class SyncLyricsRequest:
    song_id: uuid.UUID
    run_id: str
    full_text: str
    audio_url: str | None = None
    duration_seconds: float | None = None
    beat_times: Sequence[float] | None = None

    @classmethod
    def from_event(cls, payload: dict[str, Any], run_id: str) -> SyncLyricsRequest:
        return cls(
            song_id=uuid.UUID(str(payload["song_id"])),
            run_id=run_id,
            full_text=payload["full_text"],
            audio_url=payload.get("audio_url"),
            duration_seconds=payload.get("duration_seconds"),
            beat_times=payload.get("beat_times"),
        )


@dataclass(frozen=True)
class GenerateEmbeddingsRequest:
    song_id: uuid.UUID
    run_id: str

    @classmethod
    def from_event(cls, payload: dict[str, Any], run_id: str) -> GenerateEmbeddingsRequest:
        return cls(song_id=uuid.UUID(str(payload["song_id"])), run_id=run_id)


@dataclass
class OrchestrationResult:
    song_id: uuid.UUID
    run_id: str
    kind: JobKind
    outcome: RunOutcome = RunOutcome.COMPLETED
    lyrics_id: uuid.UUID | None = None
    line_count: int = 0
    embedded: bool = False
    used_placeholder: bool = False
    embed_error: str | None = None
    phases: list[Phase] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Run bookkeeping
# ---------------------------------------------------------------------------


class _Run:
    """Phase tracker for one run; every transition goes through the ledger."""

    def __init__(self, ledger: JobLedger, song_id: uuid.UUID, kind: JobKind, run_id: str) -> None:
        self.ledger = ledger
        self.song_id = song_id
        self.kind = kind
        self.run_id = run_id
        self.phase: Phase | None = None
        self.history: list[Phase] = []

    async def enter(self, phase: Phase) -> None:
        previous = self.phase
        self.phase = phase
        self.history.append(phase)
        logger.info(
            "%s run=%s song=%s: %s -> %s", self.kind, self.run_id, self.song_id, previous, phase
        )
        status = JobStatus.COMPLETED if phase is Phase.DONE else JobStatus.PROCESSING
        await self.ledger.record_transition(self.song_id, self.kind, self.run_id, status)

    async def fail(self, error: str) -> None:
        failed_in = self.phase
        self.phase = Phase.FAILED
        self.history.append(Phase.FAILED)
        logger.error(
            "%s run=%s song=%s failed in %s: %s",
            self.kind,
            self.run_id,
            self.song_id,
            failed_in,
            error,
        )
        try:
            await asyncio.shield(
                self.ledger.record_transition(
                    self.song_id, self.kind, self.run_id, JobStatus.FAILED, error=error
                )
            )
        except DatabaseError:
            logger.exception("Could not record FAILED for run %s", self.run_id)


def _describe(exc: BaseException, timeout: float | None) -> str:
    if isinstance(exc, asyncio.CancelledError):
        return "cancelled"
    if isinstance(exc, TimeoutError) and timeout is not None:
        return f"timed out after {timeout:.0f}s"
    return f"{type(exc).__name__}: {exc}"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class TranscriptionOrchestrator:
    """Runs the lyrics enrichment jobs.

    All collaborators are passed in; nothing is looked up from module
    globals. ``embedder`` and ``vector_index`` may be None, in which case the
    best-effort EMBED phase is skipped.

    Args:
        ledger: Job status ledger.
        lyrics_store: Lyrics persistence.
        songs: Song persistence (titles and title embeddings).
        fetcher: Audio downloader.
        transcriber: Speech-to-text provider (None fails lyrics generation runs).
        synchronizer: Line timing for transcripts without segments.
        embedder: Text embedding provider.
        vector_index: Vector index for song/lyrics records.
        max_attempts: Transcription attempts before giving up.
        backoff_base_seconds: First retry delay; doubles per attempt.
        backoff_max_seconds: Cap on a single retry delay.
        classify: Predicate deciding whether a transcription error is
            worth retrying.
        placeholder_on_exhaustion: Persist a placeholder body instead of
            failing when transient retries are exhausted.
        timeout_seconds: Overall deadline per run; None disables it.
    """

    def __init__(
        self,
        ledger: JobLedger,
        lyrics_store: LyricsStore,
        songs: SongService,
        fetcher: AudioFetcher,
        transcriber: TranscriptionProvider | None,
        synchronizer: TimestampSynchronizer | None = None,
        embedder: EmbeddingProvider | None = None,
        vector_index: VectorIndex | None = None,
        *,
        max_attempts: int = settings.transcribe_max_attempts,
        backoff_base_seconds: float = settings.transcribe_backoff_base_seconds,
        backoff_max_seconds: float = settings.transcribe_backoff_max_seconds,
        classify: Callable[[BaseException], bool] = is_transient,
        placeholder_on_exhaustion: bool = False,
        default_duration_seconds: float = DEFAULT_DURATION_SECONDS,
        timeout_seconds: float | None = settings.orchestration_timeout_seconds,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._ledger = ledger
        self._lyrics = lyrics_store
        self._songs = songs
        self._fetcher = fetcher
        self._transcriber = transcriber
        self._synchronizer = synchronizer or TimestampSynchronizer()
        self._embedder = embedder
        self._index = vector_index
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._classify = classify
        self._placeholder_on_exhaustion = placeholder_on_exhaustion
        self._default_duration = default_duration_seconds
        self._timeout = timeout_seconds

    # -- entry points -------------------------------------------------------

    async def generate_lyrics(self, request: GenerateLyricsRequest) -> OrchestrationResult:
        """Transcribe a song's audio into timed, generated lyrics.

        Idempotent under redelivery: when the song already has lyrics the
        run completes as ``already_exists`` without calling the provider.
        """
        if not request.audio_url:
            raise ValidationError("audio_url", "is required")
        run = _Run(self._ledger, request.song_id, JobKind.GENERATE_LYRICS, request.run_id)
        return await self._execute(run, lambda: self._generate_lyrics(run, request))

    async def sync_lyrics(self, request: SyncLyricsRequest) -> OrchestrationResult:
        """Time user-supplied lyrics text and replace the song's lines."""
        if not request.full_text.strip():
            raise ValidationError("full_text", "must not be blank")
        run = _Run(self._ledger, request.song_id, JobKind.SYNC_LYRICS, request.run_id)
        return await self._execute(run, lambda: self._sync_lyrics(run, request))

    async def generate_embeddings(self, request: GenerateEmbeddingsRequest) -> OrchestrationResult:
        """Embed the song title and (when present) its lyrics."""
        run = _Run(self._ledger, request.song_id, JobKind.GENERATE_EMBEDDINGS, request.run_id)
        return await self._execute(run, lambda: self._generate_embeddings(run))

    # -- run wrapper ---------------------------------------------------------

    async def _execute(
        self, run: _Run, body: Callable[[], Awaitable[OrchestrationResult]]
    ) -> OrchestrationResult:
        try:
            async with asyncio.timeout(self._timeout):
                await run.enter(Phase.START)
                result = await body()
        except (Exception, asyncio.CancelledError) as exc:
            await run.fail(_describe(exc, self._timeout))
            raise
        result.phases = list(run.history)
        return result

    # -- GENERATE_LYRICS -----------------------------------------------------

    async def _generate_lyrics(
        self, run: _Run, request: GenerateLyricsRequest
    ) -> OrchestrationResult:
        result = OrchestrationResult(request.song_id, request.run_id, run.kind)

        await run.enter(Phase.CHECK_EXISTING)
        if await self._lyrics.exists_for_song(request.song_id):
            logger.info("Lyrics already exist for song %s, skipping", request.song_id)
            result.outcome = RunOutcome.ALREADY_EXISTS
            await run.enter(Phase.DONE)
            return result

        await run.enter(Phase.FETCH_AUDIO)
        audio = await self._fetcher.fetch(request.audio_url)

        await run.enter(Phase.TRANSCRIBE)
        transcription, result.used_placeholder = await self._transcribe(
            audio, _filename_from_url(request.audio_url)
        )
        full_text = transcription.text.strip()
        if not full_text:
            logger.warning("Empty transcript for song %s, storing placeholder", request.song_id)
            full_text = PLACEHOLDER_LYRICS
            result.used_placeholder = True

        await run.enter(Phase.SYNC_TIMESTAMPS)
        timed = await self._timed_lines(transcription, full_text, audio, request)

        await run.enter(Phase.PERSIST)
        lyrics = await self._lyrics.replace_lines(
            request.song_id, full_text, to_lyric_lines(timed), is_generated=True
        )
        result.lyrics_id = lyrics.id
        result.line_count = len(timed)

        await run.enter(Phase.EMBED)
        await self._embed_best_effort(request.song_id, lyrics, result)

        await run.enter(Phase.DONE)
        return result

    async def _transcribe(self, audio: bytes, filename: str) -> tuple[Transcription, bool]:
        """Transcribe with retries; the flag is True when the placeholder was used."""
        if self._transcriber is None:
            raise ProviderError("transcription", "no transcription provider configured")

        def _log_retry(state: RetryCallState) -> None:
            logger.warning(
                "Transcription attempt %d/%d failed (%s), retrying in %.2fs",
                state.attempt_number,
                self._max_attempts,
                state.outcome.exception() if state.outcome else None,
                state.next_action.sleep if state.next_action else 0.0,
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception(self._classify),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_base, max=self._backoff_max),
            before_sleep=_log_retry,
            reraise=True,
        )
        try:
            transcription = await retrying(self._transcriber.transcribe, audio, filename=filename)
        except Exception as exc:
            if not (self._placeholder_on_exhaustion and self._classify(exc)):
                raise
            logger.warning(
                "Transcription retries exhausted after %d attempts, using placeholder: %s",
                self._max_attempts,
                exc,
            )
            return Transcription(text=PLACEHOLDER_LYRICS), True
        return transcription, False

    async def _timed_lines(
        self,
        transcription: Transcription,
        full_text: str,
        audio: bytes,
        request: GenerateLyricsRequest,
    ) -> list[TimedLine]:
        segments = [s for s in transcription.segments if s.text]
        if segments:
            timed = [
                TimedLine(text=s.text, start_time=max(s.start_time, 0.0), end_time=s.end_time)
                for s in segments
            ]
            logger.info("Using %d provider segments as lines", len(timed))
            return improve_timestamps(timed, request.beat_times)

        duration = (
            request.duration_seconds
            or transcription.duration_seconds
            or probe_audio(audio).duration_seconds
            or self._default_duration
        )
        return await self._synchronizer.synchronize(full_text, duration, request.beat_times)

    # -- SYNC_LYRICS ---------------------------------------------------------

    async def _sync_lyrics(self, run: _Run, request: SyncLyricsRequest) -> OrchestrationResult:
        result = OrchestrationResult(request.song_id, request.run_id, run.kind)

        duration = request.duration_seconds
        if duration is None and request.audio_url:
            await run.enter(Phase.FETCH_AUDIO)
            try:
                audio = await self._fetcher.fetch(request.audio_url)
                duration = probe_audio(audio).duration_seconds
            except AudioFetchError as exc:
                logger.warning("Could not fetch audio to probe duration, using default: %s", exc)

        await run.enter(Phase.SYNC_TIMESTAMPS)
        timed = await self._synchronizer.synchronize(
            request.full_text, duration or self._default_duration, request.beat_times
        )

        await run.enter(Phase.PERSIST)
        lyrics = await self._lyrics.replace_lines(
            request.song_id, request.full_text, to_lyric_lines(timed), is_generated=None
        )
        result.lyrics_id = lyrics.id
        result.line_count = len(timed)

        await run.enter(Phase.EMBED)
        await self._embed_best_effort(request.song_id, lyrics, result)

        await run.enter(Phase.DONE)
        return result

    # -- GENERATE_EMBEDDINGS -------------------------------------------------

    async def _generate_embeddings(self, run: _Run) -> OrchestrationResult:
        result = OrchestrationResult(run.song_id, run.run_id, run.kind)
        song = await self._songs.get_with_lyrics(run.song_id)

        await run.enter(Phase.EMBED)
        embedder, index = self._require_embedding()
        vector = await embedder.embed(song.title)
        await index.upsert(
            song_record_key(song.id),
            vector,
            {"kind": KIND_SONG_TITLE, "song_id": str(song.id), "title": song.title},
        )
        await self._songs.save_title_embedding(song.id, vector)

        if song.lyrics is not None and song.lyrics.full_text.strip():
            await self._embed_lyrics(song.id, song.lyrics)
            result.lyrics_id = song.lyrics.id
        result.embedded = True

        await run.enter(Phase.DONE)
        return result

    # -- embedding helpers ---------------------------------------------------

    def _require_embedding(self) -> tuple[EmbeddingProvider, VectorIndex]:
        if self._embedder is None or self._index is None:
            raise ProviderError("embedding", "no embedding provider or vector index configured")
        return self._embedder, self._index

    async def _embed_lyrics(self, song_id: uuid.UUID, lyrics: Lyrics) -> None:
        embedder, index = self._require_embedding()
        vector = await embedder.embed(lyrics.full_text)
        await index.upsert(
            lyrics_record_key(lyrics.id),
            vector,
            {
                "kind": KIND_LYRICS,
                "song_id": str(song_id),
                "lyrics_id": str(lyrics.id),
                "preview": lyrics.full_text[:PREVIEW_CHARS],
            },
        )
        await self._lyrics.save_embedding(lyrics.id, vector)

    async def _embed_best_effort(
        self, song_id: uuid.UUID, lyrics: Lyrics, result: OrchestrationResult
    ) -> None:
        """EMBED phase: failures are reported, never raised."""
        if self._embedder is None or self._index is None:
            logger.info("No embedding provider configured, skipping lyrics embedding")
            return
        try:
            await self._embed_lyrics(song_id, lyrics)
        except Exception as exc:
            result.embed_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Lyrics embedding failed for song %s: %s", song_id, exc)
            return
        result.embedded = True


def _filename_from_url(url: str) -> str:
    name = url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
    return name or "audio.mp3"
