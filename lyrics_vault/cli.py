"""CLI entry point for running enrichment jobs in-process.

Usage:
    lyrics-vault generate-lyrics <song_id> [--placeholder-on-failure]
    lyrics-vault sync-lyrics <song_id>
    lyrics-vault embed <song_id>
"""

import argparse
import asyncio
import logging
import sys
import uuid

from lyrics_vault.ai.client import OpenAICompatClient
from lyrics_vault.ai.text_embedding import ClapTextEmbedder, load_clap_model
from lyrics_vault.ai.timing_estimator import ChatLineTimingEstimator
from lyrics_vault.ai.transcription import WhisperApiTranscriber
from lyrics_vault.audio.fetch import AudioFetcher
from lyrics_vault.db.engine import engine
from lyrics_vault.db.session import async_session_factory
from lyrics_vault.embeddings.vector_index import QdrantVectorIndex, get_qdrant_client
from lyrics_vault.errors import LyricsVaultError
from lyrics_vault.jobs.ledger import JobLedger
from lyrics_vault.lyrics.orchestrator import (
    GenerateEmbeddingsRequest,
    GenerateLyricsRequest,
    OrchestrationResult,
    SyncLyricsRequest,
    TranscriptionOrchestrator,
)
from lyrics_vault.lyrics.store import LyricsStore
from lyrics_vault.lyrics.timing import TimestampSynchronizer
from lyrics_vault.settings import settings
from lyrics_vault.songs.service import SongService

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="lyrics-vault")
    commands = parser.add_subparsers(dest="command", required=True)

    generate = commands.add_parser("generate-lyrics", help="Transcribe a song into timed lyrics")
    generate.add_argument("song_id", type=uuid.UUID)
    generate.add_argument(
        "--placeholder-on-failure",
        action="store_true",
        help="Store placeholder lyrics when the provider stays unavailable",
    )

    sync = commands.add_parser("sync-lyrics", help="Re-time a song's stored lyrics")
    sync.add_argument("song_id", type=uuid.UUID)

    embed = commands.add_parser("embed", help="Generate title and lyrics embeddings")
    embed.add_argument("song_id", type=uuid.UUID)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the job CLI."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    args = _parse_args(argv)

    try:
        result = asyncio.run(_run(args))
    except LyricsVaultError as exc:
        print(f"Error [{exc.code}]: {exc.message}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    _print_report(result)


async def _run(args: argparse.Namespace) -> OrchestrationResult:
    songs = SongService(async_session_factory)
    lyrics_store = LyricsStore(async_session_factory)
    fetcher = AudioFetcher(
        timeout=settings.audio_fetch_timeout_seconds, max_bytes=settings.max_audio_bytes
    )
    ai_client = OpenAICompatClient.from_settings() if settings.ai_enabled else None
    qdrant = None
    run_id = f"cli_{uuid.uuid4().hex}"

    try:
        embedder = None
        vector_index = None
        if args.command == "embed":
            # Load CLAP model (one-time, ~5-15s first run)
            logger.info("Loading CLAP model...")
            model, processor = load_clap_model(settings.embedding_model)
            embedder = ClapTextEmbedder(model, processor)
            qdrant = get_qdrant_client()
            vector_index = QdrantVectorIndex(qdrant)
            await vector_index.ensure_collection()

        orchestrator = TranscriptionOrchestrator(
            JobLedger(async_session_factory),
            lyrics_store,
            songs,
            fetcher,
            WhisperApiTranscriber(ai_client, settings.transcription_model) if ai_client else None,
            TimestampSynchronizer(
                ChatLineTimingEstimator(ai_client, settings.timing_model) if ai_client else None
            ),
            embedder,
            vector_index,
            placeholder_on_exhaustion=getattr(args, "placeholder_on_failure", False),
            default_duration_seconds=settings.default_song_duration_seconds,
        )

        song = await songs.get_with_lyrics(args.song_id)
        if args.command == "generate-lyrics":
            return await orchestrator.generate_lyrics(
                GenerateLyricsRequest(
                    song_id=song.id,
                    run_id=run_id,
                    audio_url=song.audio_url,
                    title=song.title,
                    artist=song.artist,
                    duration_seconds=song.duration_seconds,
                )
            )
        if args.command == "sync-lyrics":
            return await orchestrator.sync_lyrics(
                SyncLyricsRequest(
                    song_id=song.id,
                    run_id=run_id,
                    full_text=song.lyrics.full_text if song.lyrics else "",
                    audio_url=song.audio_url,
                    duration_seconds=song.duration_seconds,
                )
            )
        return await orchestrator.generate_embeddings(
            GenerateEmbeddingsRequest(song_id=song.id, run_id=run_id)
        )
    finally:
        await fetcher.aclose()
        if ai_client is not None:
            await ai_client.aclose()
        if qdrant is not None:
            await qdrant.close()
        await engine.dispose()


def _print_report(result: OrchestrationResult) -> None:
    print(f"\n{'=' * 60}")  # noqa: T201
    print(f"Job Report: {result.kind}")  # noqa: T201
    print(f"{'=' * 60}")  # noqa: T201
    print(f"Song:         {result.song_id}")  # noqa: T201
    print(f"Run:          {result.run_id}")  # noqa: T201
    print(f"Outcome:      {result.outcome}")  # noqa: T201
    print(f"Lines:        {result.line_count}")  # noqa: T201
    print(f"Embedded:     {result.embedded}")  # noqa: T201
    if result.used_placeholder:
        print("Placeholder:  yes")  # noqa: T201
    if result.embed_error:
        print(f"Embed error:  {result.embed_error}")  # noqa: T201
    print(f"Phases:       {' -> '.join(result.phases)}")  # noqa: T201
    print(f"{'=' * 60}")  # noqa: T201


if __name__ == "__main__":
    main()
