import logging
import time as _time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from lyrics_vault.ai.client import OpenAICompatClient
from lyrics_vault.ai.text_embedding import ClapTextEmbedder, generate_text_embedding, load_clap_model
from lyrics_vault.ai.timing_estimator import ChatLineTimingEstimator
from lyrics_vault.ai.transcription import WhisperApiTranscriber
from lyrics_vault.audio.fetch import AudioFetcher
from lyrics_vault.db.engine import engine
from lyrics_vault.db.session import async_session_factory
from lyrics_vault.embeddings.vector_index import QdrantVectorIndex, get_qdrant_client
from lyrics_vault.errors import (
    AudioFetchError,
    AuthenticationError,
    AuthorizationError,
    DatabaseError,
    LyricsVaultError,
    NotFoundError,
    ProviderError,
    TransientProviderError,
    ValidationError,
)
from lyrics_vault.jobs.dispatcher import (
    EVENT_GENERATE_EMBEDDINGS,
    EVENT_GENERATE_LYRICS,
    EVENT_SYNC_LYRICS,
    EventDispatcher,
)
from lyrics_vault.jobs.ledger import JobLedger
from lyrics_vault.lyrics.orchestrator import (
    GenerateEmbeddingsRequest,
    GenerateLyricsRequest,
    SyncLyricsRequest,
    TranscriptionOrchestrator,
)
from lyrics_vault.lyrics.store import LyricsStore
from lyrics_vault.lyrics.timing import TimestampSynchronizer
from lyrics_vault.routers import health, lyrics, search, songs, storage, version
from lyrics_vault.search.ranker import HybridSearchRanker
from lyrics_vault.settings import settings
from lyrics_vault.songs.saga import UploadSaga
from lyrics_vault.songs.service import SongService
from lyrics_vault.storage.object_store import LocalObjectStore

logger = logging.getLogger(__name__)

# Domain error kind -> HTTP status
ERROR_STATUS: dict[type[LyricsVaultError], int] = {
    ValidationError: 400,
    AuthenticationError: 401,
    AuthorizationError: 403,
    NotFoundError: 404,
    DatabaseError: 503,
    TransientProviderError: 503,
    ProviderError: 502,
    AudioFetchError: 502,
}

SHUTDOWN_DRAIN_SECONDS = 30.0


async def _check_postgres() -> None:
    """Verify PostgreSQL is reachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


def _get_torch_device() -> str:
    """Detect best available compute device for model inference."""
    import torch

    if torch.cuda.is_available():
        return "cuda"
    if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        # CLAP uses ops not yet supported on MPS (Placeholder storage error).
        logger.info("MPS available but not used for CLAP (unsupported ops)")
    return "cpu"


def _load_embedder() -> ClapTextEmbedder | None:
    """Load the CLAP text tower and run one warm-up embedding.

    Returns None when the model cannot be loaded; semantic search and
    embedding jobs are then unavailable, everything else still works.
    """
    t_model = _time.perf_counter()
    logger.info("Loading CLAP text embedding model %s...", settings.embedding_model)
    try:
        model, processor = load_clap_model(settings.embedding_model)
        device = _get_torch_device()
        if device != "cpu":
            model = model.to(device)
        load_time = _time.perf_counter() - t_model
        logger.info("CLAP model loaded in %.1fs (device: %s)", load_time, device)
        if load_time > 5:
            logger.warning(
                "CLAP model load took %.1fs -- investigate network or disk issues", load_time
            )

        # Warm-up inference (prevent cold-start latency on first request)
        generate_text_embedding("warm up", model, processor)
        logger.info("CLAP warm-up inference complete")
    except Exception as exc:
        logger.warning("CLAP model loading failed: %s. Semantic search will be unavailable.", exc)
        return None
    return ClapTextEmbedder(model, processor)


def _subscribe_jobs(dispatcher: EventDispatcher, orchestrator: TranscriptionOrchestrator) -> None:
    async def on_generate_lyrics(payload: dict, run_id: str) -> None:
        await orchestrator.generate_lyrics(GenerateLyricsRequest.from_event(payload, run_id))

    async def on_sync_lyrics(payload: dict, run_id: str) -> None:
        await orchestrator.sync_lyrics(SyncLyricsRequest.from_event(payload, run_id))

    async def on_generate_embeddings(payload: dict, run_id: str) -> None:
        await orchestrator.generate_embeddings(
            GenerateEmbeddingsRequest.from_event(payload, run_id)
        )

    dispatcher.subscribe(EVENT_GENERATE_LYRICS, on_generate_lyrics)
    dispatcher.subscribe(EVENT_SYNC_LYRICS, on_sync_lyrics)
    dispatcher.subscribe(EVENT_GENERATE_EMBEDDINGS, on_generate_embeddings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # 1. Check Postgres
    try:
        await _check_postgres()
        logger.info("PostgreSQL connection verified")
    except Exception as exc:
        logger.debug("PostgreSQL connection error: %s", exc)
        raise SystemExit(
            "FATAL: Cannot reach PostgreSQL. "
            "Check DATABASE_URL and ensure the server is running."
        ) from exc

    # 2. Check Qdrant and make sure the collection exists
    qdrant = get_qdrant_client()
    vector_index = QdrantVectorIndex(qdrant)
    try:
        await vector_index.ensure_collection()
        logger.info("Qdrant connection verified at %s", settings.qdrant_url)
    except Exception as exc:
        logger.debug("Qdrant connection error: %s", exc)
        raise SystemExit(
            "FATAL: Cannot reach Qdrant. Check QDRANT_URL and ensure the server is running."
        ) from exc

    # 3. Embedding model (optional)
    embedder = _load_embedder()

    # 4. AI provider clients (optional)
    ai_client = None
    transcriber = None
    synchronizer = TimestampSynchronizer()
    if settings.ai_enabled:
        ai_client = OpenAICompatClient.from_settings()
        transcriber = WhisperApiTranscriber(ai_client, model=settings.transcription_model)
        synchronizer = TimestampSynchronizer(
            ChatLineTimingEstimator(ai_client, model=settings.timing_model)
        )
    else:
        logger.warning("AI_API_KEY not set; lyrics generation jobs will fail")

    # 5. Services
    fetcher = AudioFetcher(
        timeout=settings.audio_fetch_timeout_seconds, max_bytes=settings.max_audio_bytes
    )
    object_store = LocalObjectStore(
        settings.storage_root,
        settings.storage_public_base_url,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        max_bytes=settings.max_audio_bytes,
    )
    song_service = SongService(async_session_factory)
    lyrics_store = LyricsStore(async_session_factory)
    ledger = JobLedger(async_session_factory)
    dispatcher = EventDispatcher()

    orchestrator = TranscriptionOrchestrator(
        ledger,
        lyrics_store,
        song_service,
        fetcher,
        transcriber,
        synchronizer,
        embedder,
        vector_index,
        default_duration_seconds=settings.default_song_duration_seconds,
    )
    _subscribe_jobs(dispatcher, orchestrator)

    app.state.qdrant = qdrant
    app.state.object_store = object_store
    app.state.songs = song_service
    app.state.lyrics = lyrics_store
    app.state.ledger = ledger
    app.state.dispatcher = dispatcher
    app.state.ranker = HybridSearchRanker(song_service, embedder, vector_index)
    app.state.saga = UploadSaga(song_service, object_store, vector_index, dispatcher)

    yield

    # Shutdown
    await dispatcher.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    await fetcher.aclose()
    if ai_client is not None:
        await ai_client.aclose()
    await qdrant.close()
    await engine.dispose()


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    """Build a JSON error response matching the project convention."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
            }
        },
    )


def status_for(exc: LyricsVaultError) -> int:
    for kind in type(exc).__mro__:
        if kind in ERROR_STATUS:
            return ERROR_STATUS[kind]
    return 500


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(health.router)
    application.include_router(version.router, prefix="/api/v1")
    application.include_router(songs.router, prefix="/api/v1")
    application.include_router(lyrics.router, prefix="/api/v1")
    application.include_router(search.router, prefix="/api/v1")
    application.include_router(storage.router, prefix="/api/v1")

    @application.exception_handler(LyricsVaultError)
    async def domain_error_handler(request: Request, exc: LyricsVaultError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error_response(status_code, exc.code, exc.message)

    @application.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred.",
                    "details": None,
                }
            },
        )

    return application


app = create_app()
