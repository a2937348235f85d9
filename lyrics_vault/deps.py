"""FastAPI dependencies resolving the services built in ``main.lifespan``.

Routers never construct services themselves; tests swap them through
``app.dependency_overrides``.
"""

from fastapi import Request

from lyrics_vault.jobs.dispatcher import EventDispatcher
from lyrics_vault.jobs.ledger import JobLedger
from lyrics_vault.lyrics.store import LyricsStore
from lyrics_vault.search.ranker import HybridSearchRanker
from lyrics_vault.songs.saga import UploadSaga
from lyrics_vault.songs.service import SongService
from lyrics_vault.storage.object_store import LocalObjectStore


def get_song_service(request: Request) -> SongService:
    return request.app.state.songs


def get_lyrics_store(request: Request) -> LyricsStore:
    return request.app.state.lyrics


def get_job_ledger(request: Request) -> JobLedger:
    return request.app.state.ledger


def get_dispatcher(request: Request) -> EventDispatcher:
    return request.app.state.dispatcher


def get_upload_saga(request: Request) -> UploadSaga:
    return request.app.state.saga


def get_ranker(request: Request) -> HybridSearchRanker:
    return request.app.state.ranker


def get_object_store(request: Request) -> LocalObjectStore:
    return request.app.state.object_store
