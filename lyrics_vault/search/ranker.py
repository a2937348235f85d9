"""Hybrid song search: lexical substring lane + vector similarity lane.

For hybrid mode both lanes run in parallel via asyncio.gather with
return_exceptions=True, each under its own timeout, so one lane failing
or stalling never fails the search. Results are unioned by song id,
fetched in one batch, scored (vector similarity, else a fixed lexical
score), stably sorted and truncated.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import StrEnum

from lyrics_vault.ai.text_embedding import EmbeddingProvider
from lyrics_vault.embeddings.vector_index import VectorIndex
from lyrics_vault.errors import (
    LyricsVaultError,
    ProviderError,
    TransientProviderError,
    ValidationError,
)
from lyrics_vault.models import Song
from lyrics_vault.settings import settings
from lyrics_vault.songs.service import SongService

logger = logging.getLogger(__name__)

MAX_LIMIT = 50


class SearchMode(StrEnum):
    TEXT = "text"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class RankedSong:
    song: Song
    score: float
    lexical: bool = False
    semantic: bool = False


def _validate(query: str, limit: int) -> str:
    q = (query or "").strip()
    if not q:
        raise ValidationError("query", "must not be blank")
    if not 1 <= limit <= MAX_LIMIT:
        raise ValidationError("limit", f"must be between 1 and {MAX_LIMIT}")
    return q


class HybridSearchRanker:
    """Merges lexical and vector search results into one ranked list.

    Args:
        songs: Lexical store and batch fetcher.
        embedder: Query embedding provider (None disables the vector lane).
        vector_index: Vector index (None disables the vector lane).
        fan_in: Candidates requested from each lane before truncation.
        branch_timeout_seconds: Per-lane deadline in hybrid mode.
        lexical_score: Score assigned to songs only the lexical lane found.
    """

    def __init__(
        self,
        songs: SongService,
        embedder: EmbeddingProvider | None = None,
        vector_index: VectorIndex | None = None,
        *,
        fan_in: int = settings.qdrant_search_limit,
        branch_timeout_seconds: float = settings.search_branch_timeout_seconds,
        lexical_score: float = settings.lexical_default_score,
    ) -> None:
        self._songs = songs
        self._embedder = embedder
        self._index = vector_index
        self._fan_in = fan_in
        self._timeout = branch_timeout_seconds
        self._lexical_score = lexical_score

    async def run(self, query: str, mode: SearchMode, limit: int = 10) -> list[RankedSong]:
        if mode == SearchMode.TEXT:
            return await self.search_text(query, limit)
        if mode == SearchMode.SEMANTIC:
            return await self.search_semantic(query, limit)
        return await self.search(query, limit)

    # ------------------------------------------------------------------
    # Hybrid
    # ------------------------------------------------------------------

    async def search(self, query: str, limit: int = 10) -> list[RankedSong]:
        """Hybrid search. Never fails because a single lane failed."""
        q = _validate(query, limit)
        t0 = time.perf_counter()

        lexical_task = asyncio.create_task(
            self._with_timeout("lexical", self._lexical_ids(q)), name="lexical_lane"
        )
        vector_task = asyncio.create_task(
            self._with_timeout("vector", self._vector_scores(q)), name="vector_lane"
        )
        lexical_result, vector_result = await asyncio.gather(
            lexical_task, vector_task, return_exceptions=True
        )

        lexical_ids: list[uuid.UUID] = []
        if isinstance(lexical_result, BaseException):
            logger.warning("Lexical lane failed, continuing without it: %r", lexical_result)
        else:
            lexical_ids = lexical_result

        vector_scores: dict[uuid.UUID, float] = {}
        if isinstance(vector_result, BaseException):
            logger.warning("Vector lane failed, continuing without it: %r", vector_result)
        else:
            vector_scores = vector_result

        # Vector hits first (by similarity), then lexical-only hits in store order
        candidate_ids = list(vector_scores)
        candidate_ids += [sid for sid in lexical_ids if sid not in vector_scores]
        if not candidate_ids:
            return []

        songs_by_id = await self._songs.get_many(candidate_ids)
        lexical_set = set(lexical_ids)

        ranked: list[RankedSong] = []
        for song_id in candidate_ids:
            song = songs_by_id.get(song_id)
            if song is None:
                logger.warning(
                    "Song %s found in search lane but not in store (stale index?)", song_id
                )
                continue
            ranked.append(
                RankedSong(
                    song=song,
                    score=vector_scores.get(song_id, self._lexical_score),
                    lexical=song_id in lexical_set,
                    semantic=song_id in vector_scores,
                )
            )

        ranked.sort(key=lambda r: r.score, reverse=True)
        logger.debug(
            "Hybrid search %r: %d lexical, %d vector, %d merged in %.1fms",
            q,
            len(lexical_ids),
            len(vector_scores),
            len(ranked),
            (time.perf_counter() - t0) * 1000,
        )
        return ranked[:limit]

    async def _with_timeout(self, lane: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except TimeoutError:
            logger.warning("%s lane timed out after %.1fs", lane.capitalize(), self._timeout)
            raise

    # ------------------------------------------------------------------
    # Single-lane modes
    # ------------------------------------------------------------------

    async def search_text(self, query: str, limit: int = 10) -> list[RankedSong]:
        q = _validate(query, limit)
        songs = await self._songs.search_lexical(q, limit)
        return [RankedSong(song=s, score=self._lexical_score, lexical=True) for s in songs]

    async def search_semantic(self, query: str, limit: int = 10) -> list[RankedSong]:
        """Vector-only search; lane failures propagate as provider errors."""
        q = _validate(query, limit)
        try:
            scores = await asyncio.wait_for(self._vector_scores(q), timeout=self._timeout)
        except TimeoutError:
            raise TransientProviderError("vector_index", "search timed out") from None

        songs_by_id = await self._songs.get_many(list(scores))
        return [
            RankedSong(song=songs_by_id[sid], score=score, semantic=True)
            for sid, score in scores.items()
            if sid in songs_by_id
        ][:limit]

    # ------------------------------------------------------------------
    # Lanes
    # ------------------------------------------------------------------

    async def _lexical_ids(self, query: str) -> list[uuid.UUID]:
        songs = await self._songs.search_lexical(query, self._fan_in)
        return [s.id for s in songs]

    async def _vector_scores(self, query: str) -> dict[uuid.UUID, float]:
        """Best similarity per song, highest first."""
        if self._embedder is None or self._index is None:
            raise ProviderError("embedding", "no embedding provider or vector index configured")

        vector = await self._embedder.embed(query)
        try:
            hits = await self._index.query(vector, self._fan_in, include_metadata=True)
        except LyricsVaultError:
            raise
        except Exception as exc:
            raise TransientProviderError("vector_index", str(exc)) from exc

        scores: dict[uuid.UUID, float] = {}
        for hit in hits:
            try:
                song_id = uuid.UUID(str(hit.metadata.get("song_id")))
            except ValueError:
                logger.warning("Vector record %s has invalid song_id", hit.key)
                continue
            if hit.score > scores.get(song_id, float("-inf")):
                scores[song_id] = hit.score

        return dict(sorted(scores.items(), key=lambda item: item[1], reverse=True))
