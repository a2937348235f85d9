"""Song search endpoint (text, semantic or hybrid)."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, Query

from lyrics_vault.deps import get_ranker
from lyrics_vault.embeddings.vector_index import PREVIEW_CHARS
from lyrics_vault.routers.songs import song_to_info
from lyrics_vault.schemas.errors import ErrorResponse
from lyrics_vault.schemas.search import RankedSongOut, SearchResponse
from lyrics_vault.search.ranker import MAX_LIMIT, HybridSearchRanker, RankedSong, SearchMode

logger = logging.getLogger(__name__)

router = APIRouter(tags=["search"])


def _ranked_to_out(ranked: RankedSong) -> RankedSongOut:
    # Search lanes return songs with lyrics eagerly loaded
    lyrics = ranked.song.lyrics
    return RankedSongOut(
        song=song_to_info(ranked.song),
        score=ranked.score,
        lexical=ranked.lexical,
        semantic=ranked.semantic,
        lyrics_preview=lyrics.full_text[:PREVIEW_CHARS] if lyrics is not None else None,
    )


@router.get(
    "/search",
    response_model=SearchResponse,
    responses={
        400: {"description": "Blank query or limit out of range", "model": ErrorResponse},
        502: {"description": "Semantic search provider failed", "model": ErrorResponse},
    },
)
async def search_songs(
    q: str = Query(..., min_length=1, description="Search text"),
    mode: SearchMode = Query(default=SearchMode.HYBRID),  # noqa: B008
    limit: int = Query(default=10, ge=1, le=MAX_LIMIT),
    ranker: HybridSearchRanker = Depends(get_ranker),  # noqa: B008
) -> SearchResponse:
    """Search songs by title, artist and lyrics.

    - ``text``: case-insensitive substring match only
    - ``semantic``: embedding similarity only
    - ``hybrid``: both lanes in parallel; a failing lane is skipped
    """
    t0 = time.perf_counter()
    results = await ranker.run(q, mode, limit)
    elapsed_ms = (time.perf_counter() - t0) * 1000
    logger.info(
        "Search mode=%s q=%r returned %d results in %.1fms", mode, q, len(results), elapsed_ms
    )

    return SearchResponse(
        query=q,
        mode=mode,
        results=[_ranked_to_out(r) for r in results],
        total_results=len(results),
        search_time_ms=round(elapsed_ms, 2),
    )
