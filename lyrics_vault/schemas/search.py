from __future__ import annotations

from pydantic import BaseModel, Field

from lyrics_vault.schemas.song import SongInfo
from lyrics_vault.search.ranker import SearchMode


class RankedSongOut(BaseModel):
    song: SongInfo
    score: float
    lexical: bool = False
    semantic: bool = False
    lyrics_preview: str | None = None


class SearchResponse(BaseModel):
    query: str
    mode: SearchMode
    results: list[RankedSongOut] = Field(default_factory=list)
    total_results: int
    search_time_ms: float
