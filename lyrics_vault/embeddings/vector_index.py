"""Qdrant vector index for song title and lyrics embeddings.

Records are addressed by a string key (``song_<id>`` or ``lyrics_<id>``).
Qdrant only accepts UUID or integer point ids, so the point id is the
``uuid5`` of the key and the key itself travels in the payload as
``record_key``. Upserting the same key twice overwrites the same point.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from qdrant_client import AsyncQdrantClient, models

from lyrics_vault.settings import settings

logger = logging.getLogger(__name__)

KIND_SONG_TITLE = "song_title"
KIND_LYRICS = "lyrics"
PREVIEW_CHARS = 200


@dataclass(frozen=True)
class VectorHit:
    key: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorIndex(Protocol):
    async def upsert(self, key: str, vector: list[float], metadata: dict[str, Any]) -> None: ...

    async def query(
        self, vector: list[float], top_k: int, include_metadata: bool = True
    ) -> list[VectorHit]: ...

    async def delete_for_song(self, song_id: uuid.UUID) -> None: ...


def song_record_key(song_id: uuid.UUID) -> str:
    return f"song_{song_id}"


def lyrics_record_key(lyrics_id: uuid.UUID) -> str:
    return f"lyrics_{lyrics_id}"


def point_id_for(key: str) -> str:
    """Deterministic Qdrant point id for a record key."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, key))


def get_qdrant_client() -> AsyncQdrantClient:
    """Create an AsyncQdrantClient from application settings.

    Intended for use outside the FastAPI lifespan (e.g. the CLI) where
    ``app.state.qdrant`` is not available.
    """
    return AsyncQdrantClient(
        url=settings.qdrant_url,
        api_key=settings.qdrant_api_key if settings.qdrant_api_key else None,
    )


class QdrantVectorIndex:
    """Vector index backed by one Qdrant collection.

    Args:
        client: Qdrant async client.
        collection_name: Target collection.
        dim: Vector dimension used when the collection is created.
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection_name: str | None = None,
        dim: int | None = None,
    ) -> None:
        self._client = client
        self._collection = collection_name or settings.qdrant_collection_name
        self._dim = dim or settings.embedding_dim
        self._ready = False

    async def ensure_collection(self) -> None:
        """Create the collection if it doesn't exist.

        Schema:
            - ``dim``-sized vectors, cosine distance
            - HNSW: m=16, ef_construct=200
            - Payload indexes on song_id (keyword) and kind (keyword)
        """
        if self._ready:
            return

        collections_response = await self._client.get_collections()
        if not any(c.name == self._collection for c in collections_response.collections):
            await self._client.create_collection(
                collection_name=self._collection,
                vectors_config=models.VectorParams(
                    size=self._dim,
                    distance=models.Distance.COSINE,
                ),
                hnsw_config=models.HnswConfigDiff(m=16, ef_construct=200),
            )
            for field_name in ("song_id", "kind"):
                await self._client.create_payload_index(
                    collection_name=self._collection,
                    field_name=field_name,
                    field_schema=models.PayloadSchemaType.KEYWORD,
                )
            logger.info("Created Qdrant collection '%s'", self._collection)

        self._ready = True

    async def upsert(self, key: str, vector: list[float], metadata: dict[str, Any]) -> None:
        await self.ensure_collection()
        await self._client.upsert(
            collection_name=self._collection,
            points=[
                models.PointStruct(
                    id=point_id_for(key),
                    vector=vector,
                    payload={**metadata, "record_key": key},
                )
            ],
        )
        logger.debug("Upserted vector record %s", key)

    async def query(
        self, vector: list[float], top_k: int, include_metadata: bool = True
    ) -> list[VectorHit]:
        await self.ensure_collection()
        response = await self._client.query_points(
            collection_name=self._collection,
            query=vector,
            limit=top_k,
            with_payload=True,
            search_params=models.SearchParams(hnsw_ef=128),
        )

        hits: list[VectorHit] = []
        for point in response.points:
            payload = dict(point.payload or {})
            key = payload.pop("record_key", None)
            if key is None:
                logger.warning("Qdrant point %s missing record_key in payload", point.id)
                continue
            hits.append(
                VectorHit(
                    key=key,
                    score=float(point.score),
                    metadata=payload if include_metadata else {},
                )
            )
        return hits

    async def delete_for_song(self, song_id: uuid.UUID) -> None:
        """Delete every record (title and lyrics) that belongs to a song."""
        await self.ensure_collection()
        await self._client.delete(
            collection_name=self._collection,
            points_selector=models.FilterSelector(
                filter=models.Filter(
                    must=[
                        models.FieldCondition(
                            key="song_id",
                            match=models.MatchValue(value=str(song_id)),
                        )
                    ]
                )
            ),
        )
        logger.info("Deleted vector records for song %s", song_id)
