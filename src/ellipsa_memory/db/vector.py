"""Vector index over Qdrant.

One collection per record type ("entities", "events"), cosine distance, point
id equal to the record id. Qdrant reports cosine *similarity* as the match
score for cosine collections, so ``VectorMatch.score`` is already in [-1, 1].
"""

import time
from dataclasses import dataclass, field
from typing import Any

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models

from ..logging import get_logger

logger = get_logger(__name__)


@dataclass
class VectorMatch:
    id: str
    score: float
    payload: dict[str, Any] = field(default_factory=dict)


class VectorIndex:
    """Async Qdrant wrapper. Every method raises on failure."""

    def __init__(self, url: str, dimensions: int, api_key: str | None = None):
        self.url = url
        self.dimensions = dimensions
        self.client = AsyncQdrantClient(url=url, api_key=api_key)
        self._ready: set[str] = set()

    async def ensure_collection(self, collection: str) -> None:
        """Create the collection if it does not exist yet."""
        if collection in self._ready:
            return
        if not await self.client.collection_exists(collection):
            logger.info("Creating vector collection", collection=collection, size=self.dimensions)
            await self.client.create_collection(
                collection_name=collection,
                vectors_config=models.VectorParams(
                    size=self.dimensions,
                    distance=models.Distance.COSINE,
                ),
            )
        self._ready.add(collection)

    async def upsert(
        self,
        collection: str,
        point_id: str,
        vector: list[float],
        payload: dict[str, Any] | None = None,
    ) -> None:
        await self.ensure_collection(collection)
        await self.client.upsert(
            collection_name=collection,
            points=[
                models.PointStruct(id=point_id, vector=vector, payload=payload or {})
            ],
        )

    async def delete(self, collection: str, point_id: str) -> None:
        await self.ensure_collection(collection)
        await self.client.delete(
            collection_name=collection,
            points_selector=models.PointIdsList(points=[point_id]),
        )

    async def query(
        self,
        collection: str,
        vector: list[float],
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Nearest neighbours of ``vector``, optionally filtered by exact payload values."""
        await self.ensure_collection(collection)

        query_filter = None
        if filters:
            query_filter = models.Filter(
                must=[
                    models.FieldCondition(key=key, match=models.MatchValue(value=value))
                    for key, value in filters.items()
                ]
            )

        start_time = time.perf_counter()
        response = await self.client.query_points(
            collection_name=collection,
            query=vector,
            limit=limit,
            query_filter=query_filter,
            with_payload=True,
        )
        matches = [
            VectorMatch(id=str(point.id), score=float(point.score), payload=point.payload or {})
            for point in response.points
        ]

        logger.debug(
            "Vector query executed",
            collection=collection,
            limit=limit,
            matches=len(matches),
            query_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return matches

    async def list_collections(self) -> list[str]:
        response = await self.client.get_collections()
        return [collection.name for collection in response.collections]

    async def close(self) -> None:
        await self.client.close()
