"""Episodic memory - similarity search over a user's past exchanges.

Completed exchanges are embedded with OpenAI and stored in Qdrant, one point
per exchange, filtered by user on search.
"""

import logging
import time
import uuid
from typing import Protocol

from openai import AsyncOpenAI
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointStruct,
    VectorParams,
)

from chatrelay.models import EpisodicHit

logger = logging.getLogger(__name__)

VECTOR_SIZE = 1536  # text-embedding-3-small


class EpisodicMemory(Protocol):
    """Similarity index over past exchanges."""

    async def search(self, user_id: str, text: str, k: int) -> list[EpisodicHit]: ...

    async def store_exchange(
        self, user_id: str, query: str, answer: str, model: str, query_type: str
    ) -> None: ...


class QdrantEpisodicMemory:
    """Episodic memory backed by Qdrant and OpenAI embeddings."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        embedder: AsyncOpenAI,
        collection: str = "query_context",
        embedding_model: str = "text-embedding-3-small",
        vector_size: int = VECTOR_SIZE,
    ):
        self.client = client
        self.embedder = embedder
        self.collection = collection
        self.embedding_model = embedding_model
        self.vector_size = vector_size
        self._collection_ready = False

    async def _ensure_collection(self) -> None:
        if self._collection_ready:
            return
        if not await self.client.collection_exists(self.collection):
            await self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
            )
            logger.info(f"Created Qdrant collection: {self.collection}")
        self._collection_ready = True

    async def _embed(self, text: str) -> list[float]:
        response = await self.embedder.embeddings.create(model=self.embedding_model, input=text)
        return response.data[0].embedding

    async def search(self, user_id: str, text: str, k: int) -> list[EpisodicHit]:
        """Find the k past exchanges of this user most similar to text."""
        if not text:
            return []
        await self._ensure_collection()
        vector = await self._embed(text)
        results = await self.client.query_points(
            collection_name=self.collection,
            query=vector,
            query_filter=Filter(
                must=[FieldCondition(key="user_id", match=MatchValue(value=user_id))]
            ),
            limit=k,
            with_payload=True,
        )
        hits = [
            EpisodicHit(
                query=point.payload.get("query", ""),
                answer=point.payload.get("answer", ""),
                score=point.score,
            )
            for point in results.points
            if point.payload and point.payload.get("query")
        ]
        logger.debug(f"Found {len(hits)} episodic hits for user {user_id}")
        return hits

    async def store_exchange(
        self, user_id: str, query: str, answer: str, model: str, query_type: str
    ) -> None:
        """Index a completed exchange for later retrieval."""
        await self._ensure_collection()
        vector = await self._embed(query)
        point = PointStruct(
            id=str(uuid.uuid4()),
            vector=vector,
            payload={
                "user_id": user_id,
                "query": query,
                "answer": answer,
                "model": model,
                "query_type": query_type,
                "timestamp": int(time.time() * 1000),
            },
        )
        await self.client.upsert(collection_name=self.collection, points=[point])
        logger.info(f"Stored episodic memory for user {user_id}")

    async def close(self) -> None:
        await self.client.close()


def create_episodic_memory(
    qdrant_url: str,
    qdrant_api_key: str,
    openai_api_key: str,
    collection: str,
    embedding_model: str,
) -> QdrantEpisodicMemory | None:
    """Build the Qdrant-backed memory, or None when it is not configured."""
    if not qdrant_url or not openai_api_key:
        logger.info("Episodic memory disabled (no Qdrant URL or embedding key)")
        return None
    client = AsyncQdrantClient(url=qdrant_url, api_key=qdrant_api_key or None)
    embedder = AsyncOpenAI(api_key=openai_api_key)
    return QdrantEpisodicMemory(
        client, embedder, collection=collection, embedding_model=embedding_model
    )
