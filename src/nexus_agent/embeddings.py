"""Semantic index of thread messages (OpenAI embeddings stored in Qdrant)."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

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

from nexus_agent.config import Config

logger = logging.getLogger(__name__)

# Messages shorter than this (after trimming) are not worth indexing
MIN_INDEXED_LENGTH = 10

_POINT_NAMESPACE = uuid.UUID("6f1c1f0e-9a51-4d55-8f3c-3b2a5e7d9c10")


def should_index(content: str | None) -> bool:
    return bool(content) and len(content.strip()) >= MIN_INDEXED_LENGTH


def point_id(thread_id: str, message_id: str) -> str:
    """Stable Qdrant point id, so a retried job overwrites instead of duplicating."""
    return str(uuid.uuid5(_POINT_NAMESPACE, f"{thread_id}:{message_id}"))


@dataclass(frozen=True)
class HistoryHit:
    thread_id: str
    message_id: str
    role: str
    content: str
    created_at: str
    score: float


class EmbeddingIndex:
    """Embeds message text and stores or searches it in a Qdrant collection."""

    def __init__(
        self,
        openai_client: AsyncOpenAI,
        qdrant: AsyncQdrantClient,
        *,
        collection: str = Config.EMBEDDINGS_COLLECTION.value,
        model: str = Config.EMBEDDING_MODEL.value,
        dimensions: int = Config.EMBEDDING_DIMENSIONS.value,
    ) -> None:
        self._openai = openai_client
        self._qdrant = qdrant
        self.collection = collection
        self._model = model
        self._dimensions = dimensions

    @classmethod
    def from_config(cls) -> EmbeddingIndex:
        return cls(
            AsyncOpenAI(api_key=Config.OPENAI_API_KEY.value),
            AsyncQdrantClient(url=Config.QDRANT_URL.value),
        )

    async def ensure_collection(self) -> None:
        """Create the collection if it does not exist yet."""
        if await self._qdrant.collection_exists(self.collection):
            return
        await self._qdrant.create_collection(
            collection_name=self.collection,
            vectors_config=VectorParams(size=self._dimensions, distance=Distance.COSINE),
        )
        logger.info("Created Qdrant collection %s (dims=%d)", self.collection, self._dimensions)

    async def embed(self, text: str) -> list[float]:
        response = await self._openai.embeddings.create(model=self._model, input=text)
        return response.data[0].embedding

    async def index_message(
        self,
        *,
        thread_id: str,
        message_id: str,
        role: str,
        content: str,
        created_at: str,
    ) -> str:
        """Embed one message and upsert it.

        Returns:
            The Qdrant point id.
        """
        vector = await self.embed(content)
        pid = point_id(thread_id, message_id)
        await self._qdrant.upsert(
            collection_name=self.collection,
            points=[
                PointStruct(
                    id=pid,
                    vector=vector,
                    payload={
                        "thread_id": thread_id,
                        "message_id": message_id,
                        "role": role,
                        "content": content,
                        "created_at": created_at,
                    },
                )
            ],
        )
        logger.debug("Indexed message %s of thread %s", message_id, thread_id)
        return pid

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        exclude_thread_id: str | None = None,
        role: str | None = None,
    ) -> list[HistoryHit]:
        """Most similar indexed messages to ``query``."""
        vector = await self.embed(query)

        must = [FieldCondition(key="role", match=MatchValue(value=role))] if role else None
        must_not = (
            [FieldCondition(key="thread_id", match=MatchValue(value=exclude_thread_id))]
            if exclude_thread_id
            else None
        )
        query_filter = Filter(must=must, must_not=must_not) if (must or must_not) else None

        response = await self._qdrant.query_points(
            collection_name=self.collection,
            query=vector,
            limit=limit,
            query_filter=query_filter,
            with_payload=True,
        )

        hits = []
        for point in response.points:
            payload = point.payload or {}
            hits.append(
                HistoryHit(
                    thread_id=str(payload.get("thread_id", "")),
                    message_id=str(payload.get("message_id", "")),
                    role=str(payload.get("role", "")),
                    content=str(payload.get("content", "")),
                    created_at=str(payload.get("created_at", "")),
                    score=point.score,
                )
            )
        logger.debug("History search for %r returned %d hits", query[:50], len(hits))
        return hits

    async def close(self) -> None:
        await self._openai.close()
        await self._qdrant.close()
