"""
Long-term user memory and session summaries.

Two dedicated collections hold one record per user memory and one per
session summary. Lookups select records by exact attribute match; the query
vector only satisfies the search primitive.
"""

import json
from datetime import timedelta
from typing import Any

from loguru import logger

from .embedding.embedder import EmbeddingClient, HashEmbedder
from .storage.collection_store import CollectionStore
from .storage.models import FilterOperator, InsertResult, SearchFilter, VectorRecord, utc_now
from .vectors import hash_embedding

USER_MEMORY_COLLECTION = "memory_users"
SESSION_MEMORY_COLLECTION = "memory_sessions"


class MemoryStore:
    """
    User and session memory on top of the collection store.

    Read paths never raise: a failed lookup is logged and reported as empty.
    Write paths propagate errors.
    """

    def __init__(self, store: CollectionStore, embedder: EmbeddingClient | None = None):
        self.store = store
        self.embedder = embedder or HashEmbedder()

    async def initialize(self) -> None:
        logger.info("Initializing memory collections")
        await self.store.create_collection(
            USER_MEMORY_COLLECTION,
            tags={"memory", "user"},
            description="User long-term memory and preferences",
            vector_dim=self.embedder.dimension,
        )
        await self.store.create_collection(
            SESSION_MEMORY_COLLECTION,
            tags={"memory", "session"},
            description="Session summaries and key points",
            vector_dim=self.embedder.dimension,
        )
        logger.info("Memory collections initialized")

    async def _vector(self, text: str, embedding: list[float] | None) -> list[float]:
        return embedding if embedding else await self.embedder.embed(text)

    def _lookup_vector(self, key: str, embedding: list[float] | None) -> list[float]:
        # Attribute filters select the record; no embedding call needed
        return embedding if embedding else hash_embedding(key, self.embedder.dimension)

    # -------------------------------------------------------------------------
    # User memory
    # -------------------------------------------------------------------------

    async def store_user_memory(
        self,
        user_id: str,
        summary: str,
        preferences: dict[str, Any] | None = None,
        topics: list[str] | None = None,
        embedding: list[float] | None = None,
    ) -> InsertResult:
        logger.info(f"Storing user memory for {user_id}")
        record = VectorRecord(
            embedding=await self._vector(summary, embedding),
            text=summary,
            attributes={
                "user_id": user_id,
                "type": "user_memory",
                "preferences": json.dumps(preferences or {}),
                "topics": ",".join(topics or []),
                "timestamp": utc_now().isoformat(),
            },
        )
        return await self.store.insert(USER_MEMORY_COLLECTION, [record])

    async def update_user_memory(
        self,
        user_id: str,
        summary: str,
        preferences: dict[str, Any] | None = None,
        topics: list[str] | None = None,
        embedding: list[float] | None = None,
    ) -> InsertResult:
        """Replace the user's memory record."""
        logger.info(f"Updating user memory for {user_id}")
        await self.store.delete_records(USER_MEMORY_COLLECTION, SearchFilter.eq("user_id", user_id))
        return await self.store_user_memory(user_id, summary, preferences, topics, embedding)

    async def retrieve_user_memory(self, user_id: str, embedding: list[float] | None = None) -> str:
        try:
            results = await self.store.search(
                USER_MEMORY_COLLECTION,
                self._lookup_vector(user_id, embedding),
                1,
                SearchFilter.eq("user_id", user_id),
            )
        except Exception as e:
            logger.error(f"Failed to retrieve user memory: {e}")
            return ""
        if not results:
            logger.info(f"No memory found for user {user_id}")
            return ""
        return results[0].text

    # -------------------------------------------------------------------------
    # Session memory
    # -------------------------------------------------------------------------

    async def store_session_summary(
        self,
        session_id: str,
        user_id: str,
        summary: str,
        key_points: list[str] | None = None,
        topics: list[str] | None = None,
        embedding: list[float] | None = None,
    ) -> InsertResult:
        logger.info(f"Storing session summary for {session_id}")
        record = VectorRecord(
            embedding=await self._vector(summary, embedding),
            text=summary,
            attributes={
                "session_id": session_id,
                "user_id": user_id,
                "type": "session_memory",
                "key_points": "|".join(key_points or []),
                "topics": ",".join(topics or []),
                "timestamp": utc_now().isoformat(),
            },
        )
        return await self.store.insert(SESSION_MEMORY_COLLECTION, [record])

    async def retrieve_session_summary(
        self, session_id: str, embedding: list[float] | None = None
    ) -> str:
        try:
            results = await self.store.search(
                SESSION_MEMORY_COLLECTION,
                self._lookup_vector(session_id, embedding),
                1,
                SearchFilter.eq("session_id", session_id),
            )
        except Exception as e:
            logger.error(f"Failed to retrieve session summary: {e}")
            return ""
        if not results:
            logger.info(f"No session summary found for {session_id}")
            return ""
        return results[0].text

    async def get_user_session_history(self, user_id: str, limit: int = 10) -> list[str]:
        try:
            results = await self.store.search(
                SESSION_MEMORY_COLLECTION,
                self._lookup_vector(user_id, None),
                limit,
                SearchFilter.eq("user_id", user_id),
            )
        except Exception as e:
            logger.error(f"Failed to retrieve session history: {e}")
            return []
        logger.info(f"Retrieved {len(results)} sessions for user {user_id}")
        return [r.text for r in results]

    async def clear_old_session_memories(self, days_old: int = 30) -> int:
        """Delete session summaries older than ``days_old`` days."""
        cutoff = utc_now() - timedelta(days=days_old)
        deleted = await self.store.delete_records(
            SESSION_MEMORY_COLLECTION,
            SearchFilter("timestamp", FilterOperator.LT, cutoff.isoformat()),
        )
        logger.info(f"Deleted {deleted} session memories older than {days_old} days")
        return deleted

    async def get_memory_stats(self) -> dict[str, Any]:
        user_stats = await self.store.get_collection_stats(USER_MEMORY_COLLECTION)
        session_stats = await self.store.get_collection_stats(SESSION_MEMORY_COLLECTION)
        stats = {
            "user_memory": {
                "collection": USER_MEMORY_COLLECTION,
                "row_count": user_stats.row_count,
                "vector_dim": user_stats.vector_dim,
                "indexes": user_stats.indexes,
            },
            "session_memory": {
                "collection": SESSION_MEMORY_COLLECTION,
                "row_count": session_stats.row_count,
                "vector_dim": session_stats.vector_dim,
                "indexes": session_stats.indexes,
            },
            "total_memories": user_stats.row_count + session_stats.row_count,
        }
        logger.info(f"Memory stats: {stats['total_memories']} total memories")
        return stats
