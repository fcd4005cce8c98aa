"""
Vector database contract consumed by the collection store.

Any backend (Qdrant, an in-process fake in tests, ...) implements this
protocol. Index internals are left to the backend.
"""

from typing import Any, Protocol, runtime_checkable

from .models import CollectionStats, FieldSchema, InsertResult, SearchFilter, SearchResult, VectorRecord


@runtime_checkable
class VectorDatabase(Protocol):
    """Async contract for a remote vector database."""

    async def has_collection(self, name: str) -> bool:
        """Return True if the collection exists."""

    async def create_collection(
        self, name: str, fields: list[FieldSchema], description: str = ""
    ) -> None:
        """Create a collection with the given schema."""

    async def create_index(
        self,
        collection: str,
        field_name: str,
        index_type: str,
        metric_type: str,
        params: dict[str, Any],
    ) -> None:
        """Build a similarity index over a vector field."""

    async def insert(self, collection: str, records: list[VectorRecord]) -> InsertResult:
        """Insert records, assigning int64 ids."""

    async def search(
        self,
        collection: str,
        vector: list[float],
        limit: int,
        filter: SearchFilter | None = None,
    ) -> list[SearchResult]:
        """Return up to ``limit`` hits by descending similarity, with stored embeddings."""

    async def delete(self, collection: str, filter: SearchFilter) -> int:
        """Delete matching records and return how many were removed."""

    async def list_collections(self) -> list[str]:
        """Return all collection names."""

    async def drop_collection(self, name: str) -> None:
        """Drop a collection and all of its records."""

    async def load_collection(self, name: str) -> None:
        """Load a collection into serving memory."""

    async def release_collection(self, name: str) -> None:
        """Release a collection from serving memory."""

    async def get_load_progress(self, name: str) -> int:
        """Return the load progress as a percentage (100 = fully loaded)."""

    async def describe_collection(self, name: str) -> dict[str, Any]:
        """Return schema information (at least ``vector_dim`` and ``metric_type``)."""

    async def get_statistics(self, name: str) -> CollectionStats:
        """Return row count and index information."""

    async def close(self) -> None:
        """Release client resources."""
