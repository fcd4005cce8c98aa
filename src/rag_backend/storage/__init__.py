"""Vector database access, metadata and caches."""

from .base import VectorDatabase
from .cache import ExistenceCache, ExistenceCacheEntry, ExpiringCache
from .collection_store import AUTO_REGISTERED_TAG, CollectionStore, validate_collection_name
from .keyed_store import KeyedStore, RedisKeyedStore, VectorKeyedStore
from .models import (
    CollectionMetadata,
    CollectionStats,
    CollectionStatus,
    FilterOperator,
    InsertResult,
    SearchFilter,
    SearchResult,
    VectorRecord,
)
from .qdrant_client import QdrantVectorDatabase

__all__ = [
    "AUTO_REGISTERED_TAG",
    "CollectionMetadata",
    "CollectionStats",
    "CollectionStatus",
    "CollectionStore",
    "ExistenceCache",
    "ExistenceCacheEntry",
    "ExpiringCache",
    "FilterOperator",
    "InsertResult",
    "KeyedStore",
    "QdrantVectorDatabase",
    "RedisKeyedStore",
    "SearchFilter",
    "SearchResult",
    "VectorDatabase",
    "VectorKeyedStore",
    "validate_collection_name",
]
