"""
Keyed storage for collection metadata.

The collection store only needs get/put/delete by key. Two interchangeable
implementations are provided:

- VectorKeyedStore: records live in a reserved collection of the vector
  database itself. Lookups reuse similarity search with an exact-match
  attribute filter; the query vector is a deterministic hash of the key and
  plays no part in selecting the record.
- RedisKeyedStore: a Redis hash of key -> serialized value.
"""

from typing import Any, Protocol, runtime_checkable

from loguru import logger
from redis import asyncio as aioredis

from ..config import Config
from ..redis_client import get_redis_client
from ..retry import DEFAULT_RETRY_POLICY, RetryPolicy
from ..vectors import hash_embedding
from .base import VectorDatabase
from .models import SearchFilter, VectorRecord, utc_now
from .schema import provision_collection

KEY_ATTRIBUTE = "key"


@runtime_checkable
class KeyedStore(Protocol):
    """Minimal key -> text store."""

    @property
    def reserved_collections(self) -> frozenset[str]:
        """Vector database collections this store occupies."""

    async def initialize(self) -> None:
        """Prepare backing storage (idempotent)."""

    async def get(self, key: str) -> str | None:
        """Return the stored value or None."""

    async def put(self, key: str, value: str, attributes: dict[str, Any] | None = None) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    async def delete(self, key: str) -> int:
        """Remove ``key`` and return how many entries were removed."""


class VectorKeyedStore:
    """KeyedStore backed by a reserved vector database collection."""

    def __init__(
        self,
        db: VectorDatabase,
        collection: str = Config.METADATA_COLLECTION,
        vector_dim: int = Config.METADATA_VECTOR_DIM,
        retry: RetryPolicy = DEFAULT_RETRY_POLICY,
        record_type: str = "collection_metadata",
    ):
        self.db = db
        self.collection = collection
        self.vector_dim = vector_dim
        self.retry = retry
        self.record_type = record_type
        self._initialized = False

    @property
    def reserved_collections(self) -> frozenset[str]:
        return frozenset({self.collection})

    async def initialize(self) -> None:
        """Create the reserved collection on first use."""
        if self._initialized:
            return
        exists = await self.retry.call(
            lambda: self.db.has_collection(self.collection),
            f"check collection {self.collection}",
        )
        if not exists:
            logger.info(f"Bootstrapping reserved collection {self.collection}")
            await provision_collection(
                self.db,
                self.collection,
                self.vector_dim,
                self.retry,
                description="Collection metadata registry",
            )
        self._initialized = True
        logger.debug(f"Reserved collection ready: {self.collection}")

    async def _ensure_loaded(self) -> None:
        await self.initialize()
        progress = await self.retry.call(
            lambda: self.db.get_load_progress(self.collection),
            f"load progress {self.collection}",
        )
        if progress < 100:
            await self.retry.call(
                lambda: self.db.load_collection(self.collection),
                f"load collection {self.collection}",
            )

    def _key_vector(self, key: str) -> list[float]:
        return hash_embedding(key, self.vector_dim)

    async def get(self, key: str) -> str | None:
        await self._ensure_loaded()
        results = await self.retry.call(
            lambda: self.db.search(
                self.collection,
                self._key_vector(key),
                1,
                SearchFilter.eq(KEY_ATTRIBUTE, key),
            ),
            f"lookup {key} in {self.collection}",
        )
        if not results:
            return None
        return results[0].text

    async def put(self, key: str, value: str, attributes: dict[str, Any] | None = None) -> None:
        await self._ensure_loaded()
        # Delete-then-insert keeps exactly one record per key.
        await self.retry.call(
            lambda: self.db.delete(self.collection, SearchFilter.eq(KEY_ATTRIBUTE, key)),
            f"delete {key} from {self.collection}",
        )
        record = VectorRecord(
            embedding=self._key_vector(key),
            text=value,
            attributes={
                **(attributes or {}),
                KEY_ATTRIBUTE: key,
                "type": self.record_type,
                "timestamp": utc_now().isoformat(),
            },
        )
        await self.retry.call(
            lambda: self.db.insert(self.collection, [record]),
            f"store {key} in {self.collection}",
        )

    async def delete(self, key: str) -> int:
        await self._ensure_loaded()
        return await self.retry.call(
            lambda: self.db.delete(self.collection, SearchFilter.eq(KEY_ATTRIBUTE, key)),
            f"delete {key} from {self.collection}",
        )


class RedisKeyedStore:
    """KeyedStore backed by a single Redis hash."""

    def __init__(
        self,
        redis: aioredis.Redis | None = None,
        hash_key: str = Config.METADATA_KEY_PREFIX,
        retry: RetryPolicy = DEFAULT_RETRY_POLICY,
    ):
        self._redis = redis
        self.hash_key = hash_key
        self.retry = retry

    @property
    def reserved_collections(self) -> frozenset[str]:
        return frozenset()

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = await get_redis_client()
        return self._redis

    async def initialize(self) -> None:
        await self._get_redis()

    async def get(self, key: str) -> str | None:
        redis = await self._get_redis()
        value = await self.retry.call(lambda: redis.hget(self.hash_key, key), f"redis hget {key}")
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def put(self, key: str, value: str, attributes: dict[str, Any] | None = None) -> None:
        redis = await self._get_redis()
        await self.retry.call(lambda: redis.hset(self.hash_key, key, value), f"redis hset {key}")

    async def delete(self, key: str) -> int:
        redis = await self._get_redis()
        return int(
            await self.retry.call(lambda: redis.hdel(self.hash_key, key), f"redis hdel {key}")
        )
