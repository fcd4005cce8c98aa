"""
Collection store: single point of truth for "does collection X exist, and
what are its declared properties".

Owns two process-local caches (existence and metadata). The vector database
remains the system of record; the caches are a time-bounded mirror that is
served stale only when the remote side is unavailable.
"""

import asyncio
import dataclasses
import re
import time
from collections.abc import Callable, Iterable

from loguru import logger

from ..config import Config
from ..errors import NotFound, ProvisionError, RagBackendError, RemoteUnavailable, ValidationError
from ..retry import DEFAULT_RETRY_POLICY, RetryPolicy
from ..vectors import validate_embedding
from .base import VectorDatabase
from .cache import ExistenceCache, ExpiringCache
from .keyed_store import KeyedStore, VectorKeyedStore
from .models import (
    CollectionMetadata,
    CollectionStats,
    CollectionStatus,
    InsertResult,
    SearchFilter,
    SearchResult,
    VectorRecord,
    utc_now,
)
from .schema import provision_collection

AUTO_REGISTERED_TAG = "auto-registered"
MAX_COLLECTION_NAME_LENGTH = 255
_COLLECTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_collection_name(name: str) -> None:
    """
    Reject malformed collection names.

    Raises:
        ValidationError: If the name is empty, too long or has invalid characters
    """
    if not name:
        raise ValidationError("Collection name cannot be empty")
    if len(name) > MAX_COLLECTION_NAME_LENGTH:
        raise ValidationError(
            f"Collection name cannot exceed {MAX_COLLECTION_NAME_LENGTH} characters"
        )
    if not _COLLECTION_NAME_PATTERN.match(name):
        raise ValidationError(
            f"Invalid collection name {name!r}: only letters, digits, '_' and '-' are allowed"
        )


class CollectionStore:
    """
    Lifecycle, metadata and record access for named vector collections.

    Application-visible state per collection:
        unknown -> unloaded (create) -> loaded (load) -> unloaded (unload)
        any -> deleted (delete; metadata and caches purged in the same call)

    Example:
        store = CollectionStore(QdrantVectorDatabase())
        await store.initialize()
        await store.create_collection("docs", tags={"public"}, vector_dim=768)
        hits = await store.search("docs", query_vector, limit=5)
    """

    def __init__(
        self,
        db: VectorDatabase,
        keyed_store: KeyedStore | None = None,
        retry: RetryPolicy = DEFAULT_RETRY_POLICY,
        existence_ttl: float = Config.EXISTENCE_CACHE_TTL,
        metadata_ttl: float = Config.METADATA_CACHE_TTL,
        default_vector_dim: int = Config.DEFAULT_VECTOR_DIM,
        reserved_names: Iterable[str] = Config.RESERVED_COLLECTION_NAMES,
        insert_batch_size: int = Config.INSERT_BATCH_SIZE,
        list_concurrency: int = Config.QUERY_CONCURRENCY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.retry = retry
        self.keyed_store = keyed_store or VectorKeyedStore(db, retry=retry)
        self.default_vector_dim = default_vector_dim
        self.insert_batch_size = insert_batch_size
        self.list_concurrency = list_concurrency
        self.reserved_names = frozenset(reserved_names) | self.keyed_store.reserved_collections

        self.existence_cache = ExistenceCache(existence_ttl, clock)
        self.metadata_cache: ExpiringCache[CollectionMetadata] = ExpiringCache(metadata_ttl, clock)

        # Serializes provisioning and deletion per collection name
        self._name_locks: dict[str, asyncio.Lock] = {}

        self.stats = {
            "remote_existence_checks": 0,
            "degraded_reads": 0,
            "auto_registered": 0,
        }

    # -------------------------------------------------------------------------
    # Bootstrapping
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Bootstrap the metadata store and warm the metadata cache.

        Collections found in the vector database without metadata are
        auto-registered during warm-up.
        """
        logger.info("Initializing collection store")
        await self.keyed_store.initialize()
        try:
            collections = await self.list_collections()
        except RagBackendError as e:
            logger.warning(f"Metadata warm-up skipped: {e}")
            return
        logger.info(f"Collection store ready: {len(collections)} collections in cache")

    def is_reserved(self, name: str) -> bool:
        return name.lower() in {n.lower() for n in self.reserved_names}

    def _check_user_collection(self, name: str) -> None:
        validate_collection_name(name)
        if self.is_reserved(name):
            raise ValidationError(f"Collection name {name!r} is reserved")

    def _lock_for(self, name: str) -> asyncio.Lock:
        return self._name_locks.setdefault(name, asyncio.Lock())

    # -------------------------------------------------------------------------
    # Existence
    # -------------------------------------------------------------------------

    async def exists(self, name: str) -> bool:
        """
        Check whether a collection exists.

        Fresh cache entries answer without a remote call. On remote failure a
        stale entry is served (degraded read); with no entry at all the error
        propagates, because "unknown" must never be reported as "absent".

        Raises:
            RemoteUnavailable: Remote check failed and nothing is cached
        """
        validate_collection_name(name)

        cached = self.existence_cache.fresh(name)
        if cached is not None:
            logger.debug(f"Cache hit for collection {name} (exists: {cached})")
            return cached

        self.stats["remote_existence_checks"] += 1
        try:
            exists = await self.retry.call(
                lambda: self.db.has_collection(name), f"check collection {name}"
            )
        except RemoteUnavailable as exc:
            entry = self.existence_cache.lookup(name)
            if entry is None:
                logger.error(f"Cannot determine whether {name} exists: {exc}")
                raise
            self.stats["degraded_reads"] += 1
            logger.warning(
                f"Degraded read: using cached existence for {name} "
                f"(exists: {entry.exists}, age: {self.existence_cache.age(name):.1f}s)"
            )
            return entry.exists

        self.existence_cache.record(name, exists)
        logger.debug(f"Collection {name} exists: {exists}")
        return exists

    async def ensure_exists(self, name: str, vector_dim: int | None = None) -> bool:
        """
        Create the collection with the fixed schema if it is absent.

        Returns:
            True if the collection was created by this call

        Raises:
            ProvisionError: If create or index failed (the cache is left unset)
        """
        self._check_user_collection(name)
        async with self._lock_for(name):
            return await self._ensure_exists(name, vector_dim)

    async def _ensure_exists(self, name: str, vector_dim: int | None) -> bool:
        if await self.exists(name):
            logger.debug(f"Collection already exists: {name}")
            return False

        dim = vector_dim or self.default_vector_dim
        logger.info(f"Creating collection: {name} (dim={dim})")
        try:
            await provision_collection(self.db, name, dim, self.retry)
        except ProvisionError:
            self.existence_cache.invalidate(name)
            raise

        self.existence_cache.record(name, True)
        return True

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def is_loaded(self, name: str) -> bool:
        try:
            progress = await self.retry.call(
                lambda: self.db.get_load_progress(name), f"load progress {name}"
            )
        except RemoteUnavailable as e:
            logger.debug(f"Failed to check load status of {name}: {e}")
            return False
        return progress >= 100

    async def load_collection(self, name: str) -> None:
        validate_collection_name(name)
        if not await self.exists(name):
            raise NotFound(f"Collection not found: {name}")

        logger.info(f"Loading collection: {name}")
        await self.retry.call(lambda: self.db.load_collection(name), f"load collection {name}")
        await self._record_status(name, CollectionStatus.LOADED)

    async def unload_collection(self, name: str) -> None:
        validate_collection_name(name)
        if not await self.exists(name):
            raise NotFound(f"Collection not found: {name}")

        logger.info(f"Unloading collection: {name}")
        await self.retry.call(
            lambda: self.db.release_collection(name), f"release collection {name}"
        )
        await self._record_status(name, CollectionStatus.UNLOADED)

    async def ensure_loaded(self, name: str) -> None:
        """Load the collection into serving memory if it is not already."""
        if not await self.is_loaded(name):
            logger.info(f"Collection not loaded, loading now: {name}")
            await self.load_collection(name)

    async def _record_status(self, name: str, status: CollectionStatus) -> None:
        if self.is_reserved(name):
            return
        try:
            metadata = await self.get_metadata(name)
            if metadata is None or metadata.status == status:
                return
            await self.update_metadata(name, status=status)
        except RagBackendError as e:
            # Status is advisory; serving state lives in the vector database.
            logger.warning(f"Could not record status {status.value} for {name}: {e}")

    # -------------------------------------------------------------------------
    # Metadata CRUD
    # -------------------------------------------------------------------------

    async def _persist(self, metadata: CollectionMetadata) -> None:
        await self.keyed_store.put(
            metadata.name,
            metadata.to_json(),
            attributes={
                "collection_name": metadata.name,
                "tags": sorted(metadata.tags),
                "status": metadata.status.value,
            },
        )
        self.metadata_cache.set(metadata.name, metadata)

    async def create_metadata(
        self,
        name: str,
        tags: Iterable[str] | None = None,
        description: str = "",
        vector_dim: int | None = None,
    ) -> CollectionMetadata:
        """Create and persist metadata for a collection."""
        self._check_user_collection(name)
        metadata = CollectionMetadata(
            name=name,
            vector_dim=vector_dim or self.default_vector_dim,
            tags=set(tags or ()),
            description=description,
        )
        await self._persist(metadata)
        logger.info(f"Collection metadata created: {name}")
        return metadata

    async def get_metadata(self, name: str) -> CollectionMetadata | None:
        """
        Return metadata for a collection, or None if none is recorded.

        Raises:
            RemoteUnavailable: Lookup failed and nothing is cached
        """
        validate_collection_name(name)

        cached = self.metadata_cache.get(name)
        if cached is not None:
            logger.debug(f"Cache hit for metadata: {name}")
            return cached

        try:
            raw = await self.keyed_store.get(name)
        except RemoteUnavailable as exc:
            entry = self.metadata_cache.get_entry(name)
            if entry is None:
                raise
            self.stats["degraded_reads"] += 1
            logger.warning(f"Degraded read: serving cached metadata for {name}: {exc}")
            return entry.value

        if raw is None:
            logger.debug(f"No metadata found for collection: {name}")
            return None

        try:
            metadata = CollectionMetadata.from_json(raw)
        except ValidationError as e:
            logger.error(f"Discarding unreadable metadata for {name}: {e}")
            return None

        self.metadata_cache.set(name, metadata)
        return metadata

    async def update_metadata(
        self,
        name: str,
        *,
        tags: Iterable[str] | None = None,
        description: str | None = None,
        status: CollectionStatus | None = None,
    ) -> CollectionMetadata:
        """
        Update mutable metadata fields; name, vector_dim and created_at are preserved.

        Raises:
            NotFound: If the collection has no metadata
        """
        existing = await self.get_metadata(name)
        if existing is None:
            raise NotFound(f"Collection metadata not found: {name}")

        changes = {"updated_at": utc_now()}
        if tags is not None:
            changes["tags"] = set(tags)
        if description is not None:
            changes["description"] = description
        if status is not None:
            changes["status"] = CollectionStatus(status)

        updated = dataclasses.replace(existing, **changes)
        await self._persist(updated)
        logger.info(f"Collection metadata updated: {name}")
        return updated

    async def delete_metadata(self, name: str) -> bool:
        """Remove metadata; returns True if a record was deleted."""
        validate_collection_name(name)
        self.metadata_cache.invalidate(name)
        deleted = await self.keyed_store.delete(name)
        logger.info(f"Collection metadata deleted: {name} ({deleted} record(s))")
        return deleted > 0

    # -------------------------------------------------------------------------
    # Collection lifecycle
    # -------------------------------------------------------------------------

    async def create_collection(
        self,
        name: str,
        tags: Iterable[str] | None = None,
        description: str = "",
        vector_dim: int | None = None,
    ) -> CollectionMetadata:
        """
        Provision a collection and its metadata (idempotent).

        A newly provisioned collection always gets fresh metadata, replacing
        any record left behind by a collection dropped outside this store.
        For an existing collection the stored metadata is returned.

        Raises:
            ValidationError: If the collection exists with a different dimension
        """
        self._check_user_collection(name)
        dim = vector_dim or self.default_vector_dim

        async with self._lock_for(name):
            created = await self._ensure_exists(name, dim)
            existing = None if created else await self.get_metadata(name)
            if existing is not None:
                if existing.vector_dim != dim:
                    raise ValidationError(
                        f"Collection {name} already exists with dimension {existing.vector_dim}"
                    )
                return existing

            metadata = await self.create_metadata(name, tags, description, dim)

        logger.info(f"Collection created: {name} with tags: {', '.join(sorted(metadata.tags))}")
        return metadata

    async def delete_collection(self, name: str) -> None:
        """
        Drop a collection together with its metadata and cache entries.

        Metadata is removed before the drop so it never outlives its
        collection. If the drop then fails, the collection is auto-registered
        on the next listing.

        Raises:
            NotFound: If the collection does not exist
        """
        self._check_user_collection(name)
        async with self._lock_for(name):
            if not await self.exists(name):
                self.metadata_cache.invalidate(name)
                raise NotFound(f"Collection not found: {name}")

            await self.delete_metadata(name)
            try:
                await self.retry.call(
                    lambda: self.db.drop_collection(name), f"drop collection {name}"
                )
            finally:
                self.existence_cache.invalidate(name)

            self.existence_cache.record(name, False)
        logger.info(f"Collection deleted: {name}")

    async def list_collections(self) -> list[CollectionMetadata]:
        """
        Metadata for every collection in the vector database.

        The reserved metadata collection is excluded; collections without
        metadata are auto-registered.
        """
        names = await self.retry.call(self.db.list_collections, "list collections")
        user_names = [n for n in names if not self.is_reserved(n)]
        for name in user_names:
            self.existence_cache.record(name, True)

        semaphore = asyncio.Semaphore(self.list_concurrency)

        async def resolve(name: str) -> CollectionMetadata:
            async with semaphore:
                metadata = await self.get_metadata(name)
                if metadata is None:
                    metadata = await self._auto_register(name)
                return metadata

        metadata_list = await asyncio.gather(*(resolve(n) for n in user_names))
        logger.info(f"Listed {len(metadata_list)} collections")
        return list(metadata_list)

    async def _auto_register(self, name: str) -> CollectionMetadata:
        logger.warning(f"Collection {name} not in metadata. Auto-registering...")

        vector_dim = self.default_vector_dim
        try:
            description = await self.retry.call(
                lambda: self.db.describe_collection(name), f"describe collection {name}"
            )
            vector_dim = description.get("vector_dim") or vector_dim
        except RemoteUnavailable as e:
            logger.warning(f"Could not describe {name}, assuming dim={vector_dim}: {e}")

        metadata = CollectionMetadata(
            name=name,
            vector_dim=vector_dim,
            tags={AUTO_REGISTERED_TAG},
            description=f"Auto-registered collection: {name}",
        )
        await self._persist(metadata)
        self.stats["auto_registered"] += 1
        logger.info(f"Collection auto-registered: {name}")
        return metadata

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    async def vector_dim(self, name: str) -> int:
        """Dimension of a collection, from metadata or the database schema."""
        metadata = await self.get_metadata(name)
        if metadata is not None:
            return metadata.vector_dim
        description = await self.retry.call(
            lambda: self.db.describe_collection(name), f"describe collection {name}"
        )
        return description.get("vector_dim") or self.default_vector_dim

    async def _require_ready(self, name: str) -> int:
        self._check_user_collection(name)
        if not await self.exists(name):
            raise NotFound(f"Collection not found: {name}")
        await self.ensure_loaded(name)
        return await self.vector_dim(name)

    async def insert(self, name: str, records: list[VectorRecord]) -> InsertResult:
        """
        Insert records in batches after validating every embedding.

        Raises:
            NotFound: If the collection does not exist
            ValidationError: On dimension mismatch or non-finite values
        """
        if not records:
            return InsertResult(inserted_count=0, ids=[])

        dim = await self._require_ready(name)
        for record in records:
            validate_embedding(record.embedding, dim)

        total = InsertResult(inserted_count=0, ids=[])
        for i in range(0, len(records), self.insert_batch_size):
            batch = records[i : i + self.insert_batch_size]
            result = await self.retry.call(
                lambda batch=batch: self.db.insert(name, batch), f"insert into {name}"
            )
            total.inserted_count += result.inserted_count
            total.ids.extend(result.ids)

        logger.info(f"Inserted {total.inserted_count} records into {name}")
        return total

    async def search(
        self,
        name: str,
        vector: list[float],
        limit: int,
        filter: SearchFilter | None = None,
    ) -> list[SearchResult]:
        """Top-``limit`` similarity search, ordered by descending score."""
        if limit <= 0:
            raise ValidationError(f"limit must be > 0, got {limit}")
        dim = await self._require_ready(name)
        validate_embedding(vector, dim)

        results = await self.retry.call(
            lambda: self.db.search(name, vector, limit, filter), f"search {name}"
        )
        results = sorted(results, key=lambda r: r.score, reverse=True)
        logger.debug(f"Search completed: {len(results)} results in {name}")
        return results

    async def delete_records(self, name: str, filter: SearchFilter) -> int:
        self._check_user_collection(name)
        if not await self.exists(name):
            raise NotFound(f"Collection not found: {name}")
        deleted = await self.retry.call(
            lambda: self.db.delete(name, filter), f"delete from {name}"
        )
        logger.info(f"Deleted {deleted} records from {name} where {filter.to_expression()}")
        return deleted

    async def get_collection_stats(self, name: str) -> CollectionStats:
        validate_collection_name(name)
        if not await self.exists(name):
            raise NotFound(f"Collection not found: {name}")
        return await self.retry.call(lambda: self.db.get_statistics(name), f"statistics {name}")

    def clear_cache(self, name: str | None = None) -> None:
        """Drop cached existence and metadata for one collection or all."""
        if name is None:
            self.existence_cache.invalidate()
            self.metadata_cache.clear()
            logger.debug("Cleared all collection caches")
        else:
            self.existence_cache.invalidate(name)
            self.metadata_cache.invalidate(name)
            logger.debug(f"Cleared caches for collection: {name}")
