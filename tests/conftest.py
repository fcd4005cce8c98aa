"""Pytest fixtures and test utilities for the RAG backend test suite."""

import re
from collections import Counter

import pytest

from rag_backend.errors import NotFound
from rag_backend.retry import RetryPolicy
from rag_backend.storage.cache import ExistenceCache
from rag_backend.storage.collection_store import CollectionStore
from rag_backend.storage.models import (
    CollectionStats,
    FieldType,
    FilterOperator,
    InsertResult,
    SearchFilter,
    SearchResult,
    VectorRecord,
)
from rag_backend.vectors import cosine_similarity, normalize


# ============================================================================
# FAKES
# ============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _matches(attributes: dict, search_filter: SearchFilter | None) -> bool:
    if search_filter is None:
        return True
    field_value = attributes.get(search_filter.field)
    value = search_filter.value
    op = search_filter.operator
    if op == FilterOperator.EQ:
        return field_value == value
    if op == FilterOperator.NE:
        return field_value != value
    if op == FilterOperator.IN:
        return field_value in value
    if op == FilterOperator.LIKE:
        return field_value is not None and str(value) in str(field_value)
    if field_value is None:
        return False
    if op == FilterOperator.GT:
        return field_value > value
    if op == FilterOperator.GTE:
        return field_value >= value
    if op == FilterOperator.LT:
        return field_value < value
    return field_value <= value


class FakeVectorDatabase:
    """
    In-process VectorDatabase that records every remote call.

    Methods listed in ``failing`` raise ConnectionError, simulating an
    unreachable server.
    """

    def __init__(self):
        self.collections: dict[str, dict] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.failing: set[str] = set()
        self._next_id = 1

    def call_count(self, method: str, collection: str | None = None) -> int:
        return sum(
            1 for m, c in self.calls if m == method and (collection is None or c == collection)
        )

    def _record(self, method: str, collection: str | None = None) -> None:
        self.calls.append((method, collection))
        if method in self.failing:
            raise ConnectionError(f"{method} unavailable")

    def _get(self, name: str) -> dict:
        if name not in self.collections:
            raise NotFound(f"Collection not found: {name}")
        return self.collections[name]

    async def has_collection(self, name):
        self._record("has_collection", name)
        return name in self.collections

    async def create_collection(self, name, fields, description=""):
        self._record("create_collection", name)
        if name in self.collections:
            return
        vector_field = next(f for f in fields if f.data_type == FieldType.FLOAT_VECTOR)
        self.collections[name] = {
            "dim": vector_field.dim,
            "metric": vector_field.metric_type,
            "description": description,
            "records": {},
            "loaded": False,
            "indexes": [],
        }

    async def create_index(self, collection, field_name, index_type, metric_type, params):
        self._record("create_index", collection)
        self._get(collection)["indexes"].append(
            {"field_name": field_name, "index_type": index_type, "metric_type": metric_type, "params": params}
        )

    async def insert(self, collection, records):
        self._record("insert", collection)
        stored = self._get(collection)["records"]
        ids = []
        for record in records:
            record_id = self._next_id
            self._next_id += 1
            stored[record_id] = VectorRecord(
                embedding=list(record.embedding),
                text=record.text,
                attributes=dict(record.attributes),
                id=record_id,
            )
            record.id = record_id
            ids.append(record_id)
        return InsertResult(inserted_count=len(ids), ids=ids)

    async def search(self, collection, vector, limit, filter=None):
        self._record("search", collection)
        stored = self._get(collection)["records"]
        hits = [
            SearchResult(
                id=record.id,
                text=record.text,
                attributes=dict(record.attributes),
                score=cosine_similarity(vector, record.embedding),
                embedding=list(record.embedding),
                collection=collection,
            )
            for record in stored.values()
            if _matches(record.attributes, filter)
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    async def delete(self, collection, filter):
        self._record("delete", collection)
        stored = self._get(collection)["records"]
        doomed = [rid for rid, r in stored.items() if _matches(r.attributes, filter)]
        for rid in doomed:
            del stored[rid]
        return len(doomed)

    async def list_collections(self):
        self._record("list_collections")
        return list(self.collections)

    async def drop_collection(self, name):
        self._record("drop_collection", name)
        self._get(name)
        del self.collections[name]

    async def load_collection(self, name):
        self._record("load_collection", name)
        self._get(name)["loaded"] = True

    async def release_collection(self, name):
        self._record("release_collection", name)
        self._get(name)["loaded"] = False

    async def get_load_progress(self, name):
        self._record("get_load_progress", name)
        return 100 if self._get(name)["loaded"] else 0

    async def describe_collection(self, name):
        self._record("describe_collection", name)
        collection = self._get(name)
        return {"name": name, "vector_dim": collection["dim"], "metric_type": collection["metric"]}

    async def get_statistics(self, name):
        self._record("get_statistics", name)
        collection = self._get(name)
        return CollectionStats(
            name=name,
            row_count=len(collection["records"]),
            vector_dim=collection["dim"],
            metric_type=collection["metric"],
            status="green",
            indexes=list(collection["indexes"]),
        )

    async def close(self):
        self._record("close")


class KeywordEmbedder:
    """Bag-of-words embedder over a fixed vocabulary."""

    VOCABULARY = ["sky", "blue", "grass", "green", "color", "apple", "pie", "ocean", "water", "tree"]

    def __init__(self):
        self.dimension = len(self.VOCABULARY)
        self.calls: list[list[str]] = []

    def vector(self, text: str) -> list[float]:
        counts = Counter(re.findall(r"[a-z]+", text.lower()))
        return normalize([float(counts[word]) for word in self.VOCABULARY])

    async def embed(self, text: str) -> list[float]:
        self.calls.append([text])
        return self.vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector(t) for t in texts]


# ============================================================================
# FIXTURES
# ============================================================================


FAST_RETRY = RetryPolicy(max_retries=2, timeout=1.0, initial_delay=0.0, max_delay=0.0)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return FAST_RETRY


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_db() -> FakeVectorDatabase:
    return FakeVectorDatabase()


@pytest.fixture
def keyword_embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def store(fake_db, clock) -> CollectionStore:
    """CollectionStore over the fake database with the vector-backed metadata store."""
    return CollectionStore(
        fake_db,
        retry=FAST_RETRY,
        existence_ttl=30,
        metadata_ttl=300,
        default_vector_dim=KeywordEmbedder().dimension,
        clock=clock,
    )


@pytest.fixture
async def ready_store(store) -> CollectionStore:
    await store.initialize()
    return store


@pytest.fixture
def existence_cache(clock) -> ExistenceCache:
    return ExistenceCache(30, clock)
