"""
Tests for CollectionStore.

Tests:
- Existence cache: TTL, degraded reads, no guessing on cold failures
- Provisioning: idempotent create, failed create/index leaves no cache entry
- Metadata CRUD through the reserved collection
- list_collections: reserved collection hidden, unknown collections auto-registered
- Load state and record operations
"""

import asyncio

import pytest

from rag_backend.errors import NotFound, ProvisionError, RemoteUnavailable, ValidationError
from rag_backend.storage.collection_store import AUTO_REGISTERED_TAG, validate_collection_name
from rag_backend.storage.models import CollectionStatus, SearchFilter, VectorRecord
from rag_backend.storage.schema import build_collection_fields

RESERVED = "_collections_metadata"


def _record(text, embedding, **attributes):
    return VectorRecord(embedding=embedding, text=text, attributes=attributes)


def _unit(index, dim=10):
    vector = [0.0] * dim
    vector[index] = 1.0
    return vector


class TestCollectionNames:
    def test_valid_names(self):
        for name in ["docs", "docs_2024", "team-a", "A" * 255]:
            validate_collection_name(name)

    @pytest.mark.parametrize("name", ["", "has space", "dots.not.allowed", "a" * 256, "slash/name"])
    def test_invalid_names(self, name):
        with pytest.raises(ValidationError):
            validate_collection_name(name)

    async def test_reserved_names_rejected_for_user_collections(self, store):
        with pytest.raises(ValidationError):
            await store.create_collection(RESERVED)
        with pytest.raises(ValidationError):
            await store.ensure_exists("system")


class TestExistenceCache:
    async def test_exists_twice_within_ttl_makes_one_remote_call(self, store, fake_db, clock):
        """Second call within the TTL is answered from the cache."""
        assert await store.exists("docs") is False
        clock.advance(10)
        assert await store.exists("docs") is False

        assert fake_db.call_count("has_collection", "docs") == 1

    async def test_exists_refreshes_after_ttl(self, store, fake_db, clock):
        await store.exists("docs")
        clock.advance(31)
        await store.exists("docs")

        assert fake_db.call_count("has_collection", "docs") == 2

    async def test_exists_true_immediately_after_ensure_exists(self, store, fake_db):
        assert await store.exists("docs") is False

        created = await store.ensure_exists("docs", 10)
        calls_before = fake_db.call_count("has_collection", "docs")

        assert created is True
        assert await store.exists("docs") is True
        assert fake_db.call_count("has_collection", "docs") == calls_before

    async def test_ensure_exists_is_idempotent(self, store, fake_db):
        assert await store.ensure_exists("docs", 10) is True
        assert await store.ensure_exists("docs", 10) is False
        assert fake_db.call_count("create_collection", "docs") == 1

    async def test_stale_entry_served_when_remote_fails(self, store, fake_db, clock):
        """Degraded read: availability over freshness."""
        await store.ensure_exists("docs", 10)
        clock.advance(60)
        fake_db.failing.add("has_collection")

        assert await store.exists("docs") is True
        assert store.stats["degraded_reads"] == 1

    async def test_remote_failure_without_cache_entry_propagates(self, store, fake_db):
        """Unknown must never be reported as absent."""
        fake_db.failing.add("has_collection")

        with pytest.raises(RemoteUnavailable):
            await store.exists("docs")
        assert store.stats["degraded_reads"] == 0

    async def test_degraded_read_is_logged(self, store, fake_db, clock):
        from loguru import logger

        messages = []
        sink_id = logger.add(messages.append, level="WARNING")
        try:
            await store.ensure_exists("docs", 10)
            clock.advance(60)
            fake_db.failing.add("has_collection")
            await store.exists("docs")
        finally:
            logger.remove(sink_id)

        assert any("Degraded read" in str(m) for m in messages)


class TestProvisioning:
    async def test_failed_create_raises_and_leaves_no_cache_entry(self, store, fake_db):
        fake_db.failing.add("create_collection")

        with pytest.raises(ProvisionError):
            await store.ensure_exists("docs", 10)

        assert store.existence_cache.lookup("docs") is None

    async def test_failed_index_drops_collection(self, store, fake_db):
        fake_db.failing.add("create_index")

        with pytest.raises(ProvisionError):
            await store.ensure_exists("docs", 10)

        assert "docs" not in fake_db.collections
        assert store.existence_cache.lookup("docs") is None

        # A retry starts clean
        fake_db.failing.clear()
        assert await store.ensure_exists("docs", 10) is True
        assert await store.exists("docs") is True

    async def test_schema_has_four_fields(self, store, fake_db):
        fields = build_collection_fields(10)
        assert [f.name for f in fields] == ["id", "embedding", "text", "attributes"]
        assert fields[0].is_primary_key and fields[0].auto_id
        assert fields[1].dim == 10

        await store.ensure_exists("docs", 10)
        assert fake_db.collections["docs"]["dim"] == 10
        assert fake_db.collections["docs"]["indexes"][0]["field_name"] == "embedding"


class TestMetadata:
    async def test_initialize_bootstraps_reserved_collection(self, store, fake_db):
        await store.initialize()
        assert RESERVED in fake_db.collections

    async def test_create_collection_persists_metadata(self, ready_store, fake_db):
        metadata = await ready_store.create_collection(
            "docs", tags={"public", "hr"}, description="HR docs", vector_dim=10
        )

        assert metadata.name == "docs"
        assert metadata.tags == {"public", "hr"}
        assert metadata.status == CollectionStatus.UNLOADED

        records = list(fake_db.collections[RESERVED]["records"].values())
        assert len(records) == 1
        assert records[0].attributes["key"] == "docs"
        assert '"vectorDim": 10' in records[0].text

    async def test_get_metadata_reads_through_after_cache_cleared(self, ready_store):
        await ready_store.create_collection("docs", tags={"public"}, vector_dim=10)
        ready_store.clear_cache()

        metadata = await ready_store.get_metadata("docs")

        assert metadata is not None
        assert metadata.tags == {"public"}
        assert metadata.vector_dim == 10

    async def test_get_metadata_missing_returns_none(self, ready_store):
        assert await ready_store.get_metadata("nothing") is None

    async def test_get_metadata_falls_back_to_stale_cache(self, ready_store, fake_db, clock):
        await ready_store.create_collection("docs", vector_dim=10)
        clock.advance(301)
        fake_db.failing.add("search")

        metadata = await ready_store.get_metadata("docs")

        assert metadata is not None and metadata.name == "docs"
        assert ready_store.stats["degraded_reads"] == 1

    async def test_update_metadata_keeps_identity_fields(self, ready_store):
        original = await ready_store.create_collection("docs", tags={"a"}, vector_dim=10)

        updated = await ready_store.update_metadata("docs", tags={"b"}, description="new")

        assert updated.tags == {"b"}
        assert updated.description == "new"
        assert updated.vector_dim == original.vector_dim
        assert updated.created_at == original.created_at
        assert updated.updated_at >= original.updated_at

    async def test_update_missing_metadata_raises(self, ready_store):
        with pytest.raises(NotFound):
            await ready_store.update_metadata("ghost", tags={"x"})

    async def test_put_keeps_one_record_per_collection(self, ready_store, fake_db):
        await ready_store.create_collection("docs", vector_dim=10)
        await ready_store.update_metadata("docs", description="one")
        await ready_store.update_metadata("docs", description="two")

        records = fake_db.collections[RESERVED]["records"].values()
        assert sum(1 for r in records if r.attributes["key"] == "docs") == 1

    async def test_delete_metadata(self, ready_store):
        await ready_store.create_collection("docs", vector_dim=10)

        assert await ready_store.delete_metadata("docs") is True
        assert await ready_store.get_metadata("docs") is None
        assert await ready_store.delete_metadata("docs") is False

    async def test_create_collection_is_idempotent(self, ready_store):
        first = await ready_store.create_collection("docs", tags={"a"}, vector_dim=10)
        second = await ready_store.create_collection("docs", tags={"other"}, vector_dim=10)

        assert second.tags == first.tags

    async def test_create_collection_rejects_dimension_change(self, ready_store):
        await ready_store.create_collection("docs", vector_dim=10)
        with pytest.raises(ValidationError):
            await ready_store.create_collection("docs", vector_dim=20)

    async def test_recreated_collection_gets_fresh_metadata(self, ready_store, fake_db):
        """A collection dropped behind the store's back leaves stale metadata; re-creating replaces it."""
        await ready_store.create_collection("docs", tags={"old"}, vector_dim=10)
        del fake_db.collections["docs"]
        ready_store.clear_cache()

        recreated = await ready_store.create_collection("docs", tags={"new"}, vector_dim=4)

        assert recreated.vector_dim == 4
        assert recreated.tags == {"new"}
        ready_store.clear_cache()
        assert (await ready_store.get_metadata("docs")).vector_dim == 4
        records = fake_db.collections[RESERVED]["records"].values()
        assert sum(1 for r in records if r.attributes["key"] == "docs") == 1
        await ready_store.insert("docs", [_record("four dims", _unit(0, dim=4))])

    async def test_concurrent_creates_provision_once(self, ready_store, fake_db):
        results = await asyncio.gather(
            *(ready_store.create_collection("docs", vector_dim=10) for _ in range(3))
        )

        assert {r.vector_dim for r in results} == {10}
        assert fake_db.call_count("create_collection", "docs") == 1
        assert fake_db.call_count("create_index", "docs") == 1
        records = fake_db.collections[RESERVED]["records"].values()
        assert sum(1 for r in records if r.attributes["key"] == "docs") == 1


class TestListCollections:
    async def test_reserved_collection_is_never_listed(self, ready_store):
        await ready_store.create_collection("docs", vector_dim=10)

        names = [m.name for m in await ready_store.list_collections()]

        assert names == ["docs"]
        assert RESERVED not in names

    async def test_unknown_collections_are_auto_registered(self, ready_store, fake_db):
        await fake_db.create_collection("legacy", build_collection_fields(7))

        listed = {m.name: m for m in await ready_store.list_collections()}

        assert listed["legacy"].tags == {AUTO_REGISTERED_TAG}
        assert listed["legacy"].vector_dim == 7
        assert ready_store.stats["auto_registered"] == 1

        # Persisted: a cold cache still finds it
        ready_store.clear_cache()
        stored = await ready_store.get_metadata("legacy")
        assert stored is not None and AUTO_REGISTERED_TAG in stored.tags

    async def test_every_discovered_collection_has_metadata(self, ready_store, fake_db):
        for name in ["a", "b", "c"]:
            await fake_db.create_collection(name, build_collection_fields(10))
        await ready_store.create_collection("d", vector_dim=10)

        listed = await ready_store.list_collections()

        assert sorted(m.name for m in listed) == ["a", "b", "c", "d"]

    async def test_list_failure_propagates(self, ready_store, fake_db):
        fake_db.failing.add("list_collections")
        with pytest.raises(RemoteUnavailable):
            await ready_store.list_collections()


class TestLoadState:
    async def test_load_and_unload_update_status(self, ready_store):
        await ready_store.create_collection("docs", vector_dim=10)

        await ready_store.load_collection("docs")
        assert await ready_store.is_loaded("docs") is True
        assert (await ready_store.get_metadata("docs")).status == CollectionStatus.LOADED

        await ready_store.unload_collection("docs")
        assert await ready_store.is_loaded("docs") is False
        assert (await ready_store.get_metadata("docs")).status == CollectionStatus.UNLOADED

    async def test_load_missing_collection_raises(self, ready_store):
        with pytest.raises(NotFound):
            await ready_store.load_collection("ghost")

    async def test_ensure_loaded_only_loads_once(self, ready_store, fake_db):
        await ready_store.create_collection("docs", vector_dim=10)

        await ready_store.ensure_loaded("docs")
        await ready_store.ensure_loaded("docs")

        assert fake_db.call_count("load_collection", "docs") == 1


class TestRecords:
    async def test_insert_loads_collection_and_assigns_ids(self, ready_store, fake_db):
        await ready_store.create_collection("docs", vector_dim=10)

        result = await ready_store.insert("docs", [_record("a", _unit(0)), _record("b", _unit(1))])

        assert result.inserted_count == 2
        assert len(result.ids) == 2
        assert fake_db.collections["docs"]["loaded"] is True

    async def test_insert_in_batches(self, ready_store, fake_db):
        ready_store.insert_batch_size = 2
        await ready_store.create_collection("docs", vector_dim=10)

        result = await ready_store.insert("docs", [_record(str(i), _unit(i)) for i in range(5)])

        assert result.inserted_count == 5
        assert fake_db.call_count("insert", "docs") == 3

    async def test_insert_rejects_dimension_mismatch(self, ready_store, fake_db):
        await ready_store.create_collection("docs", vector_dim=10)

        with pytest.raises(ValidationError):
            await ready_store.insert("docs", [_record("a", [1.0, 0.0])])
        assert fake_db.call_count("insert", "docs") == 0

    async def test_insert_rejects_non_finite_values(self, ready_store):
        await ready_store.create_collection("docs", vector_dim=10)
        vector = _unit(0)
        vector[3] = float("nan")

        with pytest.raises(ValidationError):
            await ready_store.insert("docs", [_record("a", vector)])

    async def test_insert_into_missing_collection_raises(self, ready_store):
        with pytest.raises(NotFound):
            await ready_store.insert("ghost", [_record("a", _unit(0))])

    async def test_embedding_attribute_is_stripped(self):
        record = VectorRecord(embedding=[1.0], text="a", attributes={"embedding": [1.0], "k": 1})
        assert record.attributes == {"k": 1}

    async def test_search_orders_by_score(self, ready_store):
        await ready_store.create_collection("docs", vector_dim=10)
        await ready_store.insert(
            "docs",
            [
                _record("far", _unit(5)),
                _record("near", _unit(0)),
                _record("mid", [0.7, 0.7] + [0.0] * 8),
            ],
        )

        results = await ready_store.search("docs", _unit(0), limit=3)

        assert [r.text for r in results] == ["near", "mid", "far"]
        assert results[0].collection == "docs"

    async def test_search_with_filter(self, ready_store):
        await ready_store.create_collection("docs", vector_dim=10)
        await ready_store.insert(
            "docs",
            [_record("a", _unit(0), lang="en"), _record("b", _unit(0), lang="fr")],
        )

        results = await ready_store.search("docs", _unit(0), 5, SearchFilter.eq("lang", "fr"))

        assert [r.text for r in results] == ["b"]

    async def test_delete_records(self, ready_store):
        await ready_store.create_collection("docs", vector_dim=10)
        await ready_store.insert(
            "docs", [_record("a", _unit(0), lang="en"), _record("b", _unit(1), lang="en")]
        )

        deleted = await ready_store.delete_records("docs", SearchFilter.eq("lang", "en"))

        assert deleted == 2
        assert (await ready_store.get_collection_stats("docs")).row_count == 0


class TestDeleteCollection:
    async def test_delete_purges_collection_metadata_and_cache(self, ready_store, fake_db):
        await ready_store.create_collection("docs", vector_dim=10)

        await ready_store.delete_collection("docs")

        assert "docs" not in fake_db.collections
        assert await ready_store.exists("docs") is False
        assert ready_store.metadata_cache.get("docs") is None
        assert await ready_store.get_metadata("docs") is None

    async def test_delete_missing_collection_raises(self, ready_store):
        with pytest.raises(NotFound):
            await ready_store.delete_collection("ghost")

    async def test_collection_can_be_recreated_after_delete(self, ready_store):
        await ready_store.create_collection("docs", tags={"old"}, vector_dim=10)
        await ready_store.delete_collection("docs")

        recreated = await ready_store.create_collection("docs", tags={"new"}, vector_dim=10)

        assert recreated.tags == {"new"}

    async def test_failed_metadata_delete_keeps_collection(self, ready_store, fake_db):
        await ready_store.create_collection("docs", vector_dim=10)
        fake_db.failing.add("delete")

        with pytest.raises(RemoteUnavailable):
            await ready_store.delete_collection("docs")

        fake_db.failing.clear()
        assert "docs" in fake_db.collections
        assert await ready_store.get_metadata("docs") is not None

    async def test_failed_drop_leaves_no_stale_metadata(self, ready_store, fake_db):
        await ready_store.create_collection("docs", tags={"old"}, vector_dim=10)
        fake_db.failing.add("drop_collection")

        with pytest.raises(RemoteUnavailable):
            await ready_store.delete_collection("docs")

        fake_db.failing.clear()
        assert "docs" in fake_db.collections
        assert await ready_store.get_metadata("docs") is None
        listed = {m.name: m for m in await ready_store.list_collections()}
        assert AUTO_REGISTERED_TAG in listed["docs"].tags
