"""
Unit tests for local persistence (launchpad/core/storage.py)
"""

import json

import pytest

from launchpad.core.storage import (
    DRAFTS_KEY,
    AggregateCache,
    DraftPoolStore,
    FileBlobStore,
    MemoryBlobStore,
)


class FakeClock:

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestBlobStores:

    def test_memory_store(self):
        store = MemoryBlobStore()
        store.set("k", b"v")

        assert store.get("k") == b"v"
        assert store.keys() == ["k"]
        store.remove("k")
        store.remove("k")
        assert store.get("k") is None

    def test_file_store_round_trip(self, tmp_path):
        store = FileBlobStore(str(tmp_path / "blobs"))
        store.set("pool_created_at:abc/def", b"123")

        assert store.get("pool_created_at:abc/def") == b"123"
        assert FileBlobStore(str(tmp_path / "blobs")).get("pool_created_at:abc/def") == b"123"

    def test_file_store_leaves_no_temp_files(self, tmp_path):
        store = FileBlobStore(str(tmp_path))
        store.set("a", b"1")
        store.set("a", b"2")

        assert store.get("a") == b"2"
        assert [p.name for p in tmp_path.iterdir() if p.name.startswith(".tmp-")] == []

    def test_file_store_missing_key(self, tmp_path):
        store = FileBlobStore(str(tmp_path))

        assert store.get("missing") is None
        store.remove("missing")


class TestDraftPoolStore:

    def test_add_puts_newest_first(self, blob_store):
        clock = FakeClock()
        drafts = DraftPoolStore(blob_store, clock=clock)

        first = drafts.add(name="One", symbol="ONE", mint="mint1")
        clock.now += 10
        second = drafts.add(name="Two", symbol="TWO", mint="mint2", pool_address="pool2")

        listed = drafts.list()
        assert [d.id for d in listed] == [second.id, first.id]
        assert listed[0].pool_address == "pool2"
        assert listed[1].created_at == 1_700_000_000.0

    def test_ids_are_unique(self, blob_store):
        drafts = DraftPoolStore(blob_store)
        ids = {drafts.add(name=f"T{i}", symbol="T", mint=f"mint{i}").id for i in range(20)}

        assert len(ids) == 20
        assert all(i.startswith("pool_") for i in ids)

    def test_add_same_mint_updates_in_place(self, blob_store):
        drafts = DraftPoolStore(blob_store)
        original = drafts.add(name="Old", symbol="OLD", mint="mint1")

        updated = drafts.add(name="New", symbol="NEW", mint="mint1", pool_address="pool1")

        assert updated.id == original.id
        assert updated.created_at == original.created_at
        assert len(drafts.list()) == 1
        assert drafts.get_by_address("pool1").name == "New"

    def test_update_keeps_identity(self, blob_store):
        drafts = DraftPoolStore(blob_store)
        draft = drafts.add(name="One", symbol="ONE", mint="mint1")

        updated = drafts.update(draft.id, id="other", created_at=0, description="hello")

        assert updated.id == draft.id
        assert updated.created_at == draft.created_at
        assert updated.description == "hello"
        assert drafts.update("missing", name="x") is None

    def test_remove_and_clear(self, blob_store):
        drafts = DraftPoolStore(blob_store)
        draft = drafts.add(name="One", symbol="ONE", mint="mint1")
        drafts.add(name="Two", symbol="TWO", mint="mint2")

        assert drafts.remove(draft.id) is True
        assert drafts.remove(draft.id) is False
        assert [d.mint for d in drafts.list()] == ["mint2"]

        drafts.clear()
        assert drafts.list() == []

    def test_unreadable_store_lists_empty(self, blob_store):
        blob_store.set(DRAFTS_KEY, b"{not json")

        assert DraftPoolStore(blob_store).list() == []

    def test_bad_entries_skipped(self, blob_store):
        blob_store.set(DRAFTS_KEY, json.dumps([
            {"id": "pool_1", "name": "Good", "symbol": "G", "mint": "m1", "created_at": 1, "legacy": True},
            {"name": "No identity"},
        ]).encode())

        listed = DraftPoolStore(blob_store).list()

        assert [d.id for d in listed] == ["pool_1"]


class TestAggregateCache:

    def test_get_within_ttl(self, blob_store):
        clock = FakeClock()
        cache = AggregateCache(blob_store, default_ttl_s=300, clock=clock)
        cache.set("launchpad_snapshot", {"pools": [1, 2]})

        clock.now += 299
        assert cache.get("launchpad_snapshot") == {"pools": [1, 2]}
        assert cache.age("launchpad_snapshot") == 299
        assert cache.is_expired("launchpad_snapshot") is False

    def test_expired_entry_removed(self, blob_store):
        clock = FakeClock()
        cache = AggregateCache(blob_store, default_ttl_s=300, clock=clock)
        cache.set("launchpad_snapshot", {"pools": []})

        clock.now += 301
        assert cache.is_expired("launchpad_snapshot") is True
        assert cache.get("launchpad_snapshot") is None
        assert blob_store.get("launchpad_snapshot") is None

    def test_per_entry_ttl(self, blob_store):
        clock = FakeClock()
        cache = AggregateCache(blob_store, default_ttl_s=300, clock=clock)
        cache.set("short", 1, ttl_s=5)

        clock.now += 6
        assert cache.get("short") is None

    def test_corrupt_entry_is_a_miss(self, blob_store):
        blob_store.set("launchpad_snapshot", b"{broken")
        cache = AggregateCache(blob_store)

        assert cache.get("launchpad_snapshot") is None
        assert blob_store.get("launchpad_snapshot") is None

    def test_missing_key(self, blob_store):
        cache = AggregateCache(blob_store)

        assert cache.get("missing") is None
        assert cache.age("missing") is None
