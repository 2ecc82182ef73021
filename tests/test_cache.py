"""
Tests for the cache layer.

Covers TTL expiry, LRU eviction, the durable file tier, hybrid promotion
and the background cleanup thread.
"""

import os
import json
import time
import pytest
from pathlib import Path
from unittest.mock import patch, MagicMock

from cloudnav.cache import (
    CacheEntry,
    CacheManager,
    CacheStrategy,
    HybridCache,
    MemoryCache,
    StorageCache,
    create_backend,
)


class TestCacheEntry:
    """Test CacheEntry expiry and serialization."""

    def test_not_expired_within_ttl(self):
        entry = CacheEntry(key="k", data=1, created_at=1000.0, ttl=60)
        assert not entry.is_expired(now=1060.0)

    def test_expired_after_ttl(self):
        entry = CacheEntry(key="k", data=1, created_at=1000.0, ttl=60)
        assert entry.is_expired(now=1060.5)

    def test_dict_round_trip(self):
        entry = CacheEntry(key="k", data={"a": [1, 2]}, created_at=1.5, ttl=10)
        assert CacheEntry.from_dict(entry.to_dict()) == entry


class TestMemoryCache:
    """Test the in-process backend."""

    def test_set_and_get(self):
        cache = MemoryCache()
        cache.set("a", {"x": 1}, ttl=60)
        assert cache.get("a") == {"x": 1}

    def test_expired_entry_is_removed_on_read(self):
        """An expired entry reads as a miss and is deleted."""
        cache = MemoryCache()
        current_time = time.time()
        cache.set("a", 1, ttl=10)

        with patch('cloudnav.cache.time.time') as mock_time:
            mock_time.return_value = current_time + 11
            assert cache.get("a") is None

        assert cache.size() == 0
        assert "a" not in cache.access_times

    def test_evict_lru_removes_least_recently_used(self):
        cache = MemoryCache()
        cache.set("a", 1, ttl=60)
        cache.set("b", 2, ttl=60)
        cache.set("c", 3, ttl=60)

        # Touch 'a' so 'b' becomes least recently used
        cache.get("a")
        evicted = cache.evict_lru(2)

        assert evicted == 1
        assert sorted(cache.keys()) == ["a", "c"]

    def test_cleanup_counts_expired(self):
        cache = MemoryCache()
        current_time = time.time()
        cache.set("old", 1, ttl=5)
        cache.set("new", 2, ttl=500)

        with patch('cloudnav.cache.time.time') as mock_time:
            mock_time.return_value = current_time + 10
            assert cache.cleanup() == 1

        assert cache.keys() == ["new"]


class TestStorageCache:
    """Test the file-backed backend."""

    @pytest.fixture
    def storage(self, tmp_path):
        return StorageCache(tmp_path / "cache")

    def test_set_writes_prefixed_file(self, storage):
        storage.set("bookmarks:sites", [1, 2], ttl=60)

        files = list(storage.directory.iterdir())
        assert len(files) == 1
        assert files[0].name.startswith("cloudnav_cache_")
        assert storage.get("bookmarks:sites") == [1, 2]

    def test_survives_new_instance(self, tmp_path):
        """Entries persist across instances pointing at the same directory."""
        StorageCache(tmp_path / "cache").set("k", "v", ttl=60)
        assert StorageCache(tmp_path / "cache").get("k") == "v"

    def test_corrupt_file_is_a_miss(self, storage):
        storage.set("k", "v", ttl=60)
        storage._path("k").write_text("{not json")
        assert storage.get("k") is None

    def test_cleanup_removes_expired_and_corrupt(self, storage):
        current_time = time.time()
        storage.set("expired", 1, ttl=5)
        storage.set("live", 2, ttl=500)
        storage.set("broken", 3, ttl=500)
        storage._path("broken").write_text("garbage")

        with patch('cloudnav.cache.time.time') as mock_time:
            mock_time.return_value = current_time + 10
            removed = storage.cleanup()

        assert removed == 2
        assert storage.size() == 1

    def test_unrelated_files_are_left_alone(self, storage):
        other = storage.directory / "notes.txt"
        other.write_text("keep me")
        storage.set("k", "v", ttl=60)

        storage.clear()

        assert other.exists()
        assert storage.size() == 0

    def test_remove_on_close(self, tmp_path):
        directory = tmp_path / "session"
        storage = StorageCache(directory, remove_on_close=True)
        storage.set("k", "v", ttl=60)

        storage.close()

        assert not directory.exists()

    def test_evict_lru_by_mtime(self, storage):
        storage.set("a", 1, ttl=60)
        storage.set("b", 2, ttl=60)
        os.utime(storage._path("a"), (1, 1))

        assert storage.evict_lru(1) == 1
        assert storage.get("a") is None
        assert storage.get("b") == 2


class TestHybridCache:
    """Test memory in front of the durable tier."""

    @pytest.fixture
    def hybrid(self, tmp_path):
        return HybridCache(MemoryCache(), StorageCache(tmp_path / "cache"))

    def test_durable_hit_is_promoted(self, hybrid):
        hybrid.durable.set("k", "v", ttl=60)
        assert hybrid.memory.get("k") is None

        assert hybrid.get("k") == "v"
        assert hybrid.memory.get("k") == "v"

    def test_promotion_keeps_original_expiry(self, hybrid):
        """A promoted entry expires when the durable copy would have."""
        current_time = time.time()
        hybrid.durable.set("k", "v", ttl=10)
        hybrid.get("k")

        with patch('cloudnav.cache.time.time') as mock_time:
            mock_time.return_value = current_time + 11
            assert hybrid.memory.get("k") is None

    def test_set_writes_both_tiers(self, hybrid):
        hybrid.set("k", "v", ttl=60)
        assert hybrid.memory.get("k") == "v"
        assert hybrid.durable.get("k") == "v"

    def test_delete_removes_both_tiers(self, hybrid):
        hybrid.set("k", "v", ttl=60)
        hybrid.delete("k")
        assert hybrid.get("k") is None

    def test_max_size_bounds_both_tiers(self, tmp_path):
        """Eviction keeps the durable tier within max_size as well."""
        manager = CacheManager(strategy="hybrid", default_ttl=60, max_size=2,
                               cleanup_interval=None, cache_dir=tmp_path / "cache")
        for i in range(10):
            manager.set(f"k{i}", i)

        assert manager.backend.memory.size() == 2
        assert manager.backend.durable.size() == 2
        assert manager.size() == 2
        assert manager.stats["evictions"] == 8
        manager.close()


class TestCreateBackend:
    """Test strategy to backend mapping."""

    def test_memory(self, tmp_path):
        assert isinstance(create_backend("memory", tmp_path), MemoryCache)

    def test_local(self, tmp_path):
        backend = create_backend(CacheStrategy.LOCAL, tmp_path / "local")
        assert isinstance(backend, StorageCache)
        assert backend.directory == tmp_path / "local"
        assert not backend.remove_on_close

    def test_session_uses_private_temp_dir(self, tmp_path):
        backend = create_backend("session", tmp_path)
        try:
            assert isinstance(backend, StorageCache)
            assert backend.remove_on_close
            assert backend.directory != tmp_path
        finally:
            backend.close()

    def test_hybrid(self, tmp_path):
        assert isinstance(create_backend("hybrid", tmp_path), HybridCache)

    def test_unknown_strategy(self, tmp_path):
        with pytest.raises(ValueError):
            create_backend("redis", tmp_path)


class TestCacheManager:
    """Test CacheManager behavior."""

    @pytest.fixture
    def manager(self):
        manager = CacheManager(strategy="memory", default_ttl=60, max_size=2, cleanup_interval=None)
        yield manager
        manager.close()

    def test_hit_and_miss_stats(self, manager):
        assert manager.get("missing") is None
        manager.set("k", "v")
        assert manager.get("k") == "v"

        assert manager.stats['hits'] == 1
        assert manager.stats['misses'] == 1

    def test_default_ttl_applies(self, manager):
        current_time = time.time()
        manager.set("k", "v")

        with patch('cloudnav.cache.time.time') as mock_time:
            mock_time.return_value = current_time + 61
            assert manager.get("k") is None

    def test_explicit_ttl_overrides_default(self, manager):
        current_time = time.time()
        manager.set("k", "v", ttl=600)

        with patch('cloudnav.cache.time.time') as mock_time:
            mock_time.return_value = current_time + 61
            assert manager.get("k") == "v"

    def test_max_size_evicts(self, manager):
        manager.set("a", 1)
        manager.set("b", 2)
        manager.set("c", 3)

        assert manager.size() == 2
        assert manager.stats['evictions'] == 1
        assert manager.get("a") is None

    def test_backend_failure_reads_as_miss(self):
        backend = MagicMock()
        backend.get.side_effect = OSError("disk gone")
        manager = CacheManager(backend=backend, cleanup_interval=None)

        assert manager.get("k") is None
        assert manager.stats['misses'] == 1

    def test_backend_failure_on_write_is_absorbed(self):
        backend = MagicMock()
        backend.set.side_effect = OSError("disk full")
        manager = CacheManager(backend=backend, cleanup_interval=None)

        manager.set("k", "v")  # does not raise

    def test_clear(self, manager):
        manager.set("a", 1)
        manager.clear()
        assert manager.size() == 0

    def test_get_stats(self, manager):
        manager.set("a", 1)
        manager.get("a")
        stats = manager.get_stats()

        assert stats['strategy'] == "memory"
        assert stats['items'] == 1
        assert stats['hit_rate'] == 1.0

    def test_cleanup_timer_lifecycle(self):
        manager = CacheManager(strategy="memory", cleanup_interval=60)
        assert manager.cleanup_running

        manager.stop_cleanup_timer()
        assert not manager.cleanup_running

        manager.start_cleanup_timer()
        assert manager.cleanup_running
        manager.close()
        assert not manager.cleanup_running

    def test_cleanup_thread_purges_expired(self):
        """The background thread removes expired entries on its interval."""
        manager = CacheManager(strategy="memory", cleanup_interval=0.05)
        try:
            manager.set("k", "v", ttl=0.01)
            deadline = time.time() + 2
            while manager.backend.size() and time.time() < deadline:
                time.sleep(0.02)
            assert manager.backend.size() == 0
            assert manager.stats['expired'] >= 1
        finally:
            manager.close()

    def test_no_timer_without_interval(self):
        manager = CacheManager(strategy="memory", cleanup_interval=None)
        assert not manager.cleanup_running

    def test_context_manager_closes(self, tmp_path):
        with CacheManager(strategy="session", cleanup_interval=None) as manager:
            directory = manager.backend.directory
            manager.set("k", "v")
            assert Path(directory).exists()
        assert not Path(directory).exists()

    def test_local_strategy_stores_json(self, tmp_path):
        manager = CacheManager(strategy="local", cache_dir=tmp_path, cleanup_interval=None)
        manager.set("k", {"a": 1})

        files = list(tmp_path.glob("cloudnav_cache_*.json"))
        assert len(files) == 1
        assert json.loads(files[0].read_text())["data"] == {"a": 1}
