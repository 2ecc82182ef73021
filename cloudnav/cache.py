"""
Caching system for cloudnav.

A small pluggable cache with TTL expiry and LRU eviction. Four strategies
share one backend interface:

- memory:  in-process dict (fastest, per process)
- local:   JSON files in a persistent per-user directory
- session: JSON files in a private temp directory removed on close
- hybrid:  memory in front of local, with read-through promotion

The cache is an optimization only. Durable-tier failures are logged and
reported as misses; nothing here raises into callers.
"""

import os
import json
import time
import shutil
import hashlib
import logging
import tempfile
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from cloudnav import constants

logger = logging.getLogger(__name__)


class CacheStrategy(str, Enum):
    """Where cache entries live."""
    MEMORY = "memory"
    LOCAL = "local"
    SESSION = "session"
    HYBRID = "hybrid"


@dataclass
class CacheEntry:
    """A cached value with its creation time and time-to-live (seconds)."""
    key: str
    data: Any
    created_at: float
    ttl: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        if now is None:
            now = time.time()
        return now - self.created_at > self.ttl

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            data=data["data"],
            created_at=float(data["created_at"]),
            ttl=float(data["ttl"]),
        )


class CacheBackend(ABC):
    """Storage tier used by CacheManager."""

    @abstractmethod
    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key, deleting it first if it has expired."""

    @abstractmethod
    def set_entry(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous one for the same key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def cleanup(self) -> int:
        """Purge expired entries. Returns the number removed."""

    @abstractmethod
    def size(self) -> int:
        pass

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def set(self, key: str, data: Any, ttl: float) -> None:
        self.set_entry(CacheEntry(key=key, data=data, created_at=time.time(), ttl=ttl))

    def evict_lru(self, max_size: int) -> int:
        """Evict least recently accessed entries until size <= max_size."""
        return 0

    def close(self) -> None:
        pass


class MemoryCache(CacheBackend):
    """
    In-process cache.

    Keeps entries in a dict plus an access-time map ordered from least to
    most recently used, which drives LRU eviction.
    """

    def __init__(self):
        self.entries: Dict[str, CacheEntry] = {}
        self.access_times: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.RLock()

    def _touch(self, key: str, now: float):
        self.access_times[key] = now
        self.access_times.move_to_end(key)

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self.entries.get(key)
            if entry is None:
                return None

            now = time.time()
            if entry.is_expired(now):
                self.delete(key)
                return None

            self._touch(key, now)
            return entry

    def set_entry(self, entry: CacheEntry) -> None:
        with self._lock:
            self.entries[entry.key] = entry
            self._touch(entry.key, time.time())

    def delete(self, key: str) -> None:
        with self._lock:
            self.entries.pop(key, None)
            self.access_times.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self.entries.clear()
            self.access_times.clear()

    def cleanup(self) -> int:
        with self._lock:
            now = time.time()
            expired = [key for key, entry in self.entries.items() if entry.is_expired(now)]
            for key in expired:
                self.delete(key)
            return len(expired)

    def size(self) -> int:
        return len(self.entries)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self.entries)

    def evict_lru(self, max_size: int) -> int:
        evicted = 0
        with self._lock:
            while len(self.entries) > max_size and self.access_times:
                key, _ = self.access_times.popitem(last=False)
                self.entries.pop(key, None)
                evicted += 1
                logger.debug(f"Evicted from memory: {key}")
        return evicted


class StorageCache(CacheBackend):
    """
    Durable cache storing one JSON file per entry.

    File names carry a fixed prefix so cache files can share a directory with
    other data; only prefixed files are ever read, cleaned or removed. The
    file modification time doubles as the access time for LRU eviction.
    """

    def __init__(self, directory: Union[str, Path], prefix: str = constants.CACHE_FILE_PREFIX,
                 remove_on_close: bool = False):
        self.directory = Path(directory)
        self.prefix = prefix
        self.remove_on_close = remove_on_close
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cache directory unavailable ({self.directory}): {e}")

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{self.prefix}{digest}.json"

    def _files(self) -> List[Path]:
        try:
            return list(self.directory.glob(f"{self.prefix}*.json"))
        except OSError as e:
            logger.warning(f"Failed to list cache directory: {e}")
            return []

    def _read(self, path: Path) -> CacheEntry:
        with open(path, "r", encoding="utf-8") as f:
            return CacheEntry.from_dict(json.load(f))

    def _remove(self, path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove cache file {path.name}: {e}")

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        if not path.exists():
            return None

        try:
            entry = self._read(path)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to read cache entry {key}: {e}")
            return None

        if entry.is_expired():
            self._remove(path)
            return None

        try:
            os.utime(path)
        except OSError:
            pass
        return entry

    def set_entry(self, entry: CacheEntry) -> None:
        path = self._path(entry.key)
        try:
            payload = json.dumps(entry.to_dict(), ensure_ascii=False)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".part")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to store cache entry {entry.key}: {e}")

    def delete(self, key: str) -> None:
        self._remove(self._path(key))

    def clear(self) -> None:
        for path in self._files():
            self._remove(path)

    def cleanup(self) -> int:
        removed = 0
        now = time.time()
        for path in self._files():
            try:
                entry = self._read(path)
            except FileNotFoundError:
                continue
            except (OSError, ValueError, KeyError, TypeError):
                # Unreadable entries are never going to be hits
                self._remove(path)
                removed += 1
                continue
            if entry.is_expired(now):
                self._remove(path)
                removed += 1
        return removed

    def size(self) -> int:
        return len(self._files())

    def evict_lru(self, max_size: int) -> int:
        files = self._files()
        if len(files) <= max_size:
            return 0

        def access_time(path: Path) -> float:
            try:
                return path.stat().st_mtime
            except OSError:
                return 0.0

        files.sort(key=access_time)
        to_remove = files[:len(files) - max_size]
        for path in to_remove:
            self._remove(path)
        return len(to_remove)

    def close(self) -> None:
        if self.remove_on_close:
            shutil.rmtree(self.directory, ignore_errors=True)


class HybridCache(CacheBackend):
    """
    Memory tier in front of a durable tier.

    Reads check memory first; a durable hit is copied into memory with its
    original creation time and TTL, so a promoted value never outlives the
    durable copy.
    LRU eviction bounds both tiers.
    """

    def __init__(self, memory: MemoryCache, durable: StorageCache):
        self.memory = memory
        self.durable = durable

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self.memory.get_entry(key)
        if entry is not None:
            return entry

        entry = self.durable.get_entry(key)
        if entry is not None:
            self.memory.set_entry(entry)
        return entry

    def set_entry(self, entry: CacheEntry) -> None:
        self.memory.set_entry(entry)
        self.durable.set_entry(entry)

    def delete(self, key: str) -> None:
        self.memory.delete(key)
        self.durable.delete(key)

    def clear(self) -> None:
        self.memory.clear()
        self.durable.clear()

    def cleanup(self) -> int:
        return self.memory.cleanup() + self.durable.cleanup()

    def size(self) -> int:
        # Every write reaches the durable tier, so it holds the full set.
        return max(self.memory.size(), self.durable.size())

    def evict_lru(self, max_size: int) -> int:
        self.memory.evict_lru(max_size)
        return self.durable.evict_lru(max_size)

    def close(self) -> None:
        self.durable.close()


def create_backend(strategy: Union[CacheStrategy, str],
                   cache_dir: Optional[Union[str, Path]] = None) -> CacheBackend:
    """
    Build the backend for a cache strategy.

    Args:
        strategy: One of the CacheStrategy values
        cache_dir: Directory for the local and hybrid strategies

    Returns:
        A ready-to-use backend
    """
    strategy = CacheStrategy(strategy)
    if cache_dir is None:
        cache_dir = os.path.expanduser("~/.cache/cloudnav")

    if strategy is CacheStrategy.MEMORY:
        return MemoryCache()
    if strategy is CacheStrategy.LOCAL:
        return StorageCache(cache_dir)
    if strategy is CacheStrategy.SESSION:
        session_dir = tempfile.mkdtemp(prefix="cloudnav-session-")
        return StorageCache(session_dir, remove_on_close=True)
    return HybridCache(MemoryCache(), StorageCache(cache_dir))


class CacheManager:
    """
    Front door to the cache used by the store adapter and data manager.

    The strategy is resolved to a backend once. A daemon thread purges
    expired entries every cleanup_interval seconds.
    """

    def __init__(self, strategy: Union[CacheStrategy, str] = CacheStrategy.MEMORY,
                 default_ttl: float = constants.DEFAULT_CACHE_TTL,
                 max_size: Optional[int] = constants.DEFAULT_CACHE_MAX_SIZE,
                 cleanup_interval: Optional[float] = constants.DEFAULT_CLEANUP_INTERVAL,
                 cache_dir: Optional[Union[str, Path]] = None,
                 backend: Optional[CacheBackend] = None,
                 autostart: bool = True):
        """
        Initialize the cache manager.

        Args:
            strategy: Cache strategy (ignored when backend is given)
            default_ttl: TTL in seconds used when set() gets none
            max_size: Maximum number of entries, None for unbounded
            cleanup_interval: Seconds between background cleanups, None to disable
            cache_dir: Directory for durable strategies
            backend: Pre-built backend, mainly for tests
            autostart: Start the cleanup thread immediately
        """
        self.strategy = CacheStrategy(strategy)
        self.default_ttl = default_ttl
        self.max_size = max_size
        self.cleanup_interval = cleanup_interval
        self.backend = backend if backend is not None else create_backend(self.strategy, cache_dir)

        self.stats = {
            'hits': 0,
            'misses': 0,
            'evictions': 0,
            'expired': 0,
        }

        self._stop_event: Optional[threading.Event] = None
        self._cleanup_thread: Optional[threading.Thread] = None

        if autostart and cleanup_interval:
            self.start_cleanup_timer()

    def get(self, key: str) -> Optional[Any]:
        """
        Get a cached value.

        Returns:
            The value, or None if absent or expired
        """
        try:
            value = self.backend.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            value = None

        if value is None:
            self.stats['misses'] += 1
            logger.debug(f"Cache miss for {key}")
        else:
            self.stats['hits'] += 1
            logger.debug(f"Cache hit for {key}")
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Cache a value.

        Args:
            key: Cache key
            value: Value to cache (JSON-serializable for durable strategies)
            ttl: Time-to-live in seconds, defaults to default_ttl
        """
        if ttl is None:
            ttl = self.default_ttl
        try:
            self.backend.set(key, value, ttl)
            if self.max_size is not None:
                self.stats['evictions'] += self.backend.evict_lru(self.max_size)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    def delete(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except Exception as e:
            logger.warning(f"Cache delete failed for {key}: {e}")

    def clear(self) -> None:
        """Clear all cached entries."""
        try:
            self.backend.clear()
            logger.info("Cleared cache")
        except Exception as e:
            logger.warning(f"Cache clear failed: {e}")

    def cleanup(self) -> int:
        """Purge expired entries now. Returns the number removed."""
        try:
            removed = self.backend.cleanup()
        except Exception as e:
            logger.warning(f"Cache cleanup failed: {e}")
            return 0
        self.stats['expired'] += removed
        if removed:
            logger.debug(f"Cache cleanup removed {removed} expired entries")
        return removed

    def size(self) -> int:
        try:
            return self.backend.size()
        except Exception as e:
            logger.warning(f"Cache size check failed: {e}")
            return 0

    def _cleanup_loop(self, stop_event: threading.Event):
        while not stop_event.wait(self.cleanup_interval):
            self.cleanup()

    def start_cleanup_timer(self) -> None:
        """Start (or restart) the background cleanup thread."""
        self.stop_cleanup_timer()
        if not self.cleanup_interval:
            return

        self._stop_event = threading.Event()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            args=(self._stop_event,),
            name="cloudnav-cache-cleanup",
            daemon=True,
        )
        self._cleanup_thread.start()

    def stop_cleanup_timer(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=1)
        self._stop_event = None
        self._cleanup_thread = None

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_thread is not None and self._cleanup_thread.is_alive()

    def close(self) -> None:
        """Stop the cleanup thread and release backend resources."""
        self.stop_cleanup_timer()
        self.backend.close()

    def __enter__(self) -> "CacheManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            **self.stats,
            'strategy': self.strategy.value,
            'items': self.size(),
            'hit_rate': self.stats['hits'] / max(1, self.stats['hits'] + self.stats['misses'])
        }
