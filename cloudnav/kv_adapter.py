"""
Key-value store adapter.

Wraps a remote namespace with JSON (de)serialization, read-/write-through
caching, concurrent batch operations and the data version record. Any
failure of the underlying store is raised as a NetworkError carrying the
operation and key.
"""
import copy
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Sequence

from cloudnav import constants
from cloudnav.cache import CacheManager
from cloudnav.errors import IncompatibleVersionError, NetworkError
from cloudnav.namespaces import KVNamespace

logger = logging.getLogger(__name__)

_STORE_METHODS = ("get", "put", "delete", "list")


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


class KVAdapter:
    """
    Typed access to a remote key-value namespace.

    Availability is decided once, at construction: an adapter built without
    a usable namespace stays unavailable and every store operation raises
    NetworkError.
    """

    def __init__(self, namespace: Optional[KVNamespace], cache: CacheManager,
                 cache_ttl: float = constants.KV_CACHE_TTL,
                 cache_prefix: str = constants.KV_CACHE_PREFIX,
                 max_workers: int = constants.DEFAULT_MAX_WORKERS,
                 current_version: str = constants.CURRENT_DATA_VERSION,
                 supported_versions: Sequence[str] = constants.SUPPORTED_DATA_VERSIONS):
        """
        Initialize the adapter.

        Args:
            namespace: Store binding, or None when no store is configured
            cache: Shared cache manager
            cache_ttl: TTL in seconds for cached store values
            cache_prefix: Prefix separating adapter entries from other cache users
            max_workers: Thread pool size for batch operations
            current_version: Version written by set_version()
            supported_versions: Versions accepted by the compatibility check
        """
        self.kv = namespace
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.cache_prefix = cache_prefix
        self.max_workers = max_workers
        self.current_version = current_version
        self.supported_versions = list(supported_versions)
        self._cached_keys: set = set()

        self._available = namespace is not None and all(
            callable(getattr(namespace, name, None)) for name in _STORE_METHODS
        )
        if self._available:
            logger.info(f"KV store connected ({namespace.__class__.__name__})")
        else:
            logger.info("KV store not available, static data mode only")

    def is_available(self) -> bool:
        return self._available

    def _cache_key(self, key: str) -> str:
        return f"{self.cache_prefix}{key}"

    def _require(self, operation: str, key: Any = None):
        if not self._available:
            raise NetworkError("KV store not available", operation, key)

    def _cache_store(self, key: str, value: Any):
        self.cache.set(self._cache_key(key), value, self.cache_ttl)
        self._cached_keys.add(key)

    def get(self, key: str, skip_cache: bool = False, type: str = "json") -> Any:
        """
        Read a value, using the cache unless skip_cache is set.

        Args:
            key: Store key
            skip_cache: Always hit the store (the fresh value is still cached)
            type: 'json' or 'text'

        Returns:
            The decoded value or None if the key does not exist
        """
        self._require("kv_get", key)

        if not skip_cache:
            cached = self.cache.get(self._cache_key(key))
            if cached is not None:
                logger.debug(f"KV cache hit: {key}")
                return copy.deepcopy(cached)

        try:
            logger.debug(f"KV get: {key}")
            value = self.kv.get(key, type)
        except Exception as e:
            logger.error(f"KV get failed [{key}]: {e}")
            raise NetworkError(e, "kv_get", key) from e

        if value is None:
            return None

        self._cache_store(key, copy.deepcopy(value))
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None,
            metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Write a JSON value to the store and refresh its cache entry.

        Args:
            key: Store key
            value: JSON-serializable value
            ttl: Store-side expiration in seconds
            metadata: Store-side key metadata
        """
        self._require("kv_set", key)

        try:
            logger.debug(f"KV set: {key}")
            self.kv.put(key, json.dumps(value, ensure_ascii=False),
                        expiration_ttl=ttl, metadata=metadata)
        except Exception as e:
            logger.error(f"KV set failed [{key}]: {e}")
            raise NetworkError(e, "kv_set", key) from e

        self._cache_store(key, copy.deepcopy(value))

    def delete(self, key: str) -> None:
        """Delete a key from the store and the cache."""
        self._require("kv_delete", key)

        try:
            logger.debug(f"KV delete: {key}")
            self.kv.delete(key)
        except Exception as e:
            logger.error(f"KV delete failed [{key}]: {e}")
            raise NetworkError(e, "kv_delete", key) from e

        self.cache.delete(self._cache_key(key))
        self._cached_keys.discard(key)

    def list(self, prefix: Optional[str] = None, limit: Optional[int] = None,
             cursor: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List keys in the store.

        Follows pagination cursors until limit keys are collected or the
        listing is complete.

        Returns:
            Key descriptors ({'name', 'expiration', 'metadata'})
        """
        self._require("kv_list", prefix)

        keys: List[Dict[str, Any]] = []
        try:
            while True:
                page_limit = 1000 if limit is None else min(1000, limit - len(keys))
                result = self.kv.list(prefix=prefix, limit=page_limit, cursor=cursor)
                keys.extend(result.get("keys") or [])
                cursor = result.get("cursor")
                if result.get("list_complete", True) or not cursor:
                    break
                if limit is not None and len(keys) >= limit:
                    break
        except Exception as e:
            logger.error(f"KV list failed: {e}")
            raise NetworkError(e, "kv_list", prefix) from e

        return keys

    def batch_get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """
        Read several keys concurrently.

        A key whose read fails maps to None instead of failing the batch.
        """
        keys = list(keys)
        self._require("kv_batch_get", keys)
        logger.debug(f"KV batch get: {len(keys)} keys")

        def fetch(key: str) -> Any:
            try:
                return self.get(key)
            except NetworkError as e:
                logger.warning(f"Batch get failed [{key}]: {e}")
                return None

        if not keys:
            return {}

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(keys))) as executor:
            values = list(executor.map(fetch, keys))
        return dict(zip(keys, values))

    def batch_set(self, data: Dict[str, Any]) -> None:
        """
        Write several keys concurrently.

        Every key is attempted; afterwards the first failure (in key order)
        is raised.
        """
        keys = list(data)
        self._require("kv_batch_set", keys)
        logger.debug(f"KV batch set: {len(keys)} keys")

        if not keys:
            return

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(keys))) as executor:
            futures = [executor.submit(self.set, key, data[key]) for key in keys]

        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            raise errors[0]

    def clear_cache(self, key: Optional[str] = None) -> None:
        """Drop cached store values, for one key or for every key this adapter cached."""
        if key is not None:
            self.cache.delete(self._cache_key(key))
            self._cached_keys.discard(key)
            logger.debug(f"Cleared KV cache: {key}")
            return

        for cached in list(self._cached_keys):
            self.cache.delete(self._cache_key(cached))
        self._cached_keys.clear()
        logger.debug("Cleared all KV cache entries")

    def get_version(self) -> Dict[str, Any]:
        """
        Get the data version record.

        A missing record (first run) reads as the current version.

        Raises:
            IncompatibleVersionError: the stored record is not an object
        """
        record = self.get(constants.KEY_VERSION)
        if not record:
            return {
                "version": self.current_version,
                "timestamp": now_ms(),
                "compatibleVersions": list(self.supported_versions),
            }
        if not isinstance(record, dict):
            logger.warning(f"Malformed data version record: {record!r}")
            raise IncompatibleVersionError(repr(record), self.supported_versions)
        return record

    def set_version(self, version: Optional[str] = None) -> Dict[str, Any]:
        """Write the data version record and return it."""
        record = {
            "version": version or self.current_version,
            "timestamp": now_ms(),
            "compatibleVersions": list(self.supported_versions),
        }
        self.set(constants.KEY_VERSION, record)
        return record

    def check_version_compatibility(self) -> bool:
        """
        Check whether the stored data version is supported.

        A store that cannot be read, or a malformed record, counts as
        incompatible.
        """
        try:
            version = self.get_version().get("version")
        except (NetworkError, IncompatibleVersionError) as e:
            logger.error(f"Version compatibility check failed: {e}")
            return False

        if version in self.supported_versions:
            return True

        logger.warning(
            f"Incompatible data version: found {version}, "
            f"supported {', '.join(self.supported_versions)}"
        )
        return False

    def require_compatible_version(self) -> Dict[str, Any]:
        """
        Return the version record, raising if it is not supported.

        Raises:
            IncompatibleVersionError: stored version is not supported
            NetworkError: the store could not be read
        """
        record = self.get_version()
        if record.get("version") not in self.supported_versions:
            raise IncompatibleVersionError(str(record.get("version")), self.supported_versions)
        return record
