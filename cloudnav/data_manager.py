"""
Unified data access for categories and sites.

The DataManager decides once whether the remote key-value store can be
trusted (available and version compatible) and then serves reads from it,
or from the bundled dataset otherwise. Writes are only possible against
the remote store; in static mode they raise ReadOnlyError.

The store has no append primitive, so every write re-reads the whole
collection, validates, and writes the whole collection back. That keeps
the design to collections of hundreds to low thousands of records, and
concurrent writers are last-write-wins.
"""
import copy
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from cloudnav import constants
from cloudnav.cache import CacheManager
from cloudnav.dataset import BundledDataset
from cloudnav.errors import (
    FieldError, NetworkError, NotFoundError, ReadOnlyError, ValidationError
)
from cloudnav.kv_adapter import KVAdapter, now_ms
from cloudnav.nav_links import search_sites as search_site_list
from cloudnav.validation import (
    describe_usage, find_by_id, sites_referencing, validate_category, validate_site
)

logger = logging.getLogger(__name__)


class DataSource(str, Enum):
    """Backing store currently serving reads."""
    STATIC = "static"
    KV = "kv"
    HYBRID = "hybrid"  # reserved, never selected


class DataManager:
    """
    Read/write façade over the bundled dataset and the remote store.

    Every list returned is a private copy; mutating it does not affect the
    cache, the store or the bundled data.
    """

    def __init__(self, adapter: KVAdapter, cache: CacheManager, dataset: BundledDataset,
                 cache_ttl: float = constants.DATA_CACHE_TTL,
                 cache_prefix: str = constants.DATA_CACHE_PREFIX):
        """
        Initialize the data manager. The data source is resolved lazily.

        Args:
            adapter: Store adapter (may be unavailable)
            cache: Shared cache manager
            dataset: Bundled dataset used in static mode and as fallback
            cache_ttl: TTL in seconds for cached collections
            cache_prefix: Prefix for this manager's cache keys
        """
        self.adapter = adapter
        self.cache = cache
        self.dataset = dataset
        self.cache_ttl = cache_ttl
        self.cache_prefix = cache_prefix

        self.data_source = DataSource.STATIC
        self.is_initialized = False

        self._collections = {
            "categories": (constants.KEY_CATEGORIES, dataset.copy_categories),
            "sites": (constants.KEY_SITES, dataset.copy_sites),
        }

    def initialize(self) -> DataSource:
        """Select the data source. Never raises; failures select static mode."""
        try:
            if not self.adapter.is_available():
                self.data_source = DataSource.STATIC
                logger.info("Using static data (no KV store)")
            elif self.adapter.check_version_compatibility():
                self.data_source = DataSource.KV
                logger.info("Using KV store")
            else:
                self.data_source = DataSource.STATIC
                logger.warning("KV data version incompatible, using static data")
        except Exception as e:
            logger.error(f"Data manager initialization failed, using static data: {e}")
            self.data_source = DataSource.STATIC

        self.is_initialized = True
        return self.data_source

    def _ensure_initialized(self):
        if not self.is_initialized:
            self.initialize()

    def _cache_key(self, name: str) -> str:
        return f"{self.cache_prefix}{name}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(self, name: str, use_cache: bool) -> List[Dict[str, Any]]:
        self._ensure_initialized()
        store_key, bundled = self._collections[name]
        cache_key = self._cache_key(name)

        try:
            if use_cache:
                cached = self.cache.get(cache_key)
                if cached is not None:
                    logger.debug(f"{name} served from cache")
                    return copy.deepcopy(cached)

            if self.data_source is DataSource.KV:
                records = self.adapter.get(store_key, skip_cache=not use_cache)
                if records is None:
                    logger.info(f"No {name} in KV store, using bundled data")
                    records = bundled()
                else:
                    records = copy.deepcopy(records)
            else:
                records = bundled()

            self.cache.set(cache_key, copy.deepcopy(records), self.cache_ttl)
            logger.debug(f"Loaded {len(records)} {name}")
            return records
        except Exception as e:
            logger.error(f"Failed to load {name}, falling back to bundled data: {e}")
            return bundled()

    def get_categories(self, use_cache: bool = True) -> List[Dict[str, Any]]:
        """Get all categories. use_cache=False forces a store read."""
        return self._read("categories", use_cache)

    def get_sites(self, use_cache: bool = True) -> List[Dict[str, Any]]:
        """Get all sites. use_cache=False forces a store read."""
        return self._read("sites", use_cache)

    def get_category(self, category_id: str) -> Dict[str, Any]:
        category = find_by_id(self.get_categories(), category_id)
        if category is None:
            raise NotFoundError("category", category_id)
        return category

    def get_site(self, site_id: str) -> Dict[str, Any]:
        site = find_by_id(self.get_sites(), site_id)
        if site is None:
            raise NotFoundError("site", site_id)
        return site

    def get_sites_by_category(self, category_id: str) -> List[Dict[str, Any]]:
        return sites_referencing(self.get_sites(), category_id)

    def search_sites(self, query: Optional[str]) -> List[Dict[str, Any]]:
        """
        Case-insensitive substring search over title, description,
        shortDesc and category. An empty query returns every site.
        """
        return search_site_list(query, self.get_sites())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _require_writable(self, operation: str):
        self._ensure_initialized()
        if self.data_source is not DataSource.KV:
            raise ReadOnlyError(
                f"Cannot {operation}: running in read-only mode (static data)",
                {"operation": operation, "source": self.data_source.value},
            )

    def _load_for_write(self, name: str) -> List[Dict[str, Any]]:
        """Fresh copy of a collection straight from the store."""
        store_key, bundled = self._collections[name]
        records = self.adapter.get(store_key, skip_cache=True)
        if records is None:
            return bundled()
        return copy.deepcopy(records)

    def _save(self, name: str, records: List[Dict[str, Any]]):
        store_key, _ = self._collections[name]
        self.adapter.set(store_key, records)
        self.cache.set(self._cache_key(name), copy.deepcopy(records), self.cache_ttl)
        self._update_metadata(name, len(records))

    def _update_metadata(self, name: str, count: int):
        try:
            metadata = dict(self.adapter.get(constants.KEY_METADATA, skip_cache=True) or {})
            metadata[name] = {"count": count, "lastUpdated": now_ms()}
            self.adapter.set(constants.KEY_METADATA, metadata)
        except NetworkError as e:
            logger.warning(f"Failed to update metadata: {e}")

    def add_category(self, category: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add a category.

        Raises:
            ReadOnlyError: static mode
            ValidationError: missing fields or duplicate id
            NetworkError: store failure
        """
        self._require_writable("add category")

        errors = validate_category(category)
        if errors:
            raise ValidationError("Invalid category", errors)

        record = dict(category)
        record.setdefault("description", record["name"])
        record.setdefault("addDate", now_ms())

        categories = self._load_for_write("categories")
        if find_by_id(categories, record["id"]) is not None:
            raise ValidationError(f'Category id "{record["id"]}" already exists',
                                  [FieldError("id", "already exists")])

        categories.append(record)
        self._save("categories", categories)
        logger.info(f"Added category: {record['name']}")
        return copy.deepcopy(record)

    def update_category(self, category_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Merge updates into a category and stamp lastModified."""
        self._require_writable("update category")

        errors = validate_category(updates, partial=True)
        if "id" in updates and updates["id"] != category_id:
            errors.append(FieldError("id", "cannot be changed"))
        if errors:
            raise ValidationError("Invalid category update", errors)

        categories = self._load_for_write("categories")
        for index, existing in enumerate(categories):
            if existing.get("id") == category_id:
                break
        else:
            raise NotFoundError("category", category_id)

        categories[index] = {**existing, **updates, "lastModified": now_ms()}
        self._save("categories", categories)
        logger.info(f"Updated category: {category_id}")
        return copy.deepcopy(categories[index])

    def delete_category(self, category_id: str) -> None:
        """
        Delete a category that no site references.

        Raises:
            NotFoundError: unknown id
            ValidationError: sites still use the category
        """
        self._require_writable("delete category")

        categories = self._load_for_write("categories")
        if find_by_id(categories, category_id) is None:
            raise NotFoundError("category", category_id)

        using = sites_referencing(self._load_for_write("sites"), category_id)
        if using:
            raise ValidationError(
                f'Cannot delete category "{category_id}": {describe_usage(len(using))}',
                [FieldError("category", describe_usage(len(using)))],
                {"count": len(using), "sites": [s.get("id") for s in using]},
            )

        self._save("categories", [c for c in categories if c.get("id") != category_id])
        logger.info(f"Deleted category: {category_id}")

    def _check_site_links(self, site: Dict[str, Any], others: List[Dict[str, Any]]):
        if any(other.get("url") == site["url"] for other in others):
            raise ValidationError(f"URL already exists: {site['url']}",
                                  [FieldError("url", "already exists")])

        categories = self._load_for_write("categories")
        if find_by_id(categories, site["category"]) is None:
            raise ValidationError(f'Category "{site["category"]}" does not exist',
                                  [FieldError("category", "does not exist")])

    def add_site(self, site: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add a site.

        Raises:
            ReadOnlyError: static mode
            ValidationError: bad fields, duplicate id or URL, unknown category
            NetworkError: store failure
        """
        self._require_writable("add site")

        errors = validate_site(site)
        if errors:
            raise ValidationError("Invalid site", errors)

        record = dict(site)
        record.setdefault("icon", constants.DEFAULT_SITE_ICON)
        record.setdefault("description", record["title"])
        record.setdefault("shortDesc", record["title"])
        record.setdefault("addDate", now_ms())

        sites = self._load_for_write("sites")
        if find_by_id(sites, record["id"]) is not None:
            raise ValidationError(f'Site id "{record["id"]}" already exists',
                                  [FieldError("id", "already exists")])
        self._check_site_links(record, sites)

        sites.append(record)
        self._save("sites", sites)
        logger.info(f"Added site: {record['title']}")
        return copy.deepcopy(record)

    def update_site(self, site_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Merge updates into a site and stamp lastModified."""
        self._require_writable("update site")

        errors = validate_site(updates, partial=True)
        if "id" in updates and updates["id"] != site_id:
            errors.append(FieldError("id", "cannot be changed"))
        if errors:
            raise ValidationError("Invalid site update", errors)

        sites = self._load_for_write("sites")
        for index, existing in enumerate(sites):
            if existing.get("id") == site_id:
                break
        else:
            raise NotFoundError("site", site_id)

        merged = {**existing, **updates, "lastModified": now_ms()}
        if "url" in updates or "category" in updates:
            self._check_site_links(merged, sites[:index] + sites[index + 1:])

        sites[index] = merged
        self._save("sites", sites)
        logger.info(f"Updated site: {site_id}")
        return copy.deepcopy(merged)

    def delete_site(self, site_id: str) -> None:
        """Delete a site. Raises NotFoundError for an unknown id."""
        self._require_writable("delete site")

        sites = self._load_for_write("sites")
        remaining = [s for s in sites if s.get("id") != site_id]
        if len(remaining) == len(sites):
            raise NotFoundError("site", site_id)

        self._save("sites", remaining)
        logger.info(f"Deleted site: {site_id}")

    # ------------------------------------------------------------------
    # Introspection and cache control
    # ------------------------------------------------------------------

    def get_metadata(self) -> Dict[str, Any]:
        """Collection counts and last update times."""
        self._ensure_initialized()
        if self.data_source is DataSource.KV:
            try:
                return copy.deepcopy(self.adapter.get(constants.KEY_METADATA) or {})
            except NetworkError as e:
                logger.warning(f"Failed to read metadata: {e}")
                return {}

        return {
            "categories": {"count": len(self.dataset.categories), "lastUpdated": self.dataset.timestamp},
            "sites": {"count": len(self.dataset.sites), "lastUpdated": self.dataset.timestamp},
        }

    def clear_cache(self, scope: Optional[str] = None) -> None:
        """
        Drop cached collections.

        Args:
            scope: 'categories', 'sites', or None for both
        """
        names = [scope] if scope else list(self._collections)
        for name in names:
            if name not in self._collections:
                raise ValueError(f"Unknown cache scope: {name}")
            store_key, _ = self._collections[name]
            self.cache.delete(self._cache_key(name))
            self.adapter.clear_cache(store_key)
        logger.debug(f"Cleared data cache: {scope or 'all'}")

    def get_data_source_info(self) -> Dict[str, Any]:
        return {
            "source": self.data_source.value,
            "isKVAvailable": self.adapter.is_available(),
            "isInitialized": self.is_initialized,
        }
