"""
Wiring of the cloudnav components.

create_app() builds one cache, adapter, data manager and migration tool
from a NavConfig. Tests pass their own namespace and dataset instead of
relying on configuration.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from cloudnav.cache import CacheManager
from cloudnav.config import NavConfig
from cloudnav.data_manager import DataManager
from cloudnav.dataset import BundledDataset, load_dataset
from cloudnav.kv_adapter import KVAdapter
from cloudnav.migration import MigrationTool
from cloudnav.namespaces import KVNamespace, open_namespace

logger = logging.getLogger(__name__)


@dataclass
class NavApp:
    config: NavConfig
    cache: CacheManager
    adapter: KVAdapter
    data_manager: DataManager
    migration: MigrationTool
    namespace: Optional[KVNamespace] = None

    def close(self):
        """Stop the cache cleanup thread and release store connections."""
        self.cache.close()
        if self.namespace is not None:
            self.namespace.close()

    def __enter__(self) -> "NavApp":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def create_app(config: Optional[NavConfig] = None,
               namespace: Optional[KVNamespace] = None,
               dataset: Optional[BundledDataset] = None,
               initialize: bool = True) -> NavApp:
    """
    Build the application components.

    Args:
        config: Configuration (defaults to NavConfig())
        namespace: Store binding; opened from config.kv_backend when omitted
        dataset: Bundled dataset; loaded from config.bundled_dataset when omitted
        initialize: Resolve the data source right away

    Returns:
        NavApp holding the wired components
    """
    config = config or NavConfig()
    if namespace is None:
        namespace = open_namespace(config)
    if dataset is None:
        dataset = load_dataset(config.bundled_dataset)

    cache = CacheManager(
        strategy=config.cache_strategy,
        default_ttl=config.cache_ttl,
        max_size=config.cache_max_size,
        cleanup_interval=config.cache_cleanup_interval,
        cache_dir=config.cache_dir,
    )
    adapter = KVAdapter(
        namespace,
        cache,
        cache_ttl=config.kv_cache_ttl,
        max_workers=config.batch_workers,
    )
    data_manager = DataManager(adapter, cache, dataset, cache_ttl=config.data_cache_ttl)
    migration = MigrationTool(adapter, data_manager, dataset)

    if initialize:
        data_manager.initialize()

    logger.debug(f"cloudnav ready (source={data_manager.data_source.value})")
    return NavApp(
        config=config,
        cache=cache,
        adapter=adapter,
        data_manager=data_manager,
        migration=migration,
        namespace=namespace,
    )
