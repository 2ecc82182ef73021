"""
cloudnav - navigation data manager

Serves website-navigation data (categories and sites) from either a
bundled, read-only dataset or a remote key-value store, with caching,
validation and a one-time migration between the two.

Design Principles:
- The bundled dataset always works; the remote store is optional
- Reads degrade to bundled data instead of failing
- Writes are validated and keep referential integrity
- Store backends: in-memory, SQL (SQLite, PostgreSQL) or Cloudflare Workers KV

Example Usage:
    >>> from cloudnav import create_app, NavConfig
    >>> app = create_app(NavConfig(kv_backend="sql"))
    >>> app.migration.migrate_to_kv()
    >>> app.data_manager.add_site({"id": "gh", "title": "GitHub",
    ...                            "url": "https://github.com", "category": "dev"})
    >>> app.data_manager.search_sites("git")
"""

__version__ = "1.0.0"
__author__ = "cloudnav Contributors"

# Composition
from cloudnav.app import NavApp, create_app

# Configuration
from cloudnav.config import NavConfig, get_config, init_config

# Components
from cloudnav.cache import CacheManager, CacheStrategy
from cloudnav.kv_adapter import KVAdapter
from cloudnav.data_manager import DataManager, DataSource
from cloudnav.migration import ExportSnapshot, MigrationStatus, MigrationTool, generate_static_file_code
from cloudnav.namespaces import CloudflareKVNamespace, KVNamespace, MemoryNamespace, SQLNamespace
from cloudnav.dataset import BundledDataset, load_dataset

# Errors
from cloudnav.errors import (
    ErrorType,
    IncompatibleVersionError,
    NavError,
    NetworkError,
    NotFoundError,
    ReadOnlyError,
    ValidationError,
)

__all__ = [
    # Composition
    "NavApp",
    "create_app",
    # Config
    "NavConfig",
    "get_config",
    "init_config",
    # Components
    "CacheManager",
    "CacheStrategy",
    "KVAdapter",
    "DataManager",
    "DataSource",
    "MigrationTool",
    "MigrationStatus",
    "ExportSnapshot",
    "generate_static_file_code",
    "KVNamespace",
    "MemoryNamespace",
    "SQLNamespace",
    "CloudflareKVNamespace",
    "BundledDataset",
    "load_dataset",
    # Errors
    "ErrorType",
    "NavError",
    "ValidationError",
    "ReadOnlyError",
    "NotFoundError",
    "NetworkError",
    "IncompatibleVersionError",
]
