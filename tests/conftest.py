import os

import pytest

from cloudnav import config as config_module
from cloudnav import nav_links
from cloudnav.app import create_app
from cloudnav.cache import CacheManager
from cloudnav.config import NavConfig
from cloudnav.dataset import BundledDataset
from cloudnav.kv_adapter import KVAdapter
from cloudnav.namespaces import MemoryNamespace


@pytest.fixture
def dataset():
    """The dataset shipped with the package."""
    return BundledDataset.from_module(nav_links)


@pytest.fixture
def small_dataset():
    """A one-category dataset for worked examples."""
    return BundledDataset(
        categories=[{"id": "dev", "name": "Development", "icon": "💻"}],
        sites=[],
        version={"version": "1.0.0", "timestamp": 1700000000000, "source": "test"},
        source="test",
    )


@pytest.fixture
def sample_site():
    return {
        "id": "gh",
        "title": "GitHub",
        "url": "https://github.com",
        "category": "dev",
    }


@pytest.fixture
def cache():
    """Memory cache without the background cleanup thread."""
    manager = CacheManager(strategy="memory", cleanup_interval=None)
    yield manager
    manager.close()


@pytest.fixture
def namespace():
    return MemoryNamespace()


@pytest.fixture
def adapter(namespace, cache):
    return KVAdapter(namespace, cache)


@pytest.fixture
def offline_adapter(cache):
    """Adapter with no store configured."""
    return KVAdapter(None, cache)


@pytest.fixture
def nav_config(tmp_path):
    return NavConfig(
        kv_backend="memory",
        cache_cleanup_interval=0,
        cache_dir=str(tmp_path / "cache"),
    )


@pytest.fixture
def kv_app(nav_config, namespace, dataset):
    """App backed by an in-memory store."""
    app = create_app(nav_config, namespace=namespace, dataset=dataset)
    yield app
    app.close()


@pytest.fixture
def example_app(nav_config, namespace, small_dataset):
    """App over the one-category dataset, already migrated."""
    app = create_app(nav_config, namespace=namespace, dataset=small_dataset)
    assert app.migration.migrate_to_kv()
    yield app
    app.close()


@pytest.fixture
def static_app(tmp_path, dataset):
    """App with no remote store."""
    config = NavConfig(kv_backend="none", cache_cleanup_interval=0, cache_dir=str(tmp_path / "cache"))
    app = create_app(config, dataset=dataset)
    yield app
    app.close()


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Run with an empty home directory, cwd and config singleton."""
    home = tmp_path / "home"
    home.mkdir()
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    for key in list(os.environ):
        if key.startswith("CLOUDNAV_"):
            monkeypatch.delenv(key)
    monkeypatch.setattr(config_module, "_config", None)
    return tmp_path
