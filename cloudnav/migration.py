"""
Moving data between the bundled dataset and the remote store.

migrate_to_kv() seeds the store from the bundled dataset after validating
every invariant, and export_from_kv() reads the store back into a snapshot
that generate_static_file_code() turns into a replacement for
cloudnav.nav_links.
"""
import copy
import inspect
import logging
import pprint
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from cloudnav import constants, nav_links
from cloudnav.data_manager import DataManager
from cloudnav.dataset import BundledDataset
from cloudnav.errors import NavError, NetworkError
from cloudnav.kv_adapter import KVAdapter, now_ms
from cloudnav.validation import validate_dataset

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

_HELPERS = (nav_links.search_sites, nav_links.escape_html, nav_links.sites_to_html)


class MigrationStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class MigrationFailed(NavError):
    """Internal signal that aborts a migration run."""


@dataclass
class ExportSnapshot:
    """Collections read back from the remote store."""
    version: str
    timestamp: int
    categories: List[Dict[str, Any]]
    sites: List[Dict[str, Any]]
    metadata: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "categories": copy.deepcopy(self.categories),
            "sites": copy.deepcopy(self.sites),
            "metadata": copy.deepcopy(self.metadata),
        }

    def to_source(self) -> str:
        return generate_static_file_code(self)


def _literal(value: Any) -> str:
    return pprint.pformat(value, indent=1, width=100, sort_dicts=False)


def generate_static_file_code(snapshot: ExportSnapshot) -> str:
    """
    Render a snapshot as a Python dataset module.

    The output has the same layout as cloudnav.nav_links (DATA_VERSION,
    CATEGORIES, SITES and the search/render helpers) and can be loaded with
    cloudnav.dataset.load_dataset_file. It depends only on the snapshot, so
    the same snapshot always produces the same text.
    """
    generated = datetime.fromtimestamp(snapshot.timestamp / 1000, tz=timezone.utc)
    data_version = {
        "version": snapshot.version,
        "timestamp": snapshot.timestamp,
        "source": "kv_export",
    }

    parts = [
        '"""\n'
        "Navigation data.\n"
        "\n"
        "Generated by cloudnav export.\n"
        f"Generated at: {generated.isoformat()}\n"
        f"Data version: {snapshot.version}\n"
        '"""\n'
        "import html\n",
        f"DATA_VERSION = {_literal(data_version)}\n",
        f"CATEGORIES = {_literal(snapshot.categories)}\n",
        f"SITES = {_literal(snapshot.sites)}\n",
    ]
    parts.extend(inspect.getsource(helper) for helper in _HELPERS)
    return "\n\n".join(parts)


class MigrationTool:
    """
    One-shot migration between the bundled dataset and the remote store.

    Keeps a status, a 0-100 progress value, the errors of the last run and
    a structured log that is mirrored to the logging module.
    """

    def __init__(self, adapter: KVAdapter, data_manager: DataManager, dataset: BundledDataset):
        self.adapter = adapter
        self.data_manager = data_manager
        self.dataset = dataset
        self.reset()

    def reset(self):
        self.status = MigrationStatus.NOT_STARTED
        self.progress = 0
        self.errors: List[str] = []
        self.migration_log: List[Dict[str, str]] = []

    def log(self, message: str, level: str = "info"):
        self.migration_log.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "message": message,
        })
        logger.log(logging.getLevelName(level.upper()), f"[migration] {message}")

    def _advance(self, percent: int, message: str, progress: Optional[ProgressCallback]):
        self.progress = percent
        if progress is not None:
            progress(percent, message)

    def check_prerequisites(self) -> bool:
        self.log("Checking migration prerequisites...")
        if not self.adapter.is_available():
            self.log("KV store is not available, cannot migrate", "error")
            self.errors.append("KV store not available")
            return False
        if not isinstance(self.dataset.categories, list) or not isinstance(self.dataset.sites, list):
            self.log("Bundled dataset is malformed", "error")
            self.errors.append("Bundled dataset is malformed")
            return False
        self.log("Prerequisites OK")
        return True

    def validate_data(self, categories: Any, sites: Any) -> bool:
        """Validate both collections, recording every problem found."""
        self.log("Validating data...")
        problems = validate_dataset(categories, sites)
        if problems:
            for problem in problems:
                self.log(f"Validation failed: {problem}", "error")
            self.errors.extend(problems)
            return False
        self.log("Data validation passed")
        return True

    def _rollback(self, previous: Dict[str, Any], written: List[str]):
        for key in reversed(written):
            try:
                if previous.get(key) is None:
                    self.adapter.delete(key)
                else:
                    self.adapter.set(key, previous[key])
                self.log(f"Restored {key}", "warning")
            except NetworkError as e:
                self.log(f"Could not restore {key}: {e}", "error")

    def migrate_to_kv(self, progress: Optional[ProgressCallback] = None) -> bool:
        """
        Copy the bundled dataset into the remote store.

        Nothing is written unless the dataset passes validation. If anything
        fails after writing has begun (a store error or an exception from the
        progress callback), keys already written are restored to their
        previous values and the run ends FAILED.

        Args:
            progress: Called as progress(percent, message) at each checkpoint

        Returns:
            True on success, False otherwise (see errors and log)
        """
        self.reset()
        self.status = MigrationStatus.IN_PROGRESS
        self.log("Starting migration from bundled data to KV store...")

        previous: Dict[str, Any] = {}
        written: List[str] = []
        try:
            ok = self._migrate(progress, previous, written)
        except Exception as e:
            self.status = MigrationStatus.FAILED
            self.errors.append(str(e) or e.__class__.__name__)
            self.log(f"Migration failed: {e}", "error")
            # The key that failed may or may not have been written.
            self._rollback(previous, written)
            return False

        self.status = MigrationStatus.COMPLETED if ok else MigrationStatus.FAILED
        if ok:
            self.log("Migration completed")
        return ok

    def _migrate(self, progress: Optional[ProgressCallback],
                 previous: Dict[str, Any], written: List[str]) -> bool:
        if not self.check_prerequisites():
            return False
        self._advance(10, "Prerequisites checked", progress)

        categories = self.dataset.copy_categories()
        sites = self.dataset.copy_sites()
        if not self.validate_data(categories, sites):
            return False
        self._advance(20, "Data validated", progress)

        for key in (constants.KEY_CATEGORIES, constants.KEY_SITES,
                    constants.KEY_METADATA, constants.KEY_VERSION):
            previous[key] = self.adapter.get(key, skip_cache=True)
        if previous[constants.KEY_CATEGORIES] is not None or previous[constants.KEY_SITES] is not None:
            self.log("KV store already has data, it will be overwritten", "warning")
        self._advance(30, "Existing data checked", progress)

        self.log(f"Migrating {len(categories)} categories")
        written.append(constants.KEY_CATEGORIES)
        self.adapter.set(constants.KEY_CATEGORIES, categories)
        self._advance(50, "Categories migrated", progress)

        self.log(f"Migrating {len(sites)} sites")
        written.append(constants.KEY_SITES)
        self.adapter.set(constants.KEY_SITES, sites)
        self._advance(70, "Sites migrated", progress)

        timestamp = now_ms()
        metadata = {
            "categories": {"count": len(categories), "lastUpdated": timestamp},
            "sites": {"count": len(sites), "lastUpdated": timestamp},
            "migration": {
                "fromVersion": self.dataset.data_version,
                "toVersion": self.adapter.current_version,
                "timestamp": timestamp,
                "source": "static_to_kv",
            },
        }
        written.append(constants.KEY_METADATA)
        self.adapter.set(constants.KEY_METADATA, metadata)
        self._advance(85, "Metadata written", progress)

        written.append(constants.KEY_VERSION)
        self.adapter.set_version(self.adapter.current_version)
        self._advance(95, "Version written", progress)

        self.data_manager.clear_cache()
        self._advance(100, "Cache cleared", progress)
        return True

    def export_from_kv(self) -> Optional[ExportSnapshot]:
        """
        Read both collections back from the store.

        Returns:
            ExportSnapshot, or None if the store is unavailable, incompatible,
            empty or holds invalid data
        """
        self.log("Exporting data from KV store...")
        try:
            if not self.adapter.is_available():
                raise MigrationFailed("KV store not available")

            record = self.adapter.require_compatible_version()
            categories = self.adapter.get(constants.KEY_CATEGORIES, skip_cache=True)
            sites = self.adapter.get(constants.KEY_SITES, skip_cache=True)
            metadata = self.adapter.get(constants.KEY_METADATA, skip_cache=True)

            if categories is None or sites is None:
                raise MigrationFailed("KV store holds no data")
            if not self.validate_data(categories, sites):
                raise MigrationFailed("KV data failed validation")
        except NavError as e:
            self.errors.append(str(e))
            self.log(f"Export failed: {e}", "error")
            return None

        snapshot = ExportSnapshot(
            version=str(record.get("version")),
            timestamp=now_ms(),
            categories=copy.deepcopy(categories),
            sites=copy.deepcopy(sites),
            metadata=copy.deepcopy(metadata),
        )
        self.log(f"Export completed: {len(categories)} categories, {len(sites)} sites")
        return snapshot

    def generate_static_file_code(self, snapshot: ExportSnapshot) -> str:
        return generate_static_file_code(snapshot)

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "progress": self.progress,
            "errors": list(self.errors),
            "log": list(self.migration_log),
        }
