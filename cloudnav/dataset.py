"""
Loading of the bundled (read-only) dataset.

A dataset is any Python module exposing CATEGORIES, SITES and optionally
DATA_VERSION, such as cloudnav.nav_links or a file produced by
`cloudnav export --format python`.
"""
import copy
import importlib
import importlib.util
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, List, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BundledDataset:
    """
    Immutable snapshot of the bundled collections.

    Accessors hand out deep copies so callers can never alter the
    shipped data.
    """
    categories: List[Dict[str, Any]]
    sites: List[Dict[str, Any]]
    version: Dict[str, Any] = field(default_factory=dict)
    source: str = ""

    def copy_categories(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.categories)

    def copy_sites(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.sites)

    @property
    def data_version(self) -> str:
        return str(self.version.get("version", ""))

    @property
    def timestamp(self) -> int:
        return int(self.version.get("timestamp") or 0)

    @classmethod
    def from_module(cls, module: ModuleType) -> "BundledDataset":
        """Build a dataset from a module's CATEGORIES / SITES / DATA_VERSION."""
        categories = getattr(module, "CATEGORIES", None)
        sites = getattr(module, "SITES", None)
        if categories is None or sites is None:
            raise ValueError(f"Dataset module {module.__name__} must define CATEGORIES and SITES")
        return cls(
            categories=copy.deepcopy(categories),
            sites=copy.deepcopy(sites),
            version=copy.deepcopy(getattr(module, "DATA_VERSION", {}) or {}),
            source=getattr(module, "__file__", None) or module.__name__,
        )


def load_dataset_file(path: Union[str, Path]) -> BundledDataset:
    """Load a dataset from a generated .py file."""
    path = Path(path)
    spec = importlib.util.spec_from_file_location(f"cloudnav_dataset_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ValueError(f"Cannot load dataset from {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return BundledDataset.from_module(module)


def load_dataset(source: str = "cloudnav.nav_links") -> BundledDataset:
    """
    Load the bundled dataset.

    Args:
        source: Dotted module name, or a path to a .py file

    Returns:
        BundledDataset instance
    """
    if source.endswith(".py") or Path(source).is_file():
        dataset = load_dataset_file(source)
    else:
        dataset = BundledDataset.from_module(importlib.import_module(source))

    logger.debug(f"Loaded bundled dataset from {dataset.source}: "
                 f"{len(dataset.categories)} categories, {len(dataset.sites)} sites")
    return dataset
