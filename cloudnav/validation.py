"""
Record and dataset validation.

The data manager validates single records on every write and the
migration tool validates whole collections before moving them; both go
through the functions here so they accept exactly the same data.
"""
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from cloudnav.errors import FieldError

CATEGORY_REQUIRED = ("id", "name", "icon")
SITE_REQUIRED = ("id", "title", "url", "category")
CATEGORY_TEXT = ("description",)
SITE_TEXT = ("description", "shortDesc", "icon")


def is_valid_url(url: Any) -> bool:
    """Check for an absolute http(s) URL with a host."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _check_fields(data: Dict[str, Any], required: Sequence[str], text: Sequence[str],
                  partial: bool) -> List[FieldError]:
    errors = []
    for name in required:
        if name not in data:
            if not partial:
                errors.append(FieldError(name, "is required"))
            continue
        value = data[name]
        if not isinstance(value, str) or not value.strip():
            errors.append(FieldError(name, "must be a non-empty string"))
    for name in text:
        if name in data and data[name] is not None and not isinstance(data[name], str):
            errors.append(FieldError(name, "must be a string"))
    return errors


def validate_category(data: Any, partial: bool = False) -> List[FieldError]:
    """
    Validate a category record.

    Args:
        data: Category dict
        partial: Only check fields that are present (updates)

    Returns:
        List of field errors, empty when valid
    """
    if not isinstance(data, dict):
        return [FieldError("category", "must be an object")]
    return _check_fields(data, CATEGORY_REQUIRED, CATEGORY_TEXT, partial)


def validate_site(data: Any, partial: bool = False) -> List[FieldError]:
    """
    Validate a site record, including URL format.

    Args:
        data: Site dict
        partial: Only check fields that are present (updates)

    Returns:
        List of field errors, empty when valid
    """
    if not isinstance(data, dict):
        return [FieldError("site", "must be an object")]
    errors = _check_fields(data, SITE_REQUIRED, SITE_TEXT, partial)
    url = data.get("url")
    if isinstance(url, str) and url.strip() and not is_valid_url(url):
        errors.append(FieldError("url", f"is not a valid http(s) URL: {url}"))
    return errors


def duplicates(values: Iterable[Any]) -> List[Any]:
    """Values occurring more than once, in first-seen order."""
    counts = Counter(v for v in values if v is not None)
    return [value for value, count in counts.items() if count > 1]


def sites_referencing(sites: Iterable[Dict[str, Any]], category_id: str) -> List[Dict[str, Any]]:
    """Sites whose category is category_id."""
    return [site for site in sites if site.get("category") == category_id]


def find_by_id(records: Iterable[Dict[str, Any]], record_id: str) -> Optional[Dict[str, Any]]:
    for record in records:
        if record.get("id") == record_id:
            return record
    return None


def describe_usage(count: int) -> str:
    """Human readable reference count, e.g. '1 site uses this category'."""
    if count == 1:
        return "1 site uses this category"
    return f"{count} sites use this category"


def validate_dataset(categories: Any, sites: Any) -> List[str]:
    """
    Validate two complete collections against every data invariant.

    Checks record shape, duplicate category ids, duplicate site ids,
    duplicate site URLs and sites pointing at missing categories. All
    problems are collected rather than stopping at the first one.

    Returns:
        List of error messages, empty when the dataset is valid
    """
    if not isinstance(categories, list) or not isinstance(sites, list):
        return ["Categories and sites must both be lists"]

    errors: List[str] = []

    for index, category in enumerate(categories):
        label = category.get("id") if isinstance(category, dict) and category.get("id") else f"#{index}"
        for error in validate_category(category):
            errors.append(f"Category {label}: {error}")

    for index, site in enumerate(sites):
        label = site.get("id") if isinstance(site, dict) and site.get("id") else f"#{index}"
        for error in validate_site(site):
            errors.append(f"Site {label}: {error}")

    category_rows = [c for c in categories if isinstance(c, dict)]
    site_rows = [s for s in sites if isinstance(s, dict)]

    for dup in duplicates(c.get("id") for c in category_rows):
        errors.append(f"Duplicate category id: {dup}")
    for dup in duplicates(s.get("id") for s in site_rows):
        errors.append(f"Duplicate site id: {dup}")
    for dup in duplicates(s.get("url") for s in site_rows):
        errors.append(f"Duplicate site URL: {dup}")

    category_ids = {c.get("id") for c in category_rows}
    for site in site_rows:
        category = site.get("category")
        if category and category not in category_ids:
            errors.append(f'Site "{site.get("title") or site.get("id")}" references missing category: {category}')

    return errors
