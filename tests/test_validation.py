"""
Tests for record and dataset validation.
"""
import pytest

from cloudnav import nav_links
from cloudnav.errors import FieldError
from cloudnav.validation import (
    describe_usage,
    duplicates,
    find_by_id,
    is_valid_url,
    sites_referencing,
    validate_category,
    validate_dataset,
    validate_site,
)


class TestIsValidUrl:
    """Test URL format checks."""

    @pytest.mark.parametrize("url", [
        "https://github.com",
        "http://localhost:8080/path?q=1",
        "https://docs.python.org/3/",
    ])
    def test_valid(self, url):
        assert is_valid_url(url)

    @pytest.mark.parametrize("url", [
        "",
        "github.com",
        "ftp://files.example.com",
        "https://",
        "javascript:alert(1)",
        None,
        42,
    ])
    def test_invalid(self, url):
        assert not is_valid_url(url)


class TestValidateCategory:
    """Test category validation."""

    def test_valid(self):
        assert validate_category({"id": "dev", "name": "Development", "icon": "💻"}) == []

    def test_missing_required_fields(self):
        errors = validate_category({"id": "dev"})
        assert FieldError("name", "is required") in errors
        assert FieldError("icon", "is required") in errors

    def test_blank_field(self):
        errors = validate_category({"id": "dev", "name": "  ", "icon": "💻"})
        assert [e.field for e in errors] == ["name"]

    def test_description_must_be_string(self):
        errors = validate_category({"id": "dev", "name": "Dev", "icon": "x", "description": 5})
        assert [e.field for e in errors] == ["description"]

    def test_partial_only_checks_present_fields(self):
        assert validate_category({"name": "Renamed"}, partial=True) == []
        assert [e.field for e in validate_category({"name": ""}, partial=True)] == ["name"]

    def test_not_a_dict(self):
        assert validate_category(["dev"]) == [FieldError("category", "must be an object")]


class TestValidateSite:
    """Test site validation."""

    def test_valid(self, sample_site):
        assert validate_site(sample_site) == []

    def test_missing_required_fields(self):
        errors = validate_site({"id": "gh"})
        assert {e.field for e in errors} == {"title", "url", "category"}

    def test_bad_url(self, sample_site):
        sample_site["url"] = "not a url"
        errors = validate_site(sample_site)
        assert [e.field for e in errors] == ["url"]
        assert "not a valid" in errors[0].message

    def test_partial_url_is_checked(self):
        errors = validate_site({"url": "github.com"}, partial=True)
        assert [e.field for e in errors] == ["url"]

    def test_optional_text_fields(self, sample_site):
        sample_site["shortDesc"] = ["list"]
        errors = validate_site(sample_site)
        assert [e.field for e in errors] == ["shortDesc"]

    def test_field_error_str(self):
        assert str(FieldError("url", "is required")) == "url: is required"


class TestHelpers:
    """Test small collection helpers."""

    def test_duplicates_in_first_seen_order(self):
        assert duplicates(["b", "a", "b", "c", "a", None, None]) == ["b", "a"]

    def test_sites_referencing(self):
        sites = [{"id": "1", "category": "dev"}, {"id": "2", "category": "tools"}]
        assert sites_referencing(sites, "dev") == [{"id": "1", "category": "dev"}]

    def test_find_by_id(self):
        records = [{"id": "a"}, {"id": "b"}]
        assert find_by_id(records, "b") == {"id": "b"}
        assert find_by_id(records, "c") is None

    def test_describe_usage(self):
        assert describe_usage(1) == "1 site uses this category"
        assert describe_usage(3) == "3 sites use this category"


class TestValidateDataset:
    """Test whole-dataset validation."""

    def test_bundled_dataset_is_valid(self):
        assert validate_dataset(nav_links.CATEGORIES, nav_links.SITES) == []

    def test_not_lists(self):
        assert validate_dataset({}, []) == ["Categories and sites must both be lists"]

    def test_collects_every_problem(self):
        """All problems are reported, not just the first."""
        categories = [
            {"id": "dev", "name": "Dev", "icon": "x"},
            {"id": "dev", "name": "Dev again", "icon": "y"},
            {"id": "bad"},
        ]
        sites = [
            {"id": "a", "title": "A", "url": "https://a.com", "category": "dev"},
            {"id": "a", "title": "A2", "url": "https://a.com", "category": "dev"},
            {"id": "c", "title": "C", "url": "https://c.com", "category": "ghost"},
        ]

        errors = validate_dataset(categories, sites)

        assert "Category bad: name: is required" in errors
        assert "Duplicate category id: dev" in errors
        assert "Duplicate site id: a" in errors
        assert "Duplicate site URL: https://a.com" in errors
        assert 'Site "C" references missing category: ghost' in errors

    def test_non_dict_record(self):
        errors = validate_dataset(["oops"], [])
        assert errors == ["Category #0: category: must be an object"]
