"""
Tests for cloudnav/cli.py

Drives `main()` end to end against a SQLite-backed store in a temporary
directory, one process-like invocation per call.
"""
import json
import pytest

from cloudnav import __version__
from cloudnav.cli import build_parser, collect_fields, main, parse_config_value, SITE_FIELDS
from cloudnav.config import NavConfig


@pytest.fixture
def run(isolated_config, capsys):
    """Run the CLI and return (exit code, stdout)."""
    db = isolated_config / "kv.db"

    def _run(*argv, backend="sql"):
        args = ["--kv-backend", backend]
        if backend == "sql":
            args += ["--kv-database", str(db)]
        capsys.readouterr()
        try:
            main(args + list(argv))
            code = 0
        except SystemExit as e:
            code = e.code
        return code, capsys.readouterr().out

    return _run


@pytest.fixture
def migrated(run):
    code, _ = run("-q", "migrate")
    assert code == 0
    return run


class TestParser:
    """Test argument parsing."""

    def test_command_required(self):
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args([])
        assert exc.value.code == 2

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args(["--version"])
        assert exc.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_subcommand_dispatch(self):
        args = build_parser().parse_args(["site", "list", "--category", "dev"])
        assert args.func.__name__ == "cmd_site_list"
        assert args.category == "dev"

    def test_cache_clear_scope_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["cache", "clear", "bookmarks"])

    def test_collect_fields_maps_short_desc(self):
        args = build_parser().parse_args(["site", "update", "gh", "--short-desc", "Hub"])
        assert collect_fields(args, SITE_FIELDS) == {"shortDesc": "Hub"}


class TestParseConfigValue:
    """Test conversion of `config set` values."""

    def test_bool(self):
        assert parse_config_value(NavConfig(), "database_echo", "yes") is True
        assert parse_config_value(NavConfig(), "database_echo", "off") is False

    def test_int(self):
        assert parse_config_value(NavConfig(), "cache_ttl", "42") == 42

    def test_string(self):
        assert parse_config_value(NavConfig(), "kv_backend", "sql") == "sql"


class TestStaticMode:
    """Without a store the CLI serves the bundled dataset read-only."""

    def test_category_list(self, run, dataset):
        code, out = run("-o", "json", "category", "list", backend="none")
        assert code == 0
        assert json.loads(out) == dataset.categories

    def test_site_list_by_category(self, run):
        code, out = run("-o", "json", "site", "list", "--category", "dev", backend="none")
        assert code == 0
        assert [s["id"] for s in json.loads(out)] == ["github", "python-docs", "mdn"]

    def test_site_search(self, run):
        code, out = run("-o", "json", "site", "search", "python", backend="none")
        assert [s["id"] for s in json.loads(out)] == ["python-docs", "realpython"]

    def test_search_no_match(self, run):
        code, out = run("site", "search", "zzzz", backend="none")
        assert code == 0
        assert "No sites match" in out

    def test_write_is_rejected(self, run):
        code, out = run("category", "add", "news", "--name", "News", "--icon", "N", backend="none")
        assert code == 1
        assert "read-only" in out

    def test_migrate_requires_store(self, run):
        code, out = run("-q", "migrate", backend="none")
        assert code == 1
        assert "KV store not available" in out

    def test_info(self, run):
        code, out = run("-o", "json", "info", backend="none")
        info = json.loads(out)
        assert info["dataSource"]["source"] == "static"
        assert info["dataSource"]["isKVAvailable"] is False

    def test_table_output(self, run):
        code, out = run("-o", "table", "category", "list", backend="none")
        assert code == 0
        assert "Categories" in out


class TestMigrateAndEdit:
    """Migrate into SQLite, then edit across separate invocations."""

    def test_migrate_json_status(self, run):
        code, out = run("-q", "-o", "json", "migrate")
        assert code == 0
        status = json.loads(out)
        assert status["status"] == "completed"
        assert status["progress"] == 100

    def test_info_after_migration(self, migrated):
        code, out = migrated("-o", "json", "info")
        info = json.loads(out)
        assert info["dataSource"]["source"] == "kv"
        assert info["metadata"]["migration"]["source"] == "static_to_kv"

    def test_category_add_persists(self, migrated):
        code, out = migrated("-o", "json", "category", "add", "news", "--name", "News", "--icon", "N")
        assert code == 0
        assert json.loads(out)["description"] == "News"

        code, out = migrated("-o", "json", "category", "list")
        assert "news" in [c["id"] for c in json.loads(out)]

    def test_category_update(self, migrated):
        code, out = migrated("-o", "json", "category", "update", "dev", "--name", "Development")
        assert code == 0
        assert json.loads(out)["name"] == "Development"

    def test_update_without_fields(self, migrated):
        code, out = migrated("category", "update", "dev")
        assert code == 0
        assert "Nothing to update" in out

    def test_delete_category_in_use(self, migrated):
        code, out = migrated("category", "delete", "dev")
        assert code == 1
        assert "3 sites use" in out

    def test_site_add_update_delete(self, migrated):
        code, _ = migrated("-q", "site", "add", "pypi", "--title", "PyPI",
                           "--url", "https://pypi.org", "--category", "dev")
        assert code == 0

        code, out = migrated("-o", "json", "site", "update", "pypi", "--short-desc", "Packages")
        assert json.loads(out)["shortDesc"] == "Packages"

        code, _ = migrated("-q", "site", "delete", "pypi")
        assert code == 0

        code, out = migrated("-o", "json", "site", "list", "--refresh")
        assert "pypi" not in [s["id"] for s in json.loads(out)]

    def test_site_add_invalid_url(self, migrated):
        code, out = migrated("site", "add", "bad", "--title", "Bad",
                             "--url", "not-a-url", "--category", "dev")
        assert code == 1
        assert "url" in out

    def test_site_add_duplicate_url(self, migrated):
        code, out = migrated("site", "add", "gh2", "--title", "GitHub again",
                             "--url", "https://github.com", "--category", "dev")
        assert code == 1
        assert "URL already exists" in out

    def test_delete_unknown_site(self, migrated):
        code, out = migrated("site", "delete", "nope")
        assert code == 1
        assert 'Site "nope" not found' in out


class TestExport:
    """Test `cloudnav export`."""

    def test_export_json(self, migrated, dataset):
        code, out = migrated("export", "--format", "json")
        assert code == 0
        exported = json.loads(out)
        assert exported["version"] == "1.0.0"
        assert exported["sites"] == dataset.sites

    def test_export_python_to_file(self, migrated, isolated_config):
        target = isolated_config / "nav_links_export.py"
        code, _ = migrated("-q", "export", "--file", str(target))
        assert code == 0

        source = target.read_text(encoding="utf-8")
        assert "CATEGORIES = " in source
        assert "def sites_to_html" in source

    def test_export_empty_store(self, run):
        code, out = run("export")
        assert code == 1
        assert "KV store holds no data" in out


class TestCacheCommands:
    """Test `cloudnav cache`."""

    def test_stats(self, run):
        code, out = run("-o", "json", "cache", "stats")
        assert code == 0
        stats = json.loads(out)
        assert stats["strategy"] == "memory"
        assert "hit_rate" in stats

    def test_clear(self, migrated):
        code, out = migrated("cache", "clear", "sites")
        assert code == 0
        assert "Cleared cache: sites" in out


class TestConfigCommand:
    """Test `cloudnav config`."""

    def test_show_key(self, run):
        code, out = run("config", "show", "kv_backend")
        assert code == 0
        assert out.strip() == "sql"

    def test_show_unknown_key(self, run):
        code, out = run("config", "show", "no_such_key")
        assert code == 1

    def test_set_persists(self, run, isolated_config):
        code, _ = run("-q", "config", "set", "cache_ttl", "90")
        assert code == 0

        saved = (isolated_config / "home" / ".config" / "cloudnav" / "config.toml").read_text()
        assert "cache_ttl = 90" in saved

    def test_set_requires_value(self, run):
        code, out = run("config", "set", "cache_ttl")
        assert code == 1
        assert "Usage" in out
