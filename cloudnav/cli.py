#!/usr/bin/env python3
"""
cloudnav - navigation data manager

Command-line front end for the navigation data: browse categories and
sites, edit them in the remote store, migrate the bundled dataset and
export the store back to a dataset module.
"""
import sys
import argparse
import json
import logging
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, List, Optional
from rich.console import Console
from rich.table import Table
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from cloudnav import __version__
from cloudnav.app import NavApp, create_app
from cloudnav.config import NavConfig, get_config, init_config
from cloudnav.errors import ValidationError

logger = logging.getLogger(__name__)


console = Console()


def open_app() -> NavApp:
    """Build the application from the active configuration."""
    return create_app(get_config())


def print_json(data: Any):
    print(json.dumps(data, indent=2, ensure_ascii=False))


def output_categories(categories: List[Dict[str, Any]], format: str = "table"):
    """Output categories in the specified format."""
    if format == "json":
        print_json(categories)
        return

    table = Table(title="Categories")
    table.add_column("ID", style="cyan")
    table.add_column("Icon")
    table.add_column("Name", style="green")
    table.add_column("Description", style="dim")

    for category in categories:
        table.add_row(
            category.get("id", ""),
            category.get("icon", ""),
            category.get("name", ""),
            (category.get("description") or "")[:60],
        )

    console.print(table)


def output_sites(sites: List[Dict[str, Any]], format: str = "table"):
    """Output sites in the specified format."""
    if format == "json":
        print_json(sites)
        return

    table = Table(title="Sites")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="green")
    table.add_column("URL", style="blue")
    table.add_column("Category", style="yellow")
    table.add_column("Description", style="dim")

    for site in sites:
        table.add_row(
            site.get("id", ""),
            (site.get("title") or "")[:40],
            (site.get("url") or "")[:50],
            site.get("category", ""),
            (site.get("shortDesc") or site.get("description") or "")[:40],
        )

    console.print(table)


def collect_fields(args, mapping: Dict[str, str]) -> Dict[str, Any]:
    """Pick the record fields that were given on the command line."""
    return {
        record_key: getattr(args, arg_name)
        for arg_name, record_key in mapping.items()
        if getattr(args, arg_name, None) is not None
    }


CATEGORY_FIELDS = {"name": "name", "icon": "icon", "description": "description"}
SITE_FIELDS = {
    "title": "title",
    "url": "url",
    "category": "category",
    "description": "description",
    "short_desc": "shortDesc",
    "icon": "icon",
}


def cmd_info(args):
    """Show data source, metadata and cache information."""
    with open_app() as app:
        info = {
            "dataSource": app.data_manager.get_data_source_info(),
            "metadata": app.data_manager.get_metadata(),
            "cache": app.cache.get_stats(),
            "bundledDataset": {
                "source": app.data_manager.dataset.source,
                "version": app.data_manager.dataset.data_version,
            },
        }

    if args.output == "json":
        print_json(info)
        return

    table = Table(title="cloudnav")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    source = info["dataSource"]
    table.add_row("Data Source", source["source"])
    table.add_row("KV Available", "yes" if source["isKVAvailable"] else "no")
    table.add_row("KV Backend", get_config().kv_backend)
    for name in ("categories", "sites"):
        entry = info["metadata"].get(name) or {}
        table.add_row(name.title(), str(entry.get("count", "-")))
    migration = info["metadata"].get("migration")
    if migration:
        table.add_row("Migrated", f"{migration.get('fromVersion')} -> {migration.get('toVersion')}")
    table.add_row("Cache", f"{info['cache']['strategy']} ({info['cache']['items']} items)")
    table.add_row("Bundled Dataset", f"{info['bundledDataset']['source']} "
                                     f"(v{info['bundledDataset']['version']})")

    console.print(table)


def cmd_category_list(args):
    with open_app() as app:
        categories = app.data_manager.get_categories(use_cache=not args.refresh)
    output_categories(categories, args.output)


def cmd_category_add(args):
    """Add a category."""
    category = {"id": args.id, **collect_fields(args, CATEGORY_FIELDS)}
    with open_app() as app:
        record = app.data_manager.add_category(category)

    if args.output == "json":
        print_json(record)
    elif not args.quiet:
        console.print(f"[green]Added category {record['id']}: {record['name']}[/green]")


def cmd_category_update(args):
    """Update a category."""
    updates = collect_fields(args, CATEGORY_FIELDS)
    if not updates:
        console.print("[yellow]Nothing to update[/yellow]")
        return

    with open_app() as app:
        record = app.data_manager.update_category(args.id, updates)

    if args.output == "json":
        print_json(record)
    elif not args.quiet:
        console.print(f"[green]Updated category {record['id']}[/green]")


def cmd_category_delete(args):
    with open_app() as app:
        for category_id in args.ids:
            app.data_manager.delete_category(category_id)
            if not args.quiet:
                console.print(f"[green]Deleted category {category_id}[/green]")


def cmd_site_list(args):
    with open_app() as app:
        if args.category:
            sites = app.data_manager.get_sites_by_category(args.category)
        else:
            sites = app.data_manager.get_sites(use_cache=not args.refresh)
    output_sites(sites, args.output)


def cmd_site_search(args):
    with open_app() as app:
        sites = app.data_manager.search_sites(args.query)

    if not sites and args.output != "json":
        console.print(f"[yellow]No sites match '{args.query}'[/yellow]")
        return
    output_sites(sites, args.output)


def cmd_site_add(args):
    """Add a site."""
    site = {"id": args.id, **collect_fields(args, SITE_FIELDS)}
    with open_app() as app:
        record = app.data_manager.add_site(site)

    if args.output == "json":
        print_json(record)
    elif not args.quiet:
        console.print(f"[green]Added site {record['id']}: {record['title']}[/green]")


def cmd_site_update(args):
    """Update a site."""
    updates = collect_fields(args, SITE_FIELDS)
    if not updates:
        console.print("[yellow]Nothing to update[/yellow]")
        return

    with open_app() as app:
        record = app.data_manager.update_site(args.id, updates)

    if args.output == "json":
        print_json(record)
    elif not args.quiet:
        console.print(f"[green]Updated site {record['id']}[/green]")


def cmd_site_delete(args):
    with open_app() as app:
        for site_id in args.ids:
            app.data_manager.delete_site(site_id)
            if not args.quiet:
                console.print(f"[green]Deleted site {site_id}[/green]")


def print_migration_log(status: Dict[str, Any]):
    styles = {"error": "red", "warning": "yellow"}
    for entry in status["log"]:
        style = styles.get(entry["level"], "dim")
        console.print(f"[{style}]{entry['level'].upper():7} {entry['message']}[/{style}]")


def cmd_migrate(args):
    """Seed the remote store from the bundled dataset."""
    with open_app() as app:
        tool = app.migration

        if args.quiet:
            ok = tool.migrate_to_kv()
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.percentage:>3.0f}%"),
                console=console
            ) as progress:
                task = progress.add_task("Migrating...", total=100)

                def report(percent: int, message: str):
                    progress.update(task, completed=percent, description=message)

                ok = tool.migrate_to_kv(progress=report)

        status = tool.get_status()

    if args.output == "json":
        print_json(status)
    elif not args.quiet:
        print_migration_log(status)

    if ok:
        if not args.quiet and args.output != "json":
            console.print("[green]Migration completed[/green]")
        return

    for error in status["errors"]:
        console.print(f"[red]{error}[/red]")
    sys.exit(1)


def cmd_export(args):
    """Export the remote store as a dataset module or JSON."""
    config = get_config()
    with open_app() as app:
        snapshot = app.migration.export_from_kv()
        status = app.migration.get_status()

    if snapshot is None:
        for error in status["errors"] or ["Export failed"]:
            console.print(f"[red]{error}[/red]")
        sys.exit(1)

    if args.format == "json":
        text = json.dumps(snapshot.to_dict(), indent=2 if config.export_pretty else None,
                          ensure_ascii=False)
    else:
        text = snapshot.to_source()

    if args.file:
        path = Path(args.file)
        path.write_text(text if text.endswith("\n") else text + "\n", encoding="utf-8")
        if not args.quiet:
            console.print(f"[green]Exported {len(snapshot.categories)} categories and "
                          f"{len(snapshot.sites)} sites to {path}[/green]")
    else:
        print(text)


def cmd_cache(args):
    """Cache operations."""
    with open_app() as app:
        if args.cache_command == "clear":
            app.data_manager.clear_cache(args.scope)
            app.cache.cleanup()
            if not args.quiet:
                console.print(f"[green]Cleared cache: {args.scope or 'all'}[/green]")
        elif args.cache_command == "stats":
            stats = app.cache.get_stats()
            if args.output == "json":
                print_json(stats)
            else:
                table = Table(title="Cache")
                table.add_column("Property", style="cyan")
                table.add_column("Value", style="green")
                for key, value in stats.items():
                    table.add_row(key.replace("_", " ").title(), str(value))
                console.print(table)


def parse_config_value(config: NavConfig, key: str, value: str) -> Any:
    """Convert a command-line string to the type of an existing config field."""
    current = getattr(config, key)
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        return int(value)
    return value


def cmd_config(args):
    """Manage configuration."""
    config = get_config()
    known = {f.name for f in fields(NavConfig)}

    if args.action == "show":
        if args.key:
            if args.key not in known:
                console.print(f"[red]Unknown config key: {args.key}[/red]")
                sys.exit(1)
            print(getattr(config, args.key))
        else:
            print_json(asdict(config))

    elif args.action == "set":
        if not args.key or args.value is None:
            console.print("[red]Usage: cloudnav config set KEY VALUE[/red]")
            sys.exit(1)
        if args.key not in known:
            console.print(f"[red]Unknown config key: {args.key}[/red]")
            sys.exit(1)
        setattr(config, args.key, parse_config_value(config, args.key, args.value))
        config.save()
        if not args.quiet:
            console.print(f"[green]Set {args.key} = {args.value}[/green]")

    elif args.action == "init":
        config_path = Path.home() / ".config" / "cloudnav" / "config.toml"
        config.save(config_path)
        console.print(f"[green]Created config at {config_path}[/green]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloudnav",
        description="cloudnav - navigation data manager with static and KV storage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Browse
  cloudnav category list
  cloudnav site list --category dev
  cloudnav site search python

  # Edit (requires a KV backend)
  cloudnav --kv-backend sql category add tools --name Tools --icon "🛠️"
  cloudnav --kv-backend sql site add gh --title GitHub --url https://github.com --category dev
  cloudnav --kv-backend sql site delete gh

  # Migration
  cloudnav --kv-backend sql migrate
  cloudnav --kv-backend sql export --file nav_links.py
  cloudnav --kv-backend sql export --format json | jq '.sites[].url'

Configuration:
  Config file: ~/.config/cloudnav/config.toml or ./cloudnav.toml
  Environment: CLOUDNAV_KV_BACKEND, CLOUDNAV_KV_DATABASE, CLOUDNAV_CLOUDFLARE_API_TOKEN
        """
    )

    # Global options
    parser.add_argument("--version", action="version", version=f"cloudnav {__version__}")
    parser.add_argument("--config", help="Config file path")
    parser.add_argument("--kv-backend", choices=["none", "memory", "sql", "cloudflare"],
                        help="Remote store backend")
    parser.add_argument("--kv-database", help="SQLite file for the sql backend")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("-o", "--output", choices=["table", "json"], help="Output format")

    subparsers = parser.add_subparsers(dest="command", required=True, help="Command groups")

    # info
    info_parser = subparsers.add_parser("info", help="Show data source and metadata")
    info_parser.set_defaults(func=cmd_info)

    # =================
    # CATEGORY GROUP
    # =================
    category_parser = subparsers.add_parser("category", help="Category operations")
    category_subparsers = category_parser.add_subparsers(dest="category_command", required=True)

    cat_list = category_subparsers.add_parser("list", help="List categories")
    cat_list.add_argument("--refresh", action="store_true", help="Bypass the cache")
    cat_list.set_defaults(func=cmd_category_list)

    cat_add = category_subparsers.add_parser("add", help="Add a category")
    cat_add.add_argument("id", help="Category ID")
    cat_add.add_argument("--name", required=True, help="Display name")
    cat_add.add_argument("--icon", required=True, help="Icon (emoji or image path)")
    cat_add.add_argument("--description", help="Description (defaults to the name)")
    cat_add.set_defaults(func=cmd_category_add)

    cat_update = category_subparsers.add_parser("update", help="Update a category")
    cat_update.add_argument("id", help="Category ID")
    cat_update.add_argument("--name", help="New name")
    cat_update.add_argument("--icon", help="New icon")
    cat_update.add_argument("--description", help="New description")
    cat_update.set_defaults(func=cmd_category_update)

    cat_delete = category_subparsers.add_parser("delete", help="Delete categories")
    cat_delete.add_argument("ids", nargs="+", help="Category IDs to delete")
    cat_delete.set_defaults(func=cmd_category_delete)

    # =================
    # SITE GROUP
    # =================
    site_parser = subparsers.add_parser("site", help="Site operations")
    site_subparsers = site_parser.add_subparsers(dest="site_command", required=True)

    site_list = site_subparsers.add_parser("list", help="List sites")
    site_list.add_argument("--category", help="Only sites in this category")
    site_list.add_argument("--refresh", action="store_true", help="Bypass the cache")
    site_list.set_defaults(func=cmd_site_list)

    site_search = site_subparsers.add_parser("search", help="Search sites")
    site_search.add_argument("query", nargs="?", default="", help="Search query")
    site_search.set_defaults(func=cmd_site_search)

    site_add = site_subparsers.add_parser("add", help="Add a site")
    site_add.add_argument("id", help="Site ID")
    site_add.add_argument("--title", required=True, help="Title")
    site_add.add_argument("--url", required=True, help="URL")
    site_add.add_argument("--category", required=True, help="Category ID")
    site_add.add_argument("--description", help="Description (defaults to the title)")
    site_add.add_argument("--short-desc", help="Short description (defaults to the title)")
    site_add.add_argument("--icon", help="Icon path")
    site_add.set_defaults(func=cmd_site_add)

    site_update = site_subparsers.add_parser("update", help="Update a site")
    site_update.add_argument("id", help="Site ID")
    site_update.add_argument("--title", help="New title")
    site_update.add_argument("--url", help="New URL")
    site_update.add_argument("--category", help="New category ID")
    site_update.add_argument("--description", help="New description")
    site_update.add_argument("--short-desc", help="New short description")
    site_update.add_argument("--icon", help="New icon path")
    site_update.set_defaults(func=cmd_site_update)

    site_delete = site_subparsers.add_parser("delete", help="Delete sites")
    site_delete.add_argument("ids", nargs="+", help="Site IDs to delete")
    site_delete.set_defaults(func=cmd_site_delete)

    # =================
    # MIGRATION
    # =================
    migrate_parser = subparsers.add_parser("migrate", help="Copy the bundled dataset into the KV store")
    migrate_parser.set_defaults(func=cmd_migrate)

    export_parser = subparsers.add_parser("export", help="Export the KV store")
    export_parser.add_argument("--format", choices=["python", "json"], default="python",
                               help="Dataset module source or JSON (default: python)")
    export_parser.add_argument("--file", help="Write to this file instead of stdout")
    export_parser.set_defaults(func=cmd_export)

    # =================
    # CACHE GROUP
    # =================
    cache_parser = subparsers.add_parser("cache", help="Cache operations")
    cache_subparsers = cache_parser.add_subparsers(dest="cache_command", required=True)

    cache_clear = cache_subparsers.add_parser("clear", help="Clear cached collections")
    cache_clear.add_argument("scope", nargs="?", choices=["categories", "sites"],
                             help="Only clear this collection")
    cache_clear.set_defaults(func=cmd_cache)

    cache_stats = cache_subparsers.add_parser("stats", help="Show cache statistics")
    cache_stats.set_defaults(func=cmd_cache)

    # =================
    # CONFIG
    # =================
    config_parser = subparsers.add_parser("config", help="Manage configuration")
    config_parser.add_argument("action", choices=["show", "set", "init"],
                               help="Config action")
    config_parser.add_argument("key", nargs="?", help="Config key")
    config_parser.add_argument("value", nargs="?", help="Config value (for set)")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Initialize configuration with CLI overrides
    config_args = {}
    if args.output:
        config_args["output_format"] = args.output
    if args.config:
        config_args["config_file"] = Path(args.config)

    config = init_config(kv_backend=args.kv_backend, kv_database=args.kv_database, **config_args)
    if args.kv_database:
        config.kv_database_url = None

    level = logging.DEBUG if args.verbose else getattr(logging, str(config.log_level).upper(), logging.WARNING)
    logging.basicConfig(level=level, format='%(levelname)s: %(message)s')

    # Set default output format if not specified
    if not args.output:
        args.output = config.output_format

    # Execute command
    try:
        args.func(args)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except ValidationError as e:
        console.print(f"[red]Error: {e}[/red]")
        for error in e.errors:
            console.print(f"[red]  - {error}[/red]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
