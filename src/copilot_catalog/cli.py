"""
Main CLI for copilot-catalog using Click.

Every command loads the configuration (YAML -> env -> flags), configures
logging, installs GracefulShutdown and builds the component graph. A
stale catalog (refresh failed, cache served) is a warning, not a failure.
"""

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click
import yaml
from pydantic import ValidationError

from . import __version__
from .config.loader import load_config
from .core.quota_monitor import QuotaStatus
from .core.shutdown import GracefulShutdown, ShutdownRequested
from .indexer import CatalogItem, Category, IndexResult
from .logging import configure_logging
from .remote.errors import CatalogError, NoCacheAvailable
from .services import Services, build_services

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 3
EXIT_INTERRUPTED = 130


_COMMON_OPTIONS = [
    click.option(
        "-c",
        "--config",
        type=click.Path(exists=True, path_type=Path),
        help="Path to the YAML configuration file",
    ),
    click.option("--repo", help="Repository to index (owner/name)"),
    click.option("--branch", help="Branch to index"),
    click.option(
        "--cache-dir",
        type=click.Path(path_type=Path),
        help="Directory for the cached catalog",
    ),
    click.option(
        "--max-items",
        type=click.IntRange(min=1),
        help="Maximum number of items kept from the repository tree",
    ),
    click.option(
        "-v",
        "--verbose",
        count=True,
        help="Verbosity level (-v, -vv for more detail)",
    ),
    click.option(
        "--log-level",
        type=click.Choice(["debug", "info", "human", "warn", "error"]),
        help="Explicit logging level",
    ),
    click.option(
        "--log-file",
        type=click.Path(path_type=Path),
        help="File to save structured logs (JSON)",
    ),
    click.option(
        "--quiet",
        is_flag=True,
        help="Quiet mode (errors only)",
    ),
]


def common_options(fn):
    """Attach the options shared by every catalog command."""
    for option in reversed(_COMMON_OPTIONS):
        fn = option(fn)
    return fn


@contextmanager
def catalog_session(kwargs: dict[str, Any], json_output: bool = False) -> Iterator[Services]:
    """Load config, set up logging and shutdown, yield the services.

    Maps failures to exit codes:
        config file / YAML / validation error -> 3
        refresh failed without cache         -> 1
        Ctrl+C or SIGTERM                    -> 130
    """
    try:
        config = load_config(config_path=kwargs.get("config"), cli_args=kwargs)
    except FileNotFoundError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except ValidationError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except yaml.YAMLError as e:
        click.echo(f"Invalid YAML in configuration file: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    configure_logging(
        config.logging,
        json_output=json_output,
        quiet=kwargs.get("quiet", False),
    )

    shutdown = GracefulShutdown(install_signals=True)
    services = build_services(config, shutdown)
    try:
        yield services
    except (ShutdownRequested, KeyboardInterrupt):
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except NoCacheAvailable as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)
    except CatalogError as e:
        click.echo(f"Remote error: {e}", err=True)
        sys.exit(EXIT_FAILED)
    finally:
        services.close()
        shutdown.restore_signals()


def _format_time(epoch: float | None) -> str:
    if epoch is None:
        return "-"
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def _item_line(item: CatalogItem) -> str:
    return f"  [{item.category.value:<11}] {item.title}  ({item.path})"


def _result_payload(result: IndexResult, items: list[CatalogItem]) -> dict[str, Any]:
    return {
        "items": [item.to_dict() for item in items],
        "source": result.source,
        "stale": result.stale,
        "error": result.error,
        "warnings": result.warnings,
        "built_at": result.built_at,
    }


def _report_result(result: IndexResult, quiet: bool) -> None:
    """Stale and truncation notices, on stderr."""
    if quiet:
        return
    if result.stale:
        click.echo(
            f"Warning: refresh failed ({result.error}); showing cached catalog "
            f"from {_format_time(result.built_at)}",
            err=True,
        )
    if "tree_truncated" in result.warnings:
        click.echo(
            "Warning: the remote truncated the tree listing; the catalog may be incomplete",
            err=True,
        )


def _echo_items(items: list[CatalogItem], empty_message: str) -> None:
    if not items:
        click.echo(empty_message)
        return
    for item in items:
        click.echo(_item_line(item))


@click.group()
@click.version_option(version=__version__, prog_name="copilot-catalog")
def main() -> None:
    """copilot-catalog - Browse a repository of Copilot instructions, prompts and chat modes.

    The catalog is built from the repository tree, cached locally for a
    TTL, and refreshed within the API quota.
    """
    pass


@main.command(name="list")
@common_options
@click.option(
    "--category",
    type=click.Choice([c.value for c in Category]),
    help="Only show items of this category",
)
@click.option("--refresh", is_flag=True, help="Ignore the cache and rebuild the catalog")
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
def list_cmd(category: str | None, refresh: bool, json_output: bool, **kwargs) -> None:
    """List the catalog.

    Examples:

        \b
        $ copilot-catalog list
        $ copilot-catalog list --category prompt --json
    """
    with catalog_session(kwargs, json_output=json_output) as services:
        result = services.engine.build_index(force_refresh=refresh)
        items = result.items
        if category:
            items = [item for item in items if item.category.value == category]

        if json_output:
            click.echo(json.dumps(_result_payload(result, items), indent=2, ensure_ascii=False))
            return

        _report_result(result, kwargs.get("quiet", False))
        _echo_items(items, "Catalog is empty.")


@main.command()
@common_options
def refresh(**kwargs) -> None:
    """Rebuild the catalog from the remote, ignoring the TTL.

    The cached catalog is dropped first; if the remote fails, there is no
    catalog until the next successful refresh.
    """
    with catalog_session(kwargs) as services:
        result = services.engine.build_index(force_refresh=True)
        _report_result(result, kwargs.get("quiet", False))
        click.echo(f"Catalog refreshed: {len(result.items)} items")


@main.command()
@common_options
@click.argument("query")
@click.option(
    "--expand",
    is_flag=True,
    help="Search the whole repository and add new matches to the catalog",
)
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
def search(query: str, expand: bool, json_output: bool, **kwargs) -> None:
    """Search the catalog. Every keyword of QUERY must match.

    Keywords are matched against title, category and path, never against
    the description.

    Examples:

        \b
        $ copilot-catalog search "azure dotnet"
        $ copilot-catalog search react --expand
    """
    with catalog_session(kwargs, json_output=json_output) as services:
        validation = services.matcher.validate(query)
        if not validation.is_valid:
            click.echo("Error: enter at least one keyword.", err=True)
            click.echo(f"Try: {', '.join(validation.suggestions)}", err=True)
            sys.exit(EXIT_FAILED)

        if expand:
            result = services.engine.expand_by_keywords(query)
        else:
            result = services.engine.build_index()
        matches = services.matcher.match(result.items, query)

        if json_output:
            click.echo(json.dumps(_result_payload(result, matches), indent=2, ensure_ascii=False))
            return

        _report_result(result, kwargs.get("quiet", False))
        _echo_items(matches, f'No items match "{query}".')
        if not matches and not expand:
            click.echo("Hint: use --expand to search the whole repository.", err=True)


@main.command()
@common_options
@click.argument("item_ref", metavar="ITEM")
@click.option("--content", is_flag=True, help="Also print the file content")
def show(item_ref: str, content: bool, **kwargs) -> None:
    """Show the details of one item, by id or path."""
    with catalog_session(kwargs) as services:
        result = services.engine.build_index()
        _report_result(result, kwargs.get("quiet", False))

        item = next(
            (i for i in result.items if item_ref in (i.id, i.path)),
            None,
        )
        if item is None:
            click.echo(f"Error: item '{item_ref}' is not in the catalog.", err=True)
            sys.exit(EXIT_FAILED)

        item = services.hydrator.hydrate(item)
        modified = item.last_modified.strftime("%Y-%m-%d") if item.last_modified else "unknown"
        click.echo(item.title)
        click.echo(f"  Id:            {item.id}")
        click.echo(f"  Category:      {item.category.value}")
        click.echo(f"  Path:          {item.path}")
        click.echo(f"  Description:   {item.description}")
        click.echo(f"  Last modified: {modified}")
        click.echo(f"  URL:           {item.content_url}")

        if content:
            click.echo()
            click.echo(services.hydrator.fetch_text(item))


@main.command(name="clear-cache")
@common_options
def clear_cache(**kwargs) -> None:
    """Delete the cached catalog."""
    with catalog_session(kwargs) as services:
        if services.engine.clear_cache():
            click.echo("Cache cleared.")
        else:
            click.echo("No cached catalog.")


@main.command(name="rate-limit")
@common_options
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
def rate_limit(json_output: bool, **kwargs) -> None:
    """Show the remaining API quota."""
    with catalog_session(kwargs, json_output=json_output) as services:
        monitor = services.quota_monitor()
        status = monitor.poll()
        info = monitor.info

        if status is QuotaStatus.ERROR or info is None:
            click.echo("Error: could not query the API quota.", err=True)
            sys.exit(EXIT_FAILED)

        if json_output:
            click.echo(json.dumps({
                "status": status.value,
                "remaining": info.remaining,
                "limit": info.limit,
                "reset_at": info.reset_at,
                "reset_in_seconds": info.reset_in_seconds,
            }, indent=2))
            return

        minutes = int(info.reset_in_seconds // 60)
        click.echo(f"API quota: {info.remaining}/{info.limit} ({status.value})")
        click.echo(f"  Resets in {minutes} min ({_format_time(info.reset_at)})")


@main.command(name="validate-config")
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to the configuration file to validate",
)
def validate_config(config: Path | None) -> None:
    """Validate a YAML configuration file."""
    try:
        app_config = load_config(config_path=config)
        click.echo("Valid configuration")
        click.echo(f"  Repository: {app_config.catalog.repo}@{app_config.catalog.branch}")
        click.echo(f"  TTL: {app_config.catalog.ttl_hours:g} h")
        click.echo(f"  Max items: {app_config.catalog.max_items}")
        click.echo(f"  Cache: {app_config.catalog.cache_dir}")
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except ValidationError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except yaml.YAMLError as e:
        click.echo(f"Invalid YAML: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)


if __name__ == "__main__":
    main()
