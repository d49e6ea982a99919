"""CLI entrypoint for sizetree."""

from __future__ import annotations

import json
from pathlib import Path

import click
from pydantic import ValidationError

from sizetree.config.models import ScanSettings
from sizetree.config.store import SettingsStore, parse_setting_value
from sizetree.errors import ScanError
from sizetree.paths import settings_path
from sizetree.runtime_logging import configure_runtime_logging
from sizetree.scan import scan_directory_sync
from sizetree.tree.models import DirectoryNode
from sizetree.tree.surgery import prune
from sizetree.version import __version__


def human_size(size: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    if index == 0:
        return f"{size} B"
    return f"{value:.1f} {units[index]}"


def render_tree(root: DirectoryNode, depth: int | None = None) -> list[str]:
    """Indented text view, largest children first."""

    lines: list[str] = []

    def walk(node: DirectoryNode, level: int) -> None:
        marker = "/" if node.is_directory and not node.name.endswith("/") else ""
        lines.append(f"{'  ' * level}{human_size(node.size):>10}  {node.name}{marker}")
        if depth is not None and level >= depth:
            return
        for child in sorted(node.children, key=lambda item: (-item.size, item.name)):
            walk(child, level + 1)

    walk(root, 0)
    return lines


def _store(config: str | None) -> SettingsStore:
    return SettingsStore(Path(config).expanduser() if config else None)


def _load_settings(config: str | None) -> ScanSettings:
    return _store(config).load().scan


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--log-level", default=None, help="off, error, warning, info or debug")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False))
def main(log_level: str | None, log_file: str | None) -> None:
    """sizetree: disk-usage trees with bounded parallel scanning."""
    if log_level or log_file:
        configure_runtime_logging(level=log_level, log_file=log_file)


@main.command()
@click.argument("path", required=False, default=".")
@click.option("--max-depth", type=click.IntRange(min=1), default=None, help="Deepest level expanded")
@click.option("--min-size", "min_size", type=click.IntRange(min=0), default=None, help="Fast path only")
@click.option(
    "--strategy",
    type=click.Choice(["auto", "portable", "fast"]),
    default=None,
    help="Scanner to use",
)
@click.option("--concurrency", type=click.IntRange(min=1), default=None)
@click.option("--timeout", "timeout_s", type=float, default=None, help="Abort after this many seconds")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]), default="text", show_default=True)
@click.option("--depth", "display_depth", type=click.IntRange(min=0), default=None, help="Levels to print")
@click.option("--config", type=click.Path(dir_okay=False), default=None, help="Settings file to use")
def scan(
    path: str,
    max_depth: int | None,
    min_size: int | None,
    strategy: str | None,
    concurrency: int | None,
    timeout_s: float | None,
    output_format: str,
    display_depth: int | None,
    config: str | None,
) -> None:
    """Scan PATH and print its size tree."""
    settings = _load_settings(config)
    if concurrency is not None:
        settings = settings.model_copy(update={"concurrency": concurrency})
    request = settings.request_for(path, max_depth=max_depth, min_size_bytes=min_size)

    try:
        result = scan_directory_sync(request, settings, strategy=strategy, timeout_s=timeout_s)
    except ScanError as exc:
        raise click.ClickException(str(exc))
    except TimeoutError:
        raise click.ClickException(f"Scan timed out after {timeout_s}s")

    if output_format == "json":
        payload = {
            "strategy": result.strategy,
            "entries": result.entries,
            "elapsedSeconds": round(result.elapsed_s, 3),
            "skipped": [
                {"path": item.path, "operation": item.operation, "error": item.error}
                for item in result.skipped
            ],
            "tree": result.root.to_dict(),
        }
        click.echo(json.dumps(payload, indent=2))
        return

    for line in render_tree(result.root, display_depth):
        click.echo(line)
    if result.skipped:
        click.echo(f"{len(result.skipped)} entries could not be read", err=True)


@main.command("prune")
@click.argument("tree_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("deleted", nargs=-1)
def prune_command(tree_file: str, deleted: tuple[str, ...]) -> None:
    """Remove DELETED paths from a JSON tree and print the updated tree."""
    payload = json.loads(Path(tree_file).read_text(encoding="utf-8"))
    tree_payload = payload.get("tree", payload) if isinstance(payload, dict) else payload
    try:
        root = DirectoryNode.from_dict(tree_payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise click.ClickException(f"Not a sizetree JSON tree: {exc}")

    pruned = prune(root, set(deleted))
    if pruned is None:
        raise click.ClickException(f"Root was deleted: {root.path}")
    click.echo(json.dumps(pruned.to_dict(), indent=2))


@main.command("settings-path")
def settings_path_command() -> None:
    """Print settings file path."""
    click.echo(str(settings_path()))


@main.group()
def settings() -> None:
    """Inspect or change stored settings."""


@settings.command("show")
@click.option("--config", type=click.Path(dir_okay=False), default=None, help="Settings file to use")
def settings_show(config: str | None) -> None:
    """Print every setting as KEY = VALUE."""
    for key, value in _store(config).load().setting_items():
        click.echo(f"{key} = {value}")


@settings.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--config", type=click.Path(dir_okay=False), default=None, help="Settings file to use")
def settings_set(key: str, value: str, config: str | None) -> None:
    """Set KEY (dotted, e.g. scan.max_depth) to VALUE, given as JSON or plain text."""
    try:
        _store(config).update(key, parse_setting_value(value))
    except KeyError as exc:
        raise click.ClickException(str(exc.args[0]))
    except ValidationError as exc:
        raise click.ClickException(f"Invalid value for {key}: {exc.errors()[0]['msg']}")
    click.echo(f"{key} = {value}")


@main.command()
def about() -> None:
    """Show version and project summary."""
    payload = {
        "name": "sizetree",
        "version": __version__,
        "description": "Disk-usage trees with bounded parallel scanning",
    }
    click.echo(json.dumps(payload, indent=2))


if __name__ == "__main__":
    main()
