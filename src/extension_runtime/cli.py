"""
Command-line interface for the extension runtime.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.table import Table

from extension_runtime.config import RuntimeConfig
from extension_runtime.errors import ValidationError
from extension_runtime.hooks import DEFAULT_HOOKS
from extension_runtime.lifecycle import LifecycleController
from extension_runtime.logging import setup_logging
from extension_runtime.manifest import validate_manifest
from extension_runtime.models import LoadSummary
from extension_runtime.resolver import find_cycles, resolve_load_order
from extension_runtime.runtime import ExtensionRuntime

console = Console()


def config_paths() -> list[Path]:
    """Config file search paths, first existing wins."""
    return [
        Path.cwd() / "extensions.yaml",
        Path.cwd() / "extension-runtime.yaml",
        Path.home() / ".config" / "extension-runtime" / "config.yaml",
    ]


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Extension Runtime CLI",
        prog="extension-runtime",
    )

    # Global options
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug logging)",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="Runtime config file (YAML)",
    )
    parser.add_argument(
        "-d",
        "--dir",
        help="Extensions directory (overrides the config)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # List command
    list_parser = subparsers.add_parser("list", help="List discovered extensions")
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )

    # Order command
    subparsers.add_parser("order", help="Show the dependency load order")

    # Validate command
    subparsers.add_parser("validate", help="Validate extension descriptors")

    # Load command
    load_parser = subparsers.add_parser("load", help="Load all extensions and report")
    load_parser.add_argument(
        "--backup",
        help="Write a backup of the loaded set to this file",
    )

    # Config command with subcommands
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")

    # config show
    config_subparsers.add_parser("show", help="Show current configuration")

    # config init
    config_init_parser = config_subparsers.add_parser("init", help="Initialize a new config file")
    config_init_parser.add_argument(
        "-o",
        "--output",
        default="extensions.yaml",
        help="Output file path",
    )

    args = parser.parse_args()

    # Setup logging based on verbosity
    if getattr(args, "verbose", False):
        setup_logging("DEBUG")
    else:
        setup_logging("WARNING")

    if args.command == "list":
        cmd_list(args)
    elif args.command == "order":
        cmd_order(args)
    elif args.command == "validate":
        cmd_validate(args)
    elif args.command == "load":
        cmd_load(args)
    elif args.command == "config":
        cmd_config(args)
    else:
        parser.print_help()


def _load_config(args: argparse.Namespace) -> RuntimeConfig:
    """Resolve the runtime config from CLI args and the usual locations."""
    config_file = getattr(args, "config", None)
    if config_file:
        config = RuntimeConfig.from_yaml(Path(config_file))
    else:
        config = next(
            (RuntimeConfig.from_yaml(p) for p in config_paths() if p.exists()),
            RuntimeConfig(),
        )

    if getattr(args, "dir", None):
        config.extensions_dir = Path(args.dir)
    return config


def cmd_list(args: argparse.Namespace) -> None:
    """List discovered extensions without loading them."""
    controller = LifecycleController(_load_config(args))
    descriptors, failures = controller.discover()

    if args.json:
        data = [
            {
                "name": d.name,
                "version": d.version,
                "description": d.description,
                "type": d.detect_type(),
                "dependencies": d.dependency_names,
                "source": str(d.source) if d.source else None,
            }
            for d in descriptors
        ]
        console.print_json(json.dumps(data, indent=2))
        return

    table = Table(title="Discovered Extensions")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Type", style="magenta")
    table.add_column("Dependencies")
    table.add_column("Description")

    for d in descriptors:
        table.add_row(
            d.name,
            str(d.version or "-"),
            d.detect_type(),
            ", ".join(d.dependency_names) or "-",
            str(d.description or "")[:60],
        )

    console.print(table)
    for failure in failures:
        console.print(f"[red]✗ {failure.name}:[/red] {failure.error}")
    console.print(f"\n[dim]Total: {len(descriptors)} extensions[/dim]")


def cmd_order(args: argparse.Namespace) -> None:
    """Print the load order the runtime would use."""
    controller = LifecycleController(_load_config(args))
    descriptors, _ = controller.discover()

    order = resolve_load_order(descriptors)
    for index, name in enumerate(order, start=1):
        console.print(f"  {index:>3}. {name}")

    cycles = find_cycles(descriptors)
    for cycle in cycles:
        console.print(f"[yellow]⚠ Circular dependency: {' -> '.join(cycle)}[/yellow]")

    known = {d.name for d in descriptors}
    for d in descriptors:
        missing = [dep for dep in d.dependency_names if dep not in known]
        if missing:
            console.print(f"[yellow]⚠ {d.name} depends on unknown: {', '.join(missing)}[/yellow]")


def cmd_validate(args: argparse.Namespace) -> None:
    """Validate extension descriptors."""
    config = _load_config(args)
    directory = config.extensions_dir
    if not directory.exists():
        console.print(f"[yellow]Directory not found: {directory}[/yellow]")

    controller = LifecycleController(config)
    descriptors, failures = controller.discover()
    errors = len(failures)
    valid_count = 0

    console.print(f"\n[bold]Validating extensions in {directory}[/bold]")

    for failure in failures:
        console.print(f"  [red]✗[/red] {failure.name}: {failure.error}")

    for descriptor in descriptors:
        try:
            report = validate_manifest(descriptor, name=descriptor.name, known_hooks=DEFAULT_HOOKS)
        except ValidationError as e:
            errors += 1
            console.print(f"  [red]✗[/red] {e}")
            continue

        valid_count += 1
        if report.warnings:
            console.print(f"  [yellow]⚠[/yellow] {descriptor.name}: {', '.join(report.warnings)}")
        else:
            console.print(f"  [green]✓[/green] {descriptor.name}")

    console.print("\n[bold]Summary:[/bold]")
    console.print(f"  Valid: {valid_count}")
    console.print(f"  Errors: {errors}")

    if errors:
        sys.exit(1)


def cmd_load(args: argparse.Namespace) -> None:
    """Load every extension once, report, and unload again."""
    summary = asyncio.run(_load_and_report(args))
    if summary.failed:
        sys.exit(1)


async def _load_and_report(args: argparse.Namespace) -> LoadSummary:
    config = _load_config(args)
    config.watch = False
    runtime = ExtensionRuntime(config)

    summary = await runtime.load_all()
    try:
        table = Table(title="Loaded Extensions")
        table.add_column("Name", style="cyan")
        table.add_column("Version")
        table.add_column("State")
        table.add_column("Health")

        for info in runtime.controller.list():
            health = runtime.controller.check_health(info.name)
            table.add_row(info.name, info.version, info.state.value, health.health if health else "-")
        console.print(table)

        for error in summary.errors:
            console.print(
                f"[red]✗ {error['extension']}[/red] (attempt {error['attempt']}): {error['error']}"
            )
        if summary.skipped:
            console.print(f"[dim]Skipped: {', '.join(summary.skipped)}[/dim]")

        if args.backup:
            path = runtime.backup(args.backup)
            console.print(f"[green]Backup written: {path}[/green]")

        console.print("\n[bold]Summary:[/bold]")
        console.print(f"  Loaded: {summary.success}")
        console.print(f"  Failed: {summary.failed}")
    finally:
        await runtime.stop()

    return summary


def cmd_config(args: argparse.Namespace) -> None:
    """Configuration management commands."""
    if args.config_command == "show":
        _config_show(args)
    elif args.config_command == "init":
        _config_init(args.output)
    else:
        console.print("[yellow]Usage: extension-runtime config <show|init>[/yellow]")


def _config_show(args: argparse.Namespace) -> None:
    """Show current configuration."""
    if getattr(args, "config", None):
        loaded_from: Path | None = Path(args.config)
    else:
        loaded_from = next((p for p in config_paths() if p.exists()), None)

    if loaded_from is None:
        console.print("[dim]No config file found. Using defaults.[/dim]")
    else:
        console.print(f"[dim]Loaded from: {loaded_from}[/dim]\n")

    config = _load_config(args)

    # Display configuration
    console.print("[bold]Current Configuration:[/bold]\n")
    console.print(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False))


def _config_init(output: str) -> None:
    """Initialize a new config file."""
    output_path = Path(output)

    if output_path.exists():
        console.print(f"[red]File already exists: {output_path}[/red]")
        sys.exit(1)

    # Create default config
    default_config = {
        "extensions_dir": "./extensions",
        "data_dir": "./data/extensions",
        "backup_dir": "./backups",
        "load_timeout_seconds": 30.0,
        "hook_timeout_seconds": 5.0,
        "max_retries": 3,
        "retry_backoff_seconds": 1.0,
        "watch": False,
        "watch_debounce_ms": 250,
        "entries": {
            "example-extension": {
                "enabled": True,
                "config": {},
            }
        },
    }

    with open(output_path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]Created config file: {output_path}[/green]")


if __name__ == "__main__":
    main()
