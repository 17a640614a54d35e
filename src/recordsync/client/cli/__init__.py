"""Command-line interface for recordsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- init: Configure remote storage for this device
- status: Show device, storage and queue state
- sync: Run a sync pass
- resolve: Resolve a device conflict
- devices: List devices in the shared registry
- queue: List pending uploads
- history: Show or export the sync history
"""

from __future__ import annotations

from pathlib import Path

import click

from recordsync.client.cli.config import (
    configure_logging,
    get_config_dir,
    get_config_file,
    load_config,
    open_client,
    require_client,
    save_config,
)
from recordsync.client.cli.info import devices, history, queue, status
from recordsync.client.cli.setup import init
from recordsync.client.cli.sync import resolve, sync


@click.group()
@click.version_option(package_name="recordsync")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="RECORDSYNC_CONFIG_DIR",
    default=None,
    help="Configuration directory (default: ~/.recordsync).",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_dir: Path | None, verbose: bool) -> None:
    """recordsync - Offline-first record sync over a shared object store."""
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_dir"] = config_dir or get_config_dir()


# Setup commands
cli.add_command(init)

# Sync commands
cli.add_command(sync)
cli.add_command(resolve)

# Inspection commands
cli.add_command(status)
cli.add_command(devices)
cli.add_command(queue)
cli.add_command(history)


def main() -> None:
    """Console script entry point."""
    cli()


__all__ = [
    "cli",
    "main",
    "configure_logging",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "open_client",
    "require_client",
    "save_config",
]
