"""Sync commands for the recordsync CLI.

Commands:
- sync: Run a sync pass
- resolve: Resolve a device conflict
"""

from __future__ import annotations

import sys

import click

from recordsync.client.cli.config import ClientContext, require_client
from recordsync.client.sync.types import ConflictResolution, SyncResult

# Exit status when a pass stops on a device conflict
EXIT_CONFLICT = 2


def _report(result: SyncResult) -> None:
    """Print a pass result and exit non-zero unless it succeeded."""
    if result.conflict is not None:
        conflict = result.conflict
        click.echo("Sync conflict detected.")
        click.echo(
            f"  {conflict.remote_device_name} last synced "
            f"{conflict.remote_last_sync.astimezone():%Y-%m-%d %H:%M}."
        )
        click.echo(f"  {conflict.local_device_name} has {conflict.local_record_count} local records.")
        click.echo("Run 'recordsync resolve --use-this-device' or 'recordsync resolve --use-cloud-data'.")
        sys.exit(EXIT_CONFLICT)

    if result.error is not None:
        click.echo(f"Sync failed: {result.error}", err=True)
        sys.exit(1)

    click.echo(result.message)


def _skip_reason(client: ClientContext, force: bool) -> str:
    if not client.config.is_configured:
        return "storage is not configured"
    if client.identity.is_simulator:
        return "this device is a simulator"
    if not force:
        return f"last sync was less than {client.config.foreground_cooldown:.0f}s ago (use --force)"
    return "another sync is in progress"


@click.command()
@click.option("--force", "-f", is_flag=True, help="Ignore the cooldown between syncs.")
@click.pass_context
def sync(ctx: click.Context, force: bool) -> None:
    """Synchronize local records with the remote store.

    Downloads newer remote records, uploads pending local changes and
    registers this device.
    """
    client = require_client(ctx.obj["config_dir"])
    try:
        if force:
            future = client.engine.force_sync(client.store)
        else:
            future = client.engine.perform_full_sync_safely(client.store)

        if future is None:
            click.echo(f"Sync skipped: {_skip_reason(client, force)}.")
            return

        _report(future.result())
    finally:
        client.close()


@click.command()
@click.option(
    "--use-this-device",
    "choice",
    flag_value=ConflictResolution.USE_THIS_DEVICE.value,
    help="Upload every local record; this device's data wins.",
)
@click.option(
    "--use-cloud-data",
    "choice",
    flag_value=ConflictResolution.USE_CLOUD_DATA.value,
    help="Replace local records with the remote data.",
)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def resolve(ctx: click.Context, choice: str | None, yes: bool) -> None:
    """Resolve a device conflict reported by 'sync'."""
    if choice is None:
        raise click.UsageError("Choose --use-this-device or --use-cloud-data.")

    resolution = ConflictResolution(choice)
    if resolution is ConflictResolution.USE_CLOUD_DATA and not yes:
        click.confirm(
            "Local records will be overwritten by the remote data. Continue?",
            abort=True,
        )

    client = require_client(ctx.obj["config_dir"])
    try:
        if not client.config.is_configured:
            click.echo("Error: storage is not configured.", err=True)
            sys.exit(1)

        result = client.engine.handle_conflict_resolution(resolution, client.store)
        if result is None:
            if client.identity.is_simulator:
                reason = "this device is a simulator"
            else:
                reason = "another sync is in progress"
            click.echo(f"Conflict resolution skipped: {reason}.")
            return
        _report(result)
    finally:
        client.close()
