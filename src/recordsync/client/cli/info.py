"""Inspection commands for the recordsync CLI.

Commands:
- status: Show device, storage and queue state
- devices: List devices in the shared registry
- queue: List pending uploads
- history: Show or export the sync history
"""

from __future__ import annotations

import sys
from datetime import datetime

import click

from recordsync.client.cli.config import require_client
from recordsync.client.sync.types import RemoteError


def _format_time(value: datetime | None) -> str:
    if value is None:
        return "never"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


@click.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the sync status of this device."""
    client = require_client(ctx.obj["config_dir"])
    try:
        click.echo(f"Device: {client.identity.short_description}")
        click.echo(f"Storage: {client.remote.location}")
        click.echo(f"Records: {client.store.count()}")
        click.echo(f"Pending uploads: {len(client.queue)}")
        click.echo(f"Last sync: {_format_time(client.engine.last_sync_date)}")

        last = client.history.last_sync
        if last is not None:
            click.echo(f"Last result: {last.status.value} ({last.details})")
    finally:
        client.close()


@click.command()
@click.pass_context
def devices(ctx: click.Context) -> None:
    """List the devices registered for this account."""
    client = require_client(ctx.obj["config_dir"])
    try:
        try:
            registry = client.remote.fetch_device_registry()
        except RemoteError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        if not registry.registered_devices:
            click.echo("No devices registered yet.")
            return

        for device in registry.registered_devices:
            flags = []
            if device.device_id == client.identity.device_id:
                flags.append("this device")
            if device.is_primary:
                flags.append("primary")
            if device.is_simulator:
                flags.append("simulator")
            suffix = f" [{', '.join(flags)}]" if flags else ""
            click.echo(
                f"{device.device_name} ({device.device_type}, {device.device_id[:8]})"
                f" last sync {_format_time(device.last_sync_date)}{suffix}"
            )
    finally:
        client.close()


@click.command()
@click.pass_context
def queue(ctx: click.Context) -> None:
    """List pending uploads in upload order."""
    client = require_client(ctx.obj["config_dir"])
    try:
        items = client.queue.get_priority_queue()
        if not items:
            click.echo("No pending uploads.")
            return

        for item in items:
            marker = "*" if client.queue.is_recent_instance(item) else " "
            attempts = f" ({item.attempts} failed attempts)" if item.attempts else ""
            click.echo(f"{marker} {item.filename}  queued {_format_time(item.queued_at)}{attempts}")
    finally:
        client.close()


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Export the history as JSON.")
@click.option("--clear", is_flag=True, help="Delete the sync history.")
@click.option("--limit", "-n", default=20, show_default=True, help="Entries to show.")
@click.pass_context
def history(ctx: click.Context, as_json: bool, clear: bool, limit: int) -> None:
    """Show recent sync passes."""
    client = require_client(ctx.obj["config_dir"])
    try:
        if clear:
            client.history.clear()
            click.echo("Sync history cleared.")
            return

        if as_json:
            click.echo(client.history.export_json())
            return

        entries = client.history.entries[:limit]
        if not entries:
            click.echo("No sync history.")
            return

        for entry in entries:
            line = (
                f"{_format_time(entry.timestamp)}  {entry.action.value:<20} "
                f"{entry.status.value:<16} {entry.details}"
            )
            if entry.error_message:
                line += f" - {entry.error_message}"
            click.echo(line)
    finally:
        client.close()
