"""Setup command for the recordsync CLI.

Commands:
- init: Write the configuration and create the device identity
"""

from __future__ import annotations

import sys

import click

from recordsync.client.cli.config import get_config_file, save_config
from recordsync.client.identity import DeviceIdentity, DeviceType, IdentityError
from recordsync.core.config import SyncConfig


@click.command()
@click.option(
    "--storage",
    "storage_type",
    type=click.Choice(["local", "s3"]),
    default="local",
    show_default=True,
    help="Remote storage backend.",
)
@click.option("--local-path", default=None, help="Shared folder for local storage.")
@click.option("--bucket", default=None, help="S3 bucket name.")
@click.option("--endpoint-url", default=None, help="Custom S3 endpoint (MinIO, OVH, ...).")
@click.option("--access-key", default=None, help="S3 access key ID.")
@click.option("--secret-key", default=None, help="S3 secret access key.")
@click.option("--region", default="us-east-1", show_default=True, help="S3 region.")
@click.option("--prefix", default="", help="Key prefix of this account's data.")
@click.option("--device-name", default=None, help="Device name (default: hostname).")
@click.option(
    "--device-type",
    type=click.Choice([t.value for t in DeviceType]),
    default=DeviceType.UNKNOWN.value,
    show_default=True,
    help="Kind of device.",
)
@click.option("--simulator", is_flag=True, help="Mark this installation as a simulator.")
@click.option("--force", is_flag=True, help="Overwrite an existing configuration.")
@click.pass_context
def init(
    ctx: click.Context,
    storage_type: str,
    local_path: str | None,
    bucket: str | None,
    endpoint_url: str | None,
    access_key: str | None,
    secret_key: str | None,
    region: str,
    prefix: str,
    device_name: str | None,
    device_type: str,
    simulator: bool,
    force: bool,
) -> None:
    """Configure remote storage for this device."""
    config_dir = ctx.obj["config_dir"]
    config_file = get_config_file(config_dir)

    if config_file.exists() and not force:
        click.echo(
            f"Error: Already initialized ({config_file}). Use --force to overwrite.",
            err=True,
        )
        sys.exit(1)

    if storage_type == "s3" and not bucket:
        click.echo("Error: --bucket is required for S3 storage.", err=True)
        sys.exit(1)

    if storage_type == "local" and not local_path:
        local_path = str(config_dir / "remote")

    config = SyncConfig(
        storage_type=storage_type,
        local_path=local_path,
        bucket=bucket,
        endpoint_url=endpoint_url,
        access_key=access_key,
        secret_key=secret_key,
        region=region,
        prefix=prefix,
        device_name=device_name,
        device_type=device_type,
        simulator=simulator,
    )
    save_config(config, config_dir)

    try:
        identity = DeviceIdentity.load(config_dir, config)
    except IdentityError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Configuration written to {config_file}")
    click.echo(f"Device: {identity.short_description}")
    click.echo(f"Device ID: {identity.device_id}")
