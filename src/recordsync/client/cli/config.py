"""Configuration utilities for the recordsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import click
import keyring
from keyring.errors import KeyringError

from recordsync.client.history import SyncHistory
from recordsync.client.identity import KEYRING_SERVICE, DeviceIdentity, IdentityError
from recordsync.client.state import LocalState
from recordsync.client.store import RecordStore
from recordsync.client.sync.engine import SyncEngine
from recordsync.client.sync.queue import SyncQueue
from recordsync.client.sync.remote import RemoteService
from recordsync.core.config import SyncConfig

logger = logging.getLogger(__name__)

STATE_DB_NAME = "state.db"
SECRET_KEY_ACCOUNT = "s3_secret_key"


def get_config_dir() -> Path:
    """Get the configuration directory for recordsync.

    Returns:
        Path to ~/.recordsync.
    """
    return Path.home() / ".recordsync"


def get_config_file(config_dir: Path) -> Path:
    """Get the path to the config file."""
    return config_dir / "config.json"


def load_config(config_dir: Path) -> SyncConfig:
    """Load configuration from config file (defaults if missing).

    An S3 secret key missing from the file is read from the keyring.
    """
    config_file = get_config_file(config_dir)
    if not config_file.exists():
        return SyncConfig()
    config = SyncConfig.from_dict(json.loads(config_file.read_text()))
    if config.storage_type == "s3" and not config.secret_key:
        try:
            config.secret_key = keyring.get_password(KEYRING_SERVICE, SECRET_KEY_ACCOUNT)
        except KeyringError as e:
            logger.debug("Keyring unavailable: %s", e)
    return config


def save_config(config: SyncConfig, config_dir: Path) -> None:
    """Save configuration to config file.

    The S3 secret key goes to the keyring and is only written to the
    file when no keyring backend is usable.
    """
    data = config.to_dict()
    if config.secret_key:
        try:
            keyring.set_password(KEYRING_SERVICE, SECRET_KEY_ACCOUNT, config.secret_key)
            data["secret_key"] = None
        except KeyringError as e:
            logger.warning("Keyring unavailable, storing S3 secret key in config file: %s", e)

    config_file = get_config_file(config_dir)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(data, indent=2))


def configure_logging(verbose: bool) -> None:
    """Send recordsync log records to stderr.

    Only warnings and errors are shown unless verbose is set.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    package_logger = logging.getLogger("recordsync")
    for existing in package_logger.handlers[:]:
        package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    package_logger.propagate = False


@dataclass
class ClientContext:
    """Everything a command needs to work with local and remote data."""

    config_dir: Path
    config: SyncConfig
    state: LocalState
    store: RecordStore
    queue: SyncQueue
    history: SyncHistory
    identity: DeviceIdentity
    engine: SyncEngine
    remote: RemoteService

    def close(self) -> None:
        self.engine.close()
        self.state.close()


def open_client(config_dir: Path) -> ClientContext:
    """Wire local state, queue, store, identity and engine together.

    Raises:
        ValueError: If the storage configuration is invalid.
        IdentityError: If no device ID can be established.
    """
    config = load_config(config_dir)
    identity = DeviceIdentity.load(config_dir, config)
    remote = RemoteService.from_config(config)
    state = LocalState(config_dir / STATE_DB_NAME)
    queue = SyncQueue(state, max_size=config.max_queue_size, recent_window=config.recent_window)
    store = RecordStore(state, on_change=queue.add_to_queue)
    history = SyncHistory(state)
    engine = SyncEngine(
        remote,
        queue,
        identity,
        state,
        history=history,
        is_signed_in=lambda: config.is_configured,
        foreground_cooldown=config.foreground_cooldown,
        status_display_seconds=config.status_display_seconds,
    )
    return ClientContext(
        config_dir=config_dir,
        config=config,
        state=state,
        store=store,
        queue=queue,
        history=history,
        identity=identity,
        engine=engine,
        remote=remote,
    )


def require_client(config_dir: Path) -> ClientContext:
    """Open the client, exiting with an error if it is not initialized."""
    if not get_config_file(config_dir).exists():
        click.echo("Error: recordsync not initialized. Run 'recordsync init' first.", err=True)
        sys.exit(1)
    try:
        return open_client(config_dir)
    except (ValueError, IdentityError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
