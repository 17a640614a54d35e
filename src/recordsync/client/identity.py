"""Device identity for recordsync.

This module provides:
- DeviceType: Kind of device
- DeviceIdentity: Stable per-installation identity
- load_device_id: Keyring-backed device ID with a file fallback

The device ID is generated once and then cached in the OS credential
store (keyring). When no keyring backend is usable, it is kept in a file
of the config directory instead.
"""

from __future__ import annotations

import contextlib
import logging
import os
import socket
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import keyring
from keyring.errors import KeyringError

from recordsync.core.records import safe_bool

if TYPE_CHECKING:
    from recordsync.core.config import SyncConfig

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "recordsync"
KEYRING_ACCOUNT = "device_id"
DEVICE_ID_FILE = "device_id"
SIMULATOR_ENV = "RECORDSYNC_SIMULATOR"


class IdentityError(Exception):
    """Exception raised when the device identity cannot be established."""


class DeviceType(str, Enum):
    """Kind of device."""

    PHONE = "phone"
    TABLET = "tablet"
    SIMULATOR = "simulator"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> DeviceType:
        """Parse a device type, falling back to UNKNOWN."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


def _generate_device_id() -> str:
    # Random per installation: config dirs, profiles and cloned VMs on one host differ
    return str(uuid.uuid4())


def _read_id_file(path: Path) -> str | None:
    if not path.is_file():
        return None
    text = path.read_text().strip()
    try:
        return str(uuid.UUID(text))
    except ValueError:
        logger.warning("Ignoring invalid device ID file %s", path)
        return None


def load_device_id(config_dir: Path) -> str:
    """Get the device ID, creating it on first use.

    Lookup order: keyring, fallback file, new ID. A new or file-only ID
    is written back to the keyring when possible.

    Args:
        config_dir: Directory holding the fallback file.

    Returns:
        Device ID as a UUID string.

    Raises:
        IdentityError: If the ID can be stored neither in the keyring nor on disk.
    """
    id_file = config_dir / DEVICE_ID_FILE

    stored: str | None = None
    try:
        stored = keyring.get_password(KEYRING_SERVICE, KEYRING_ACCOUNT)
    except KeyringError as e:
        logger.debug("Keyring unavailable: %s", e)
    if stored:
        try:
            return str(uuid.UUID(stored))
        except ValueError:
            logger.warning("Ignoring invalid device ID in keyring")

    device_id = _read_id_file(id_file)
    if device_id is None:
        device_id = _generate_device_id()
        logger.info("Generated new device ID %s", device_id)
        try:
            config_dir.mkdir(parents=True, exist_ok=True)
            id_file.write_text(device_id)
        except OSError as e:
            # The keyring is then the only place the ID can live
            try:
                keyring.set_password(KEYRING_SERVICE, KEYRING_ACCOUNT, device_id)
            except KeyringError as ke:
                raise IdentityError(f"Cannot store device ID: {e}; keyring: {ke}") from e
            return device_id

    # Cache in keyring (silently ignore if unavailable)
    with contextlib.suppress(KeyringError):
        keyring.set_password(KEYRING_SERVICE, KEYRING_ACCOUNT, device_id)
    return device_id


@dataclass(frozen=True)
class DeviceIdentity:
    """Identity of this installation.

    Attributes:
        device_id: Stable UUID string.
        device_name: Human readable name.
        device_type: Kind of device.
        is_simulator: Disposable installation that must not take part in
            conflict detection.
    """

    device_id: str
    device_name: str
    device_type: DeviceType = DeviceType.UNKNOWN
    is_simulator: bool = False

    @classmethod
    def load(cls, config_dir: Path, config: SyncConfig | None = None) -> DeviceIdentity:
        """Build the identity of this installation.

        Args:
            config_dir: Directory used for the device ID fallback file.
            config: Optional overrides for name, type and simulator flag.
        """
        simulator = safe_bool(os.environ.get(SIMULATOR_ENV)) or bool(config and config.simulator)
        device_type = DeviceType.parse(config.device_type) if config else DeviceType.UNKNOWN
        if simulator:
            device_type = DeviceType.SIMULATOR
        name = (config.device_name if config else None) or socket.gethostname() or "Unknown"

        return cls(
            device_id=load_device_id(config_dir),
            device_name=name,
            device_type=device_type,
            is_simulator=simulator,
        )

    @property
    def short_description(self) -> str:
        """Name, type and abbreviated ID, for display."""
        return f"{self.device_name} ({self.device_type.value}, {self.device_id[:8]})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "deviceID": self.device_id,
            "deviceName": self.device_name,
            "deviceType": self.device_type.value,
            "isSimulator": self.is_simulator,
        }
