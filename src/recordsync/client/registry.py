"""Shared device registry and conflict detection.

This module provides:
- ConflictInfo: What the user is shown when a conflict is detected
- RegisteredDevice: One device that has synced the account
- DeviceRegistry: The registry document shared by every device
- detect_conflict: Device-level conflict rule

The registry is a single JSON document in the remote store. It is
fetched and rewritten wholesale on every sync pass and only ever
mutated through DeviceRegistry.register_device().

Conflict rule:
    A device that is not yet registered while another, non-simulator
    device already is, must not merge silently: the user picks which
    dataset wins.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from recordsync.core.records import (
    format_sync_date,
    parse_sync_date,
    safe_bool,
    safe_str,
    utcnow,
)

if TYPE_CHECKING:
    from recordsync.client.identity import DeviceIdentity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictInfo:
    """Information about a detected device conflict.

    Attributes:
        local_device_name: Name of this device.
        remote_device_name: Name of the device that last synced.
        remote_last_sync: When the other device last synced.
        local_record_count: Records present on this device.
    """

    local_device_name: str
    remote_device_name: str
    remote_last_sync: datetime
    local_record_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "localDeviceName": self.local_device_name,
            "remoteDeviceName": self.remote_device_name,
            "remoteLastSync": format_sync_date(self.remote_last_sync),
            "localRecordCount": self.local_record_count,
        }


@dataclass
class RegisteredDevice:
    """A device known to the registry.

    Attributes:
        device_id: Stable device UUID string.
        device_name: Human readable name.
        device_type: phone, tablet, simulator or unknown.
        is_simulator: Simulators never cause conflicts.
        first_sync_date: First registration.
        last_sync_date: Latest successful pass.
        is_primary: The first device ever registered.
    """

    device_id: str
    device_name: str
    device_type: str
    is_simulator: bool
    first_sync_date: datetime
    last_sync_date: datetime
    is_primary: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "deviceID": self.device_id,
            "deviceName": self.device_name,
            "deviceType": self.device_type,
            "isSimulator": self.is_simulator,
            "firstSyncDate": format_sync_date(self.first_sync_date),
            "lastSyncDate": format_sync_date(self.last_sync_date),
            "isPrimary": self.is_primary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegisteredDevice:
        """Create a device from its registry entry.

        Raises:
            ValueError: If the entry has no device ID.
        """
        device_id = safe_str(data.get("deviceID"))
        if not device_id:
            raise ValueError(f"Registry entry without deviceID: {data!r}")
        last_sync = parse_sync_date(data.get("lastSyncDate")) or utcnow()
        return cls(
            device_id=device_id,
            device_name=safe_str(data.get("deviceName")) or "Unknown",
            device_type=safe_str(data.get("deviceType")) or "unknown",
            is_simulator=safe_bool(data.get("isSimulator")),
            first_sync_date=parse_sync_date(data.get("firstSyncDate")) or last_sync,
            last_sync_date=last_sync,
            is_primary=safe_bool(data.get("isPrimary")),
        )


@dataclass
class DeviceRegistry:
    """Registry of every device that synced the account."""

    registered_devices: list[RegisteredDevice] = field(default_factory=list)
    last_modified_by: str | None = None
    last_modified_at: datetime | None = None

    def get(self, device_id: str) -> RegisteredDevice | None:
        for device in self.registered_devices:
            if device.device_id == device_id:
                return device
        return None

    def is_device_registered(self, device_id: str) -> bool:
        return self.get(device_id) is not None

    def last_other_device(self, excluding: str) -> RegisteredDevice | None:
        """Most recently synced real device other than `excluding`."""
        candidates = [
            device
            for device in self.registered_devices
            if device.device_id != excluding and not device.is_simulator
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda d: d.last_sync_date)

    @property
    def primary_device(self) -> RegisteredDevice | None:
        for device in self.registered_devices:
            if device.is_primary:
                return device
        return None

    def register_device(self, identity: DeviceIdentity, now: datetime | None = None) -> RegisteredDevice:
        """Add this device or refresh its last sync date.

        Registering the same device twice never creates a second entry.
        The first device ever registered becomes primary.

        Args:
            identity: The device to register.
            now: Registration time (default: current time).

        Returns:
            The registry entry for the device.
        """
        now = now or utcnow()
        device = self.get(identity.device_id)
        if device is not None:
            device.last_sync_date = now
            device.device_name = identity.device_name
        else:
            device = RegisteredDevice(
                device_id=identity.device_id,
                device_name=identity.device_name,
                device_type=identity.device_type.value,
                is_simulator=identity.is_simulator,
                first_sync_date=now,
                last_sync_date=now,
                is_primary=not self.registered_devices,
            )
            self.registered_devices.append(device)
            logger.info("Registered new device %s", identity.short_description)

        self.last_modified_by = identity.device_id
        self.last_modified_at = now
        return device

    def to_dict(self) -> dict[str, Any]:
        return {
            "registeredDevices": [device.to_dict() for device in self.registered_devices],
            "lastModifiedBy": self.last_modified_by,
            "lastModifiedAt": (
                format_sync_date(self.last_modified_at) if self.last_modified_at else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeviceRegistry:
        """Create a registry from its JSON document.

        Unreadable or duplicate device entries are skipped.
        """
        devices: list[RegisteredDevice] = []
        seen: set[str] = set()
        raw_devices = data.get("registeredDevices")
        for entry in raw_devices if isinstance(raw_devices, list) else []:
            if not isinstance(entry, dict):
                continue
            try:
                device = RegisteredDevice.from_dict(entry)
            except ValueError as e:
                logger.warning("Skipping registry entry: %s", e)
                continue
            if device.device_id in seen:
                continue
            seen.add(device.device_id)
            devices.append(device)

        return cls(
            registered_devices=devices,
            last_modified_by=safe_str(data.get("lastModifiedBy")),
            last_modified_at=parse_sync_date(data.get("lastModifiedAt")),
        )

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True, indent=2).encode("utf-8")

    @classmethod
    def from_json(cls, payload: bytes | str) -> DeviceRegistry:
        """Parse a registry document.

        Raises:
            ValueError: If the payload is not a JSON object.
        """
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("Device registry must be a JSON object")
        return cls.from_dict(data)


def detect_conflict(
    registry: DeviceRegistry,
    device_id: str,
    local_record_count: int = 0,
    local_device_name: str = "This device",
) -> ConflictInfo | None:
    """Apply the device conflict rule.

    Args:
        registry: Freshly fetched registry.
        device_id: ID of this device.
        local_record_count: Records present locally (shown to the user).
        local_device_name: Name of this device (shown to the user).

    Returns:
        ConflictInfo if this device is new and another real device
        already synced, None otherwise.
    """
    if registry.is_device_registered(device_id):
        return None
    other = registry.last_other_device(excluding=device_id)
    if other is None:
        return None
    return ConflictInfo(
        local_device_name=local_device_name,
        remote_device_name=other.device_name,
        remote_last_sync=other.last_sync_date,
        local_record_count=local_record_count,
    )
