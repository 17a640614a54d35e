"""Record sync contract.

This module provides:
- SyncableRecord: Protocol every syncable entity implements
- format_sync_date / parse_sync_date: the single shared date format
- encode_document: canonical JSON encoding for sync documents
- safe_* helpers: tolerant readers for documents written by peer devices

Sync documents are flat JSON objects. Scalars and optionals are inlined,
a to-one relationship is a single UUID string field and a to-many
relationship is an array of UUID strings. Nested objects are never used.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

if TYPE_CHECKING:
    from recordsync.core.types import EntityKind

logger = logging.getLogger(__name__)


@runtime_checkable
class SyncableRecord(Protocol):
    """Protocol for entities that take part in sync.

    Attributes:
        entity_type: Wire name of the entity (prefix of its remote object key).
        kind: Whether the entity is an instance or a template.
        sync_id: Stable identifier, never reused.
        created_at: When the record was first created.
        last_modified: Bumped on every local mutation.
        is_deleted: Tombstone flag.
    """

    entity_type: ClassVar[str]
    kind: ClassVar[EntityKind]

    sync_id: uuid.UUID
    created_at: datetime
    last_modified: datetime
    is_deleted: bool

    def to_sync_json(self) -> bytes | None:
        """Serialize the record, or return None on a local encoding fault."""
        ...


def utcnow() -> datetime:
    """Current time as an aware UTC datetime, truncated to milliseconds.

    Milliseconds is the precision of format_sync_date, so a record
    stamped with utcnow() survives a round trip unchanged.
    """
    now = datetime.now(UTC)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def format_sync_date(value: datetime) -> str:
    """Format a datetime for sync documents.

    Naive datetimes are assumed to be UTC. Output always carries
    millisecond precision and a trailing ``Z``.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    text = value.astimezone(UTC).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_sync_date(value: Any) -> datetime | None:
    """Parse a sync document date.

    Accepts the output of format_sync_date as well as plain ISO-8601
    strings with or without fractional seconds.

    Returns:
        Aware UTC datetime, or None if the value is missing or invalid.
    """
    text = safe_str(value)
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def encode_document(document: dict[str, Any], label: str = "record") -> bytes | None:
    """Encode a sync document with sorted keys.

    Args:
        document: Flat mapping of wire fields.
        label: Name used in the log message on failure.

    Returns:
        UTF-8 JSON bytes, or None if the document is not encodable.
    """
    try:
        return json.dumps(document, sort_keys=True, allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        logger.error("Failed to encode %s: %s", label, e)
        return None


def base_document(record: SyncableRecord) -> dict[str, Any]:
    """Fields every sync document carries."""
    return {
        "syncID": str(record.sync_id),
        "lastModified": format_sync_date(record.last_modified),
        "isDeleted": record.is_deleted,
        "createdAt": format_sync_date(record.created_at),
    }


def tombstone_document(sync_id: uuid.UUID, deleted_at: datetime | None = None) -> dict[str, Any]:
    """Minimal tombstone for a record that no longer exists locally."""
    return {
        "syncID": str(sync_id),
        "isDeleted": True,
        "lastModified": format_sync_date(deleted_at or utcnow()),
    }


# === Tolerant readers ===


def safe_str(value: Any) -> str | None:
    """Read a string field, accepting numbers written as JSON numbers."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    return None


def safe_bool(value: Any) -> bool:
    """Read a boolean field, accepting 0/1 and "true"/"1"/"yes" strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def safe_int(value: Any) -> int | None:
    """Read an integer field."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def safe_float(value: Any) -> float | None:
    """Read a float field."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def safe_int_list(value: Any) -> list[int] | None:
    """Read an array of integers, skipping unreadable entries."""
    if not isinstance(value, list):
        return None
    result = []
    for item in value:
        number = safe_int(item)
        if number is not None:
            result.append(number)
    return result


def parse_uuid(value: Any) -> uuid.UUID | None:
    """Read a UUID reference field."""
    text = safe_str(value)
    if not text:
        return None
    try:
        return uuid.UUID(text)
    except ValueError:
        return None


def parse_uuid_list(value: Any) -> list[uuid.UUID]:
    """Read an array of UUID references, skipping invalid entries."""
    if not isinstance(value, list):
        return []
    result = []
    for item in value:
        parsed = parse_uuid(item)
        if parsed is not None:
            result.append(parsed)
    return result
