"""Local record store.

This module provides:
- RecordStore: typed access to the records table of LocalState

Local mutations go through save() / soft_delete(), which bump
last_modified and notify the change hook (normally
SyncQueue.add_to_queue). Documents coming from the remote store are
written through apply_remote(), which never notifies the hook so that
downloads are not echoed back as uploads.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from recordsync.client.state import StoredRecord
from recordsync.core.entities import decode_record
from recordsync.core.records import (
    encode_document,
    format_sync_date,
    parse_sync_date,
    safe_bool,
    safe_str,
    utcnow,
)
from recordsync.core.types import RecordDecodeError

if TYPE_CHECKING:
    from recordsync.client.state import LocalState
    from recordsync.core.records import SyncableRecord

logger = logging.getLogger(__name__)

ChangeHook = Callable[["SyncableRecord"], Any]


class RecordStore:
    """Local, offline-first store of syncable records."""

    def __init__(self, state: LocalState, on_change: ChangeHook | None = None) -> None:
        """Initialize the store.

        Args:
            state: Local SQLite state holding the records table.
            on_change: Called with every locally saved record.
        """
        self._state = state
        self._on_change = on_change

    # === Local mutations ===

    def save(self, record: SyncableRecord, touch: bool = True) -> None:
        """Insert or update a record and notify the change hook.

        Args:
            record: Record to persist.
            touch: Bump last_modified to now before saving.

        Raises:
            ValueError: If the record cannot be encoded.
        """
        if touch:
            record.last_modified = utcnow()
        payload = record.to_sync_json()
        if payload is None:
            raise ValueError(f"{record.entity_type} {record.sync_id} could not be encoded")

        self._state.put_record(
            StoredRecord(
                entity_type=record.entity_type,
                sync_id=str(record.sync_id),
                last_modified=format_sync_date(record.last_modified),
                is_deleted=record.is_deleted,
                document=payload.decode("utf-8"),
            )
        )
        logger.debug("Saved %s %s", record.entity_type, record.sync_id)

        if self._on_change is not None:
            self._on_change(record)

    def soft_delete(self, entity_type: str, sync_id: str) -> bool:
        """Tombstone a record.

        Returns:
            True if the record existed, False otherwise.
        """
        record = self.get(entity_type, sync_id)
        if record is None:
            return False
        record.is_deleted = True
        self.save(record)
        return True

    # === Queries ===

    def get(self, entity_type: str, sync_id: str) -> Any:
        """Load and decode a record, or return None if unknown."""
        row = self._state.get_record(str(sync_id))
        if row is None or row.entity_type != entity_type:
            return None
        return decode_record(row.entity_type, json.loads(row.document))

    def get_row(self, sync_id: str) -> StoredRecord | None:
        """Raw row for a record, as uploaded to the remote store."""
        return self._state.get_record(str(sync_id))

    def last_modified(self, sync_id: str) -> datetime | None:
        """Local last modification date of a record."""
        row = self._state.get_record(str(sync_id))
        return parse_sync_date(row.last_modified) if row else None

    def all(self, include_deleted: bool = True) -> list[Any]:
        """Decode every stored record, skipping unreadable rows."""
        records = []
        for row in self._state.list_records():
            if row.is_deleted and not include_deleted:
                continue
            try:
                records.append(decode_record(row.entity_type, json.loads(row.document)))
            except (RecordDecodeError, json.JSONDecodeError) as e:
                logger.warning("Skipping unreadable record %s: %s", row.sync_id, e)
        return records

    def count(self, include_deleted: bool = False) -> int:
        """Number of stored records."""
        if include_deleted:
            return self._state.count_records()
        return sum(1 for row in self._state.list_records() if not row.is_deleted)

    # === Remote application ===

    def apply_remote(self, entity_type: str, document: dict[str, Any]) -> bool:
        """Write a document fetched from the remote store.

        A tombstone for a known record flips is_deleted and keeps the
        last-known fields. A tombstone for an unknown record is stored
        only if it carries a complete document.

        Args:
            entity_type: Wire name of the entity.
            document: Parsed remote document.

        Returns:
            True if the local row was written, False if skipped.

        Raises:
            RecordDecodeError: If a live document cannot be decoded.
        """
        sync_id = safe_str(document.get("syncID"))
        if not sync_id:
            raise RecordDecodeError(f"{entity_type} document has no syncID")
        last_modified = parse_sync_date(document.get("lastModified")) or utcnow()

        if safe_bool(document.get("isDeleted")):
            existing = self._state.get_record(sync_id)
            if existing is not None:
                merged = json.loads(existing.document)
                merged["isDeleted"] = True
                merged["lastModified"] = format_sync_date(last_modified)
                document = merged
                entity_type = existing.entity_type
            else:
                try:
                    decode_record(entity_type, document)
                except RecordDecodeError:
                    logger.debug("Ignoring tombstone for unknown %s %s", entity_type, sync_id)
                    return False
        else:
            decode_record(entity_type, document)

        payload = encode_document(document, f"{entity_type} {sync_id}")
        if payload is None:
            return False

        self._state.put_record(
            StoredRecord(
                entity_type=entity_type,
                sync_id=sync_id,
                last_modified=format_sync_date(last_modified),
                is_deleted=safe_bool(document.get("isDeleted")),
                document=payload.decode("utf-8"),
            )
        )
        logger.debug("Applied remote %s %s", entity_type, sync_id)
        return True
