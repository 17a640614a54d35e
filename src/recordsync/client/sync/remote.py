"""Remote side of a sync pass.

This module provides:
- RemoteService: registry, reconcile, upload and download over ObjectStorage
- parse_record_key: split a record object name into entity type and syncID

Layout below the configured prefix:
    device_registry.json                     the shared DeviceRegistry
    records/<EntityType>_<syncID>.json       one document per record

Last-writer-wins:
    A remote document replaces the local row only if its lastModified is
    newer than the local one. The object modification time is used first
    as a cheap filter so that unchanged objects are not downloaded.

Upload policy:
    Each item is retried in-pass with exponential backoff. An item that
    still fails stays queued with one more failed attempt; once it
    reaches max_item_attempts it is dropped and reported as abandoned.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from recordsync.client.registry import DeviceRegistry
from recordsync.client.sync.retry import retry_with_backoff
from recordsync.client.sync.types import RemoteError, UploadReport
from recordsync.core.config import (
    DEFAULT_MAX_ITEM_ATTEMPTS,
    DEFAULT_UPLOAD_RETRIES,
    DEVICE_REGISTRY_KEY,
    RECORDS_FOLDER,
)
from recordsync.core.entities import ENTITY_TYPES
from recordsync.core.records import (
    encode_document,
    parse_sync_date,
    parse_uuid,
    tombstone_document,
)
from recordsync.core.types import RecordDecodeError
from recordsync.storage import ObjectNotFoundError, StorageError, create_storage

if TYPE_CHECKING:
    from recordsync.client.store import RecordStore
    from recordsync.client.sync.queue import SyncQueue
    from recordsync.client.sync.types import SyncQueueItem
    from recordsync.core.config import SyncConfig
    from recordsync.storage import ObjectInfo, ObjectStorage

logger = logging.getLogger(__name__)


def parse_record_key(name: str) -> tuple[str, str] | None:
    """Split ``<EntityType>_<syncID>.json`` into its parts.

    Returns:
        (entity_type, sync_id), or None for names that are not record objects.
    """
    if not name.endswith(".json"):
        return None
    entity_type, sep, sync_id = name[: -len(".json")].partition("_")
    if not sep or entity_type not in ENTITY_TYPES or parse_uuid(sync_id) is None:
        return None
    return entity_type, sync_id


class RemoteService:
    """Remote store operations used by the sync engine."""

    def __init__(
        self,
        storage: ObjectStorage,
        prefix: str = "",
        upload_retries: int = DEFAULT_UPLOAD_RETRIES,
        max_item_attempts: int = DEFAULT_MAX_ITEM_ATTEMPTS,
        retry_sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the remote service.

        Args:
            storage: Object storage backend.
            prefix: Key prefix of this account's data.
            upload_retries: In-pass retries per record upload.
            max_item_attempts: Failed passes after which an item is abandoned.
            retry_sleep: Wait function between retries (tests pass a no-op).
        """
        self._storage = storage
        self._prefix = prefix.strip("/")
        self._upload_retries = upload_retries
        self._max_item_attempts = max_item_attempts
        self._retry_sleep = retry_sleep

    @classmethod
    def from_config(cls, config: SyncConfig) -> RemoteService:
        """Create a service for the storage described by a config."""
        return cls(
            create_storage(config.storage_options),
            prefix=config.prefix,
            upload_retries=config.upload_retries,
            max_item_attempts=config.max_item_attempts,
        )

    @property
    def location(self) -> str:
        return self._storage.location

    def _key(self, name: str) -> str:
        return f"{self._prefix}/{name}" if self._prefix else name

    def record_key(self, item: SyncQueueItem) -> str:
        return self._key(f"{RECORDS_FOLDER}/{item.filename}")

    # === Device registry ===

    def fetch_device_registry(self) -> DeviceRegistry:
        """Fetch the shared registry, or an empty one if none exists yet.

        Raises:
            RemoteError: If the store is unreachable or the registry unreadable.
        """
        try:
            payload = self._storage.get(self._key(DEVICE_REGISTRY_KEY))
        except ObjectNotFoundError:
            logger.info("No device registry yet, starting with an empty one")
            return DeviceRegistry()
        except StorageError as e:
            raise RemoteError(f"Failed to fetch device registry: {e}") from e

        try:
            return DeviceRegistry.from_json(payload)
        except ValueError as e:
            raise RemoteError(f"Device registry is unreadable: {e}") from e

    def update_device_registry(self, registry: DeviceRegistry) -> None:
        """Overwrite the shared registry.

        Raises:
            RemoteError: If the write fails.
        """
        try:
            self._storage.put(self._key(DEVICE_REGISTRY_KEY), registry.to_json())
        except StorageError as e:
            raise RemoteError(f"Failed to update device registry: {e}") from e
        logger.debug("Device registry updated (%d devices)", len(registry.registered_devices))

    # === Download ===

    def list_remote_records(self) -> list[tuple[str, str, ObjectInfo]]:
        """List record objects as (entity_type, sync_id, info).

        Raises:
            RemoteError: If the listing fails.
        """
        folder = self._key(RECORDS_FOLDER) + "/"
        try:
            objects = self._storage.list(folder)
        except StorageError as e:
            raise RemoteError(f"Failed to list remote records: {e}") from e

        records = []
        for info in objects:
            parsed = parse_record_key(info.key[len(folder) :])
            if parsed is None:
                logger.debug("Ignoring foreign object %s", info.key)
                continue
            records.append((parsed[0], parsed[1], info))
        return records

    def _fetch_document(self, key: str) -> dict[str, Any] | None:
        """Download and parse one record document.

        Returns:
            The document, or None if it vanished or is not a JSON object.

        Raises:
            RemoteError: If the store is unreachable.
        """
        try:
            payload = self._storage.get(key)
        except ObjectNotFoundError:
            logger.debug("Object %s disappeared during sync", key)
            return None
        except StorageError as e:
            raise RemoteError(f"Failed to download {key}: {e}") from e

        try:
            document = json.loads(payload)
        except ValueError as e:
            logger.warning("Skipping malformed remote document %s: %s", key, e)
            return None
        if not isinstance(document, dict):
            logger.warning("Skipping remote document %s: not a JSON object", key)
            return None
        return document

    def _apply(self, store: RecordStore, entity_type: str, key: str, document: dict[str, Any]) -> bool:
        try:
            return store.apply_remote(entity_type, document)
        except RecordDecodeError as e:
            logger.warning("Skipping undecodable remote record %s: %s", key, e)
            return False

    def reconcile_from_remote(self, store: RecordStore) -> int:
        """Apply every remote document newer than its local row.

        Returns:
            Number of records written locally.

        Raises:
            RemoteError: If the store is unreachable.
        """
        applied = 0
        for entity_type, sync_id, info in self.list_remote_records():
            local_modified = store.last_modified(sync_id)
            if local_modified is not None and info.modified_at <= local_modified:
                continue

            document = self._fetch_document(info.key)
            if document is None:
                continue

            remote_modified = parse_sync_date(document.get("lastModified"))
            if local_modified is not None and (
                remote_modified is None or remote_modified <= local_modified
            ):
                continue

            if self._apply(store, entity_type, info.key, document):
                applied += 1

        logger.info("Reconciled %d records from remote", applied)
        return applied

    def download_all(self, store: RecordStore) -> int:
        """Apply every remote document, overwriting local rows.

        Returns:
            Number of records written locally.

        Raises:
            RemoteError: If the store is unreachable.
        """
        applied = 0
        for entity_type, _sync_id, info in self.list_remote_records():
            document = self._fetch_document(info.key)
            if document is not None and self._apply(store, entity_type, info.key, document):
                applied += 1
        logger.info("Downloaded %d records from remote", applied)
        return applied

    # === Upload ===

    def _payload_for(self, item: SyncQueueItem, store: RecordStore) -> bytes | None:
        row = store.get_row(item.sync_id)
        if row is not None:
            return row.document.encode("utf-8")

        # Record no longer exists locally: publish a tombstone
        sync_id = parse_uuid(item.sync_id)
        if sync_id is None:
            logger.error("Queued item has an invalid syncID: %s", item.sync_id)
            return None
        return encode_document(tombstone_document(sync_id), f"tombstone {item.sync_id}")

    def upload_pending_records(self, queue: SyncQueue, store: RecordStore) -> UploadReport:
        """Upload the pending queue in priority order.

        Items that fail are kept queued and reported; they never abort
        the remaining uploads.

        Returns:
            What was uploaded, kept or abandoned.
        """
        report = UploadReport()
        items = queue.get_priority_queue()
        if items:
            logger.info("Uploading %d pending records", len(items))

        for item in items:
            payload = self._payload_for(item, store)
            if payload is None:
                self._handle_failure(queue, item, f"{item.filename} could not be encoded", report)
                continue
            try:
                self._put_with_retry(self.record_key(item), payload)
            except StorageError as e:
                self._handle_failure(queue, item, e, report)
                continue

            queue.remove_from_queue(item)
            report.uploaded.append(item)

        if report.failed_count:
            logger.warning(
                "Upload finished with %d failures (%d uploaded)",
                report.failed_count,
                report.uploaded_count,
            )
        return report

    def _put_with_retry(self, key: str, payload: bytes) -> None:
        retry_with_backoff(
            lambda: self._storage.put(key, payload),
            max_retries=self._upload_retries,
            retryable_exceptions=(StorageError,),
            sleep=self._retry_sleep,
        )

    def _handle_failure(
        self,
        queue: SyncQueue,
        item: SyncQueueItem,
        error: str | Exception,
        report: UploadReport,
    ) -> None:
        report.errors[item.sync_id] = str(error)
        updated = queue.record_failure(item, error)
        if updated is not None and updated.attempts >= self._max_item_attempts:
            queue.remove_from_queue(updated)
            logger.error(
                "Abandoning upload of %s after %d failed attempts",
                item.filename,
                updated.attempts,
            )
            report.abandoned.append(updated)
        else:
            report.failed.append(updated or item)
