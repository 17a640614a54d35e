"""Pending change queue for record uploads.

This module provides:
- SyncQueue: Thread-safe, persisted queue of records awaiting upload

Items are deduplicated by syncID: a record saved again while already
queued replaces its entry, which moves to the back of the queue.

Ordering (get_priority_queue):
- Instance records created within the recent window come first
- Everything else follows
- Ties are broken FIFO by queued_at

Persistence:
    The whole queue is written as a JSON array under a single key of the
    local state table after every mutation. Malformed persisted data
    loads as an empty queue; a failed write is logged and the in-memory
    queue stays authoritative until the next successful write.

Removal is compare-and-remove: remove_from_queue(item) only deletes the
entry if it still has the queued_at of the snapshot, so a record that
was edited again while its upload was in flight stays queued.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from recordsync.client.sync.types import SyncQueueItem
from recordsync.core.config import DEFAULT_MAX_QUEUE_SIZE, DEFAULT_RECENT_WINDOW
from recordsync.core.entities import INSTANCE_ENTITY_TYPES

if TYPE_CHECKING:
    from recordsync.client.state import LocalState
    from recordsync.client.store import RecordStore
    from recordsync.core.records import SyncableRecord

logger = logging.getLogger(__name__)

PENDING_QUEUE_KEY = "pending_queue"


def _now() -> datetime:
    # Full precision: queued_at is also the compare-and-remove token
    return datetime.now(UTC)


class SyncQueue:
    """Thread-safe queue of pending uploads with syncID deduplication.

    Attributes:
        max_size: Maximum queue size (0 = unlimited)
        recent_window: Age in seconds under which instance items are prioritized
    """

    def __init__(
        self,
        state: LocalState | None = None,
        max_size: int = DEFAULT_MAX_QUEUE_SIZE,
        recent_window: float = DEFAULT_RECENT_WINDOW,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        """Initialize the queue.

        Args:
            state: Local state used for persistence (None = memory only)
            max_size: Maximum number of items (0 = unlimited)
            recent_window: Priority window for instance items, in seconds
            clock: Source of the current time
        """
        self._lock = threading.RLock()
        self._items: list[SyncQueueItem] = []
        self._state = state
        self.max_size = max_size
        self.recent_window = recent_window
        self._clock = clock

        if state is not None:
            self._load()

    # === Persistence ===

    def _load(self) -> None:
        """Load the persisted queue, falling back to empty on bad data."""
        assert self._state is not None
        try:
            raw = self._state.get_state(PENDING_QUEUE_KEY)
        except sqlite3.Error as e:
            logger.warning("Could not read persisted sync queue: %s", e)
            return
        if not raw:
            return

        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError("expected a JSON array")
            items = [SyncQueueItem.from_dict(entry) for entry in data]
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Discarding malformed persisted sync queue: %s", e)
            return

        # Keep the last entry per syncID if the stored array has duplicates
        by_id: dict[str, SyncQueueItem] = {}
        for item in items:
            by_id.pop(item.sync_id, None)
            by_id[item.sync_id] = item
        self._items = list(by_id.values())

        if self._items:
            logger.info("Loaded %d pending uploads from persistence", len(self._items))

    def _persist(self) -> None:
        if self._state is None:
            return
        payload = json.dumps([item.to_dict() for item in self._items])
        try:
            self._state.set_state(PENDING_QUEUE_KEY, payload)
        except sqlite3.Error as e:
            logger.error("Failed to persist sync queue: %s", e)

    # === Mutations ===

    def add_to_queue(self, record: SyncableRecord) -> bool:
        """Queue a record for upload.

        An existing entry for the same syncID is replaced and moves to
        the back of the queue.

        Args:
            record: The record that was changed locally

        Returns:
            True if the record is queued, False if the queue is full
        """
        item = SyncQueueItem(
            sync_id=str(record.sync_id),
            entity_type=record.entity_type,
            created_at=record.created_at,
            queued_at=self._clock(),
        )
        with self._lock:
            index = self._index_of(item.sync_id)
            if index is None:
                if self.max_size > 0 and len(self._items) >= self.max_size:
                    logger.warning(
                        "Sync queue full (max_size=%d), refusing %s %s",
                        self.max_size,
                        item.entity_type,
                        item.sync_id,
                    )
                    return False
            else:
                del self._items[index]

            self._items.append(item)
            self._persist()
            logger.debug("Queued %s (queue size: %d)", item.filename, len(self._items))
            return True

    def remove_from_queue(self, item: SyncQueueItem) -> bool:
        """Remove an item that was handled.

        Args:
            item: Snapshot of the item as it was when the upload started

        Returns:
            True if removed, False if missing or re-enqueued since the snapshot
        """
        with self._lock:
            index = self._index_of(item.sync_id)
            if index is None:
                return False
            if self._items[index].queued_at != item.queued_at:
                logger.debug("Keeping %s: re-enqueued during upload", item.filename)
                return False
            del self._items[index]
            self._persist()
            return True

    def record_failure(self, item: SyncQueueItem, error: str | Exception) -> SyncQueueItem | None:
        """Count a failed upload attempt for an item.

        Args:
            item: Snapshot of the failing item
            error: What went wrong (logged)

        Returns:
            The updated item, or None if the entry was removed or replaced
        """
        with self._lock:
            index = self._index_of(item.sync_id)
            if index is None or self._items[index].queued_at != item.queued_at:
                return None
            updated = self._items[index].with_failure()
            self._items[index] = updated
            self._persist()
        logger.warning(
            "Upload of %s failed (attempt %d): %s", item.filename, updated.attempts, error
        )
        return updated

    def clear_queue(self) -> None:
        """Remove every pending item."""
        with self._lock:
            self._items.clear()
            self._persist()
        logger.info("Sync queue cleared")

    def queue_all_records(self, store: RecordStore) -> int:
        """Queue every record of the local store, tombstones included.

        Returns:
            Number of records queued
        """
        queued = 0
        for record in store.all(include_deleted=True):
            if self.add_to_queue(record):
                queued += 1
        logger.info("Queued %d local records for upload", queued)
        return queued

    # === Queries ===

    @property
    def queue(self) -> list[SyncQueueItem]:
        """Snapshot of the queue in insertion order."""
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def is_recent_instance(self, item: SyncQueueItem, now: datetime | None = None) -> bool:
        """Whether an item belongs to the high priority group."""
        if item.entity_type not in INSTANCE_ENTITY_TYPES:
            return False
        now = now or self._clock()
        return now - item.created_at <= timedelta(seconds=self.recent_window)

    def get_priority_queue(self, now: datetime | None = None) -> list[SyncQueueItem]:
        """Snapshot of the queue in upload order.

        Args:
            now: Reference time for the recent window (default: clock)
        """
        now = now or self._clock()
        items = self.queue
        return sorted(
            items,
            key=lambda item: (0 if self.is_recent_instance(item, now) else 1, item.queued_at),
        )

    @staticmethod
    def generate_filename(item: SyncQueueItem) -> str:
        """Remote object name of an item."""
        return item.filename

    def _index_of(self, sync_id: str) -> int | None:
        for index, item in enumerate(self._items):
            if item.sync_id == sync_id:
                return index
        return None
