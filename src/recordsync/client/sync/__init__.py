"""Record synchronization.

Architecture:
    RecordStore → SyncQueue → SyncEngine → RemoteService → ObjectStorage

Components:
- **SyncQueue**: Persisted, deduplicated queue of records awaiting upload
- **RemoteService**: Device registry, reconcile, upload and download
- **SyncEngine**: Status state machine sequencing each sync pass

All public symbols are re-exported here.
"""

from recordsync.client.sync.engine import VALID_TRANSITIONS, SyncEngine
from recordsync.client.sync.queue import PENDING_QUEUE_KEY, SyncQueue
from recordsync.client.sync.remote import RemoteService, parse_record_key
from recordsync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
    retry_with_backoff,
)
from recordsync.client.sync.types import (
    ConflictResolution,
    InvalidTransitionError,
    RemoteError,
    SignedInCheck,
    StatusListener,
    SyncError,
    SyncQueueItem,
    SyncResult,
    SyncStatus,
    UploadReport,
)

__all__ = [
    # Engine
    "VALID_TRANSITIONS",
    "SyncEngine",
    # Queue
    "PENDING_QUEUE_KEY",
    "SyncQueue",
    # Remote
    "RemoteService",
    "parse_record_key",
    # Retry
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_BACKOFF",
    "DEFAULT_MAX_RETRIES",
    "retry_with_backoff",
    # Types
    "ConflictResolution",
    "InvalidTransitionError",
    "RemoteError",
    "SignedInCheck",
    "StatusListener",
    "SyncError",
    "SyncQueueItem",
    "SyncResult",
    "SyncStatus",
    "UploadReport",
]
