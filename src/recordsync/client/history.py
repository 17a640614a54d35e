"""Sync history log.

This module provides:
- SyncAction, SyncOutcome: What ran and how it ended
- SyncHistoryEntry: One logged sync pass
- SyncHistory: Rolling log of the most recent passes, kept in LocalState
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from recordsync.core.records import format_sync_date, parse_sync_date, safe_int, safe_str, utcnow

if TYPE_CHECKING:
    from recordsync.client.state import LocalState

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 100


class SyncAction(str, Enum):
    """What triggered a sync pass."""

    FULL_SYNC = "full_sync"
    MANUAL_SYNC = "manual_sync"
    CONFLICT_RESOLUTION = "conflict_resolution"


class SyncOutcome(str, Enum):
    """How a sync pass ended."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    CONFLICT = "conflict"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SyncHistoryEntry:
    """A single sync pass in the history log."""

    action: SyncAction
    status: SyncOutcome
    details: str = ""
    records_uploaded: int = 0
    records_downloaded: int = 0
    duration_ms: int = 0
    error_message: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": format_sync_date(self.timestamp),
            "action": self.action.value,
            "status": self.status.value,
            "details": self.details,
            "recordsUploaded": self.records_uploaded,
            "recordsDownloaded": self.records_downloaded,
            "durationMs": self.duration_ms,
            "errorMessage": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncHistoryEntry:
        """Create an entry from its stored form.

        Raises:
            ValueError: If action or status is unknown.
        """
        return cls(
            id=safe_str(data.get("id")) or str(uuid.uuid4()),
            timestamp=parse_sync_date(data.get("timestamp")) or utcnow(),
            action=SyncAction(data.get("action")),
            status=SyncOutcome(data.get("status")),
            details=safe_str(data.get("details")) or "",
            records_uploaded=safe_int(data.get("recordsUploaded")) or 0,
            records_downloaded=safe_int(data.get("recordsDownloaded")) or 0,
            duration_ms=safe_int(data.get("durationMs")) or 0,
            error_message=safe_str(data.get("errorMessage")),
        )


class SyncHistory:
    """Rolling log of the most recent sync passes."""

    def __init__(self, state: LocalState, max_entries: int = MAX_HISTORY_ENTRIES) -> None:
        self._state = state
        self._max_entries = max_entries

    def record(self, entry: SyncHistoryEntry) -> None:
        """Append an entry, dropping the oldest beyond the limit.

        A storage failure is logged and otherwise ignored.
        """
        try:
            self._state.add_history(
                entry.id,
                format_sync_date(entry.timestamp),
                json.dumps(entry.to_dict()),
                keep=self._max_entries,
            )
        except sqlite3.Error as e:
            logger.error("Failed to record sync history: %s", e)
            return
        logger.debug("Recorded sync history: %s %s", entry.action.value, entry.status.value)

    @property
    def entries(self) -> list[SyncHistoryEntry]:
        """Entries, newest first."""
        entries = []
        for raw in self._state.list_history():
            try:
                entries.append(SyncHistoryEntry.from_dict(json.loads(raw)))
            except (ValueError, TypeError) as e:
                logger.warning("Skipping unreadable history entry: %s", e)
        return entries

    def entries_matching(self, status: SyncOutcome) -> list[SyncHistoryEntry]:
        return [entry for entry in self.entries if entry.status is status]

    @property
    def last_sync(self) -> SyncHistoryEntry | None:
        entries = self.entries
        return entries[0] if entries else None

    @property
    def last_successful_sync(self) -> SyncHistoryEntry | None:
        for entry in self.entries:
            if entry.status in (SyncOutcome.SUCCESS, SyncOutcome.PARTIAL_SUCCESS):
                return entry
        return None

    def export_json(self) -> str:
        """All entries as a pretty-printed JSON array, newest first."""
        return json.dumps([entry.to_dict() for entry in self.entries], indent=2)

    def clear(self) -> None:
        self._state.clear_history()
        logger.info("Sync history cleared")
