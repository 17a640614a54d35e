"""Shared types for recordsync.

This module defines enums and exceptions used by both the record layer
and the sync client.
"""

from __future__ import annotations

from enum import Enum


class SyncState(str, Enum):
    """State of the sync engine.

    The engine publishes a SyncStatus carrying one of these states
    plus an optional message or conflict payload.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    FAILED = "failed"
    CONFLICT_DETECTED = "conflict_detected"


class EntityKind(str, Enum):
    """Class of a syncable entity, used for upload prioritization."""

    INSTANCE = "instance"
    TEMPLATE = "template"


class RecordDecodeError(ValueError):
    """Raised when a sync document cannot be turned back into a record."""
