"""Core module - Record contract, entities, and configuration."""

from recordsync.core.config import SyncConfig
from recordsync.core.entities import (
    ENTITY_TYPES,
    INSTANCE_ENTITY_TYPES,
    AtomInstance,
    AtomTemplate,
    MoleculeInstance,
    MoleculeTemplate,
    decode_record,
)
from recordsync.core.records import (
    SyncableRecord,
    format_sync_date,
    parse_sync_date,
)
from recordsync.core.types import EntityKind, RecordDecodeError, SyncState

__all__ = [
    # Config
    "SyncConfig",
    # Entities
    "ENTITY_TYPES",
    "INSTANCE_ENTITY_TYPES",
    "AtomInstance",
    "AtomTemplate",
    "MoleculeInstance",
    "MoleculeTemplate",
    "decode_record",
    # Records
    "SyncableRecord",
    "format_sync_date",
    "parse_sync_date",
    # Types
    "EntityKind",
    "RecordDecodeError",
    "SyncState",
]
