"""Concrete syncable entities.

Each entity is a plain dataclass that satisfies the SyncableRecord
protocol on its own; there is no shared base class. Relationships are
held as UUID references, so the in-memory shape matches the wire shape.

Entity types (wire names):
- MoleculeTemplate: recurring routine definition (template)
- AtomTemplate: step inside a routine definition (template)
- MoleculeInstance: one scheduled occurrence of a routine (instance)
- AtomInstance: one step of a scheduled occurrence (instance)
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, TypeVar

from recordsync.core.records import (
    base_document,
    encode_document,
    format_sync_date,
    parse_sync_date,
    parse_uuid,
    parse_uuid_list,
    safe_bool,
    safe_float,
    safe_int,
    safe_int_list,
    safe_str,
    utcnow,
)
from recordsync.core.types import EntityKind, RecordDecodeError

T = TypeVar("T")


def _require(data: dict[str, Any], key: str, reader: Callable[[Any], T | None], entity: str) -> T:
    value = reader(data.get(key))
    if value is None:
        raise RecordDecodeError(f"{entity} document is missing required field '{key}'")
    return value


def _common(data: dict[str, Any], entity: str) -> dict[str, Any]:
    """Decode the fields shared by every entity."""
    return {
        "sync_id": _require(data, "syncID", parse_uuid, entity),
        "created_at": parse_sync_date(data.get("createdAt")) or utcnow(),
        "last_modified": parse_sync_date(data.get("lastModified")) or utcnow(),
        "is_deleted": safe_bool(data.get("isDeleted")),
    }


def _alert_offsets(value: Any) -> list[int]:
    # An explicit empty list means alerts were turned off
    offsets = safe_int_list(value)
    return [15] if offsets is None else offsets


def _optional_date(value: datetime | None) -> str | None:
    return format_sync_date(value) if value is not None else None


def _put_optional(document: dict[str, Any], **fields: Any) -> None:
    for key, value in fields.items():
        if value is not None:
            document[key] = value


@dataclass
class MoleculeTemplate:
    """A recurring routine definition."""

    entity_type: ClassVar[str] = "MoleculeTemplate"
    kind: ClassVar[EntityKind] = EntityKind.TEMPLATE

    title: str
    base_time: datetime
    sync_id: uuid.UUID = field(default_factory=uuid.uuid4)
    recurrence_freq: str = "daily"
    recurrence_days: list[int] = field(default_factory=list)
    end_rule_type: str = "never"
    end_rule_date: datetime | None = None
    end_rule_count: int | None = None
    notes: str | None = None
    compound: str | None = None
    alert_offsets: list[int] = field(default_factory=lambda: [15])
    is_all_day: bool = False
    is_pinned: bool = False
    sort_order: int = 0
    icon_symbol: str | None = None
    icon_frame: str | None = None
    theme_color_hex: str | None = None
    atom_template_ids: list[uuid.UUID] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    last_modified: datetime = field(default_factory=utcnow)
    is_deleted: bool = False

    def to_sync_json(self) -> bytes | None:
        document = base_document(self)
        document.update(
            {
                "title": self.title,
                "baseTime": format_sync_date(self.base_time),
                "recurrenceFreq": self.recurrence_freq,
                "recurrenceDays": list(self.recurrence_days),
                "endRuleType": self.end_rule_type,
                "alertOffsets": list(self.alert_offsets),
                "isAllDay": self.is_all_day,
                "isPinned": self.is_pinned,
                "sortOrder": self.sort_order,
                "atomTemplateIDs": [str(i) for i in self.atom_template_ids],
            }
        )
        _put_optional(
            document,
            endRuleDate=_optional_date(self.end_rule_date),
            endRuleCount=self.end_rule_count,
            notes=self.notes,
            compound=self.compound,
            iconSymbol=self.icon_symbol,
            iconFrameRaw=self.icon_frame,
            themeColorHex=self.theme_color_hex,
        )
        return encode_document(document, f"{self.entity_type} {self.sync_id}")

    @classmethod
    def from_sync_dict(cls, data: dict[str, Any]) -> MoleculeTemplate:
        name = cls.entity_type
        return cls(
            title=_require(data, "title", safe_str, name),
            base_time=_require(data, "baseTime", parse_sync_date, name),
            recurrence_freq=safe_str(data.get("recurrenceFreq")) or "daily",
            recurrence_days=safe_int_list(data.get("recurrenceDays")) or [],
            end_rule_type=safe_str(data.get("endRuleType")) or "never",
            end_rule_date=parse_sync_date(data.get("endRuleDate")),
            end_rule_count=safe_int(data.get("endRuleCount")),
            notes=safe_str(data.get("notes")),
            compound=safe_str(data.get("compound")),
            alert_offsets=_alert_offsets(data.get("alertOffsets")),
            is_all_day=safe_bool(data.get("isAllDay")),
            is_pinned=safe_bool(data.get("isPinned")),
            sort_order=safe_int(data.get("sortOrder")) or 0,
            icon_symbol=safe_str(data.get("iconSymbol")),
            icon_frame=safe_str(data.get("iconFrameRaw")),
            theme_color_hex=safe_str(data.get("themeColorHex")),
            atom_template_ids=parse_uuid_list(data.get("atomTemplateIDs")),
            **_common(data, name),
        )


@dataclass
class AtomTemplate:
    """A single step inside a routine definition."""

    entity_type: ClassVar[str] = "AtomTemplate"
    kind: ClassVar[EntityKind] = EntityKind.TEMPLATE

    title: str
    sync_id: uuid.UUID = field(default_factory=uuid.uuid4)
    input_type: str = "binary"
    target_value: float | None = None
    unit: str | None = None
    order: int = 0
    target_sets: int | None = None
    target_reps: int | None = None
    default_rest_time: float | None = None
    video_url: str | None = None
    icon_symbol: str | None = None
    icon_frame: str | None = None
    theme_color_hex: str | None = None
    molecule_template_id: uuid.UUID | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_modified: datetime = field(default_factory=utcnow)
    is_deleted: bool = False

    def to_sync_json(self) -> bytes | None:
        document = base_document(self)
        document.update(
            {
                "title": self.title,
                "inputType": self.input_type,
                "order": self.order,
            }
        )
        _put_optional(
            document,
            targetValue=self.target_value,
            unit=self.unit,
            targetSets=self.target_sets,
            targetReps=self.target_reps,
            defaultRestTime=self.default_rest_time,
            videoURL=self.video_url,
            iconSymbol=self.icon_symbol,
            iconFrameRaw=self.icon_frame,
            themeColorHex=self.theme_color_hex,
            moleculeTemplateID=str(self.molecule_template_id) if self.molecule_template_id else None,
        )
        return encode_document(document, f"{self.entity_type} {self.sync_id}")

    @classmethod
    def from_sync_dict(cls, data: dict[str, Any]) -> AtomTemplate:
        name = cls.entity_type
        return cls(
            title=_require(data, "title", safe_str, name),
            input_type=safe_str(data.get("inputType")) or "binary",
            target_value=safe_float(data.get("targetValue")),
            unit=safe_str(data.get("unit")),
            order=safe_int(data.get("order")) or 0,
            target_sets=safe_int(data.get("targetSets")),
            target_reps=safe_int(data.get("targetReps")),
            default_rest_time=safe_float(data.get("defaultRestTime")),
            video_url=safe_str(data.get("videoURL")),
            icon_symbol=safe_str(data.get("iconSymbol")),
            icon_frame=safe_str(data.get("iconFrameRaw")),
            theme_color_hex=safe_str(data.get("themeColorHex")),
            molecule_template_id=parse_uuid(data.get("moleculeTemplateID")),
            **_common(data, name),
        )


@dataclass
class MoleculeInstance:
    """One scheduled occurrence of a routine."""

    entity_type: ClassVar[str] = "MoleculeInstance"
    kind: ClassVar[EntityKind] = EntityKind.INSTANCE

    scheduled_date: datetime
    sync_id: uuid.UUID = field(default_factory=uuid.uuid4)
    is_completed: bool = False
    completed_at: datetime | None = None
    is_exception: bool = False
    exception_title: str | None = None
    exception_time: datetime | None = None
    original_scheduled_date: datetime | None = None
    notes: str | None = None
    alert_offsets: list[int] = field(default_factory=lambda: [15])
    is_all_day: bool = False
    molecule_template_id: uuid.UUID | None = None
    atom_instance_ids: list[uuid.UUID] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    last_modified: datetime = field(default_factory=utcnow)
    is_deleted: bool = False

    def to_sync_json(self) -> bytes | None:
        document = base_document(self)
        document.update(
            {
                "scheduledDate": format_sync_date(self.scheduled_date),
                "isCompleted": self.is_completed,
                "isException": self.is_exception,
                "isAllDay": self.is_all_day,
                "alertOffsets": list(self.alert_offsets),
                "atomInstanceIDs": [str(i) for i in self.atom_instance_ids],
            }
        )
        _put_optional(
            document,
            completedAt=_optional_date(self.completed_at),
            exceptionTitle=self.exception_title,
            exceptionTime=_optional_date(self.exception_time),
            originalScheduledDate=_optional_date(self.original_scheduled_date),
            notes=self.notes,
            moleculeTemplateID=str(self.molecule_template_id) if self.molecule_template_id else None,
        )
        return encode_document(document, f"{self.entity_type} {self.sync_id}")

    @classmethod
    def from_sync_dict(cls, data: dict[str, Any]) -> MoleculeInstance:
        name = cls.entity_type
        return cls(
            scheduled_date=_require(data, "scheduledDate", parse_sync_date, name),
            is_completed=safe_bool(data.get("isCompleted")),
            completed_at=parse_sync_date(data.get("completedAt")),
            is_exception=safe_bool(data.get("isException")),
            exception_title=safe_str(data.get("exceptionTitle")),
            exception_time=parse_sync_date(data.get("exceptionTime")),
            original_scheduled_date=parse_sync_date(data.get("originalScheduledDate")),
            notes=safe_str(data.get("notes")),
            alert_offsets=_alert_offsets(data.get("alertOffsets")),
            is_all_day=safe_bool(data.get("isAllDay")),
            molecule_template_id=parse_uuid(data.get("moleculeTemplateID")),
            atom_instance_ids=parse_uuid_list(data.get("atomInstanceIDs")),
            **_common(data, name),
        )


@dataclass
class AtomInstance:
    """One step of a scheduled occurrence."""

    entity_type: ClassVar[str] = "AtomInstance"
    kind: ClassVar[EntityKind] = EntityKind.INSTANCE

    title: str
    sync_id: uuid.UUID = field(default_factory=uuid.uuid4)
    input_type: str = "binary"
    is_completed: bool = False
    completed_at: datetime | None = None
    value: float | None = None
    target_value: float | None = None
    unit: str | None = None
    order: int = 0
    target_sets: int | None = None
    target_reps: int | None = None
    molecule_instance_id: uuid.UUID | None = None
    atom_template_id: uuid.UUID | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_modified: datetime = field(default_factory=utcnow)
    is_deleted: bool = False

    def to_sync_json(self) -> bytes | None:
        document = base_document(self)
        document.update(
            {
                "title": self.title,
                "inputType": self.input_type,
                "isCompleted": self.is_completed,
                "order": self.order,
            }
        )
        _put_optional(
            document,
            completedAt=_optional_date(self.completed_at),
            value=self.value,
            targetValue=self.target_value,
            unit=self.unit,
            targetSets=self.target_sets,
            targetReps=self.target_reps,
            moleculeInstanceID=str(self.molecule_instance_id) if self.molecule_instance_id else None,
            atomTemplateID=str(self.atom_template_id) if self.atom_template_id else None,
        )
        return encode_document(document, f"{self.entity_type} {self.sync_id}")

    @classmethod
    def from_sync_dict(cls, data: dict[str, Any]) -> AtomInstance:
        name = cls.entity_type
        return cls(
            title=_require(data, "title", safe_str, name),
            input_type=safe_str(data.get("inputType")) or "binary",
            is_completed=safe_bool(data.get("isCompleted")),
            completed_at=parse_sync_date(data.get("completedAt")),
            value=safe_float(data.get("value")),
            target_value=safe_float(data.get("targetValue")),
            unit=safe_str(data.get("unit")),
            order=safe_int(data.get("order")) or 0,
            target_sets=safe_int(data.get("targetSets")),
            target_reps=safe_int(data.get("targetReps")),
            molecule_instance_id=parse_uuid(data.get("moleculeInstanceID")),
            atom_template_id=parse_uuid(data.get("atomTemplateID")),
            **_common(data, name),
        )


# Registry of known entity types, keyed by wire name
ENTITY_TYPES: dict[str, Any] = {
    cls.entity_type: cls
    for cls in (MoleculeTemplate, AtomTemplate, MoleculeInstance, AtomInstance)
}

INSTANCE_ENTITY_TYPES: frozenset[str] = frozenset(
    name for name, cls in ENTITY_TYPES.items() if cls.kind is EntityKind.INSTANCE
)


def decode_record(entity_type: str, data: dict[str, Any]) -> Any:
    """Rebuild a record from its sync document.

    Args:
        entity_type: Wire name of the entity.
        data: Parsed sync document.

    Returns:
        The reconstructed entity.

    Raises:
        RecordDecodeError: If the entity type is unknown or required fields are missing.
    """
    cls = ENTITY_TYPES.get(entity_type)
    if cls is None:
        raise RecordDecodeError(f"Unknown entity type: {entity_type}")
    return cls.from_sync_dict(data)
