"""Data models for the note tree core."""

import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from notetree.utils import to_utc


class InsertTarget(str, Enum):
    """Where a new note's placement goes relative to existing siblings."""

    INTO = "into"  # Append after the last live child of the parent
    AFTER = "after"  # Directly after a reference placement, shifting the rest


class EntityKind(str, Enum):
    """Kinds of change log entries, named after the tables they track."""

    NOTE = "notes"
    NOTE_TREE = "notes_tree"
    NOTE_HISTORY = "notes_history"
    NOTE_REORDERING = "notes_reordering"  # entity_id is the parent note id


class Note(BaseModel):
    """A note row. Title and text are ciphertext when is_protected is set."""

    note_id: str
    note_title: str = ""
    note_text: str = ""
    is_protected: bool = False
    is_deleted: bool = False
    date_created: datetime.datetime
    date_modified: datetime.datetime

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("date_created", "date_modified")
    @classmethod
    def _aware(cls, v: datetime.datetime) -> datetime.datetime:
        return to_utc(v)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Note":
        return cls(**{name: row[name] for name in cls.model_fields})


class NoteTree(BaseModel):
    """One placement of a note under a parent note (or the root sentinel)."""

    note_tree_id: str
    note_id: str
    parent_note_id: str
    note_position: int
    is_expanded: bool = False
    is_deleted: bool = False
    date_modified: datetime.datetime

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("date_modified")
    @classmethod
    def _aware(cls, v: datetime.datetime) -> datetime.datetime:
        return to_utc(v)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NoteTree":
        return cls(**{name: row[name] for name in cls.model_fields})


class NoteHistory(BaseModel):
    """A prior version of a note covering [date_modified_from, date_modified_to)."""

    note_history_id: str
    note_id: str
    note_title: str = ""
    note_text: str = ""
    is_protected: bool = False
    date_modified_from: datetime.datetime
    date_modified_to: datetime.datetime

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("date_modified_from", "date_modified_to")
    @classmethod
    def _aware(cls, v: datetime.datetime) -> datetime.datetime:
        return to_utc(v)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NoteHistory":
        return cls(**{name: row[name] for name in cls.model_fields})


class NoteDraft(BaseModel):
    """Input for creating a note.

    target is kept as a plain string so that an unknown directive reaches
    the service and is reported as InvalidArgumentError.
    """

    note_title: str = Field(default="", description="Plaintext title")
    is_protected: bool = Field(default=False, description="Store encrypted")
    target: str = Field(default=InsertTarget.INTO.value, description="'into' or 'after'")
    target_note_tree_id: Optional[str] = Field(
        default=None, description="Reference placement for 'after'"
    )

    model_config = {"extra": "forbid"}


class NoteContent(BaseModel):
    """Full replacement content for an update, given in plaintext."""

    note_title: str = ""
    note_text: str = ""
    is_protected: bool = False

    model_config = {"extra": "forbid"}


class CreatedNote(BaseModel):
    """Identifiers produced by note creation."""

    note_id: str
    note_tree_id: str

    model_config = {"frozen": True}


class UpdateResult(BaseModel):
    """Outcome of an update: the snapshot taken (if any) and realigned history."""

    note_id: str
    note_history_id: Optional[str] = None
    realigned_history_ids: List[str] = Field(default_factory=list)


class ProtectionResult(BaseModel):
    """Rows whose encryption state actually changed during a toggle."""

    changed_note_ids: List[str] = Field(default_factory=list)
    changed_history_ids: List[str] = Field(default_factory=list)

    def merge(self, other: "ProtectionResult") -> None:
        self.changed_note_ids.extend(other.changed_note_ids)
        self.changed_history_ids.extend(other.changed_history_ids)


class DeletionResult(BaseModel):
    """Placements and notes soft-deleted by one delete call."""

    deleted_note_tree_ids: List[str] = Field(default_factory=list)
    deleted_note_ids: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class SyncEntry:
    """A change log row.

    Attributes:
        id: Monotonic entry id.
        entity_name: One of the EntityKind values.
        entity_id: Changed row id (parent note id for reorderings).
        source_id: Opaque tag of the replica or actor that made the change.
        sync_date: When the entry was recorded.
    """

    id: int
    entity_name: str
    entity_id: str
    source_id: str
    sync_date: datetime.datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_name": self.entity_name,
            "entity_id": self.entity_id,
            "source_id": self.source_id,
            "sync_date": self.sync_date.isoformat(),
        }
