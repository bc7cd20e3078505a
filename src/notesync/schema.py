"""Wire records stored in the remote tree.

Remote layout::

    users/{accountId}/notes/{deviceId}/{noteId} -> RemoteNoteRecord
    users/{accountId}/reminders/{reminderId}   -> RemoteReminderRecord
    users/{accountId}/{passphrase,createdAt,deviceType,lastActiveAt,lastSyncAt,totalNotes}
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from notesync.models import Note, Reminder

logger = logging.getLogger(__name__)


class RemoteNoteRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    title: str = ""  # codec output
    description: str = ""  # codec output
    mymobiledeviceid: str = ""
    timestamp: int = 0

    @classmethod
    def from_note(cls, note: Note, title: str, description: str) -> "RemoteNoteRecord":
        return cls(
            id=note.id,
            title=title,
            description=description,
            mymobiledeviceid=note.device_id,
            timestamp=note.timestamp,
        )

    def to_note(self, title: str, description: str, device_id: Optional[str] = None) -> Note:
        return Note(
            id=self.id,
            title=title,
            description=description,
            device_id=self.mymobiledeviceid if device_id is None else device_id,
            timestamp=self.timestamp,
        )


class RemoteReminderRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    noteId: str
    noteTitle: str = ""
    noteDescription: str = ""
    reminderTime: int
    isActive: bool = True
    createdAt: int = 0

    @classmethod
    def from_reminder(cls, reminder: Reminder) -> "RemoteReminderRecord":
        return cls(
            id=reminder.id,
            noteId=reminder.note_id,
            noteTitle=reminder.note_title,
            noteDescription=reminder.note_description,
            reminderTime=reminder.reminder_time,
            isActive=reminder.is_active,
            createdAt=reminder.created_at,
        )

    def to_reminder(self) -> Reminder:
        return Reminder(
            id=self.id,
            note_id=self.noteId,
            note_title=self.noteTitle,
            note_description=self.noteDescription,
            reminder_time=self.reminderTime,
            is_active=self.isActive,
            created_at=self.createdAt,
        )


class AccountMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    passphrase: Optional[str] = None
    createdAt: int = 0
    deviceType: Optional[str] = None
    lastActiveAt: int = 0
    lastSyncAt: int = 0
    totalNotes: int = Field(default=0, ge=0)


# ----------note containers----------

@dataclass(frozen=True)
class FlatNote:
    key: str
    record: RemoteNoteRecord


@dataclass(frozen=True)
class DeviceGroupedNotes:
    device_key: str
    records: List[RemoteNoteRecord]


NoteContainer = Union[FlatNote, DeviceGroupedNotes]


def _parse_record(key: str, value: Any) -> Optional[RemoteNoteRecord]:
    if not isinstance(value, dict):
        return None
    try:
        record = RemoteNoteRecord.model_validate(value)
    except ValidationError as exc:
        logger.warning("Ignoring malformed remote note %s: %s", key, exc)
        return None
    if not record.id:
        record = record.model_copy(update={"id": key})
    return record


def is_note_shaped(value: Any) -> bool:
    return isinstance(value, dict) and ("title" in value or "description" in value)


def classify_container(key: str, value: Any) -> Optional[NoteContainer]:
    """Tell a note stored directly under ``notes`` from a device subtree."""
    if is_note_shaped(value):
        record = _parse_record(key, value)
        return FlatNote(key, record) if record else None
    if isinstance(value, dict):
        records = []
        for child_key, child in value.items():
            record = _parse_record(child_key, child)
            if record is not None:
                records.append(record)
        return DeviceGroupedNotes(key, records)
    return None


def iter_note_records(tree: Optional[Dict[str, Any]]) -> Iterator[RemoteNoteRecord]:
    """Yield every note record of a ``notes`` subtree, flat or device grouped."""
    for key, value in (tree or {}).items():
        container = classify_container(key, value)
        if isinstance(container, FlatNote):
            yield container.record
        elif isinstance(container, DeviceGroupedNotes):
            yield from container.records


# ----------api bodies----------

class NoteIn(BaseModel):
    title: str = Field(default="", max_length=10_000)
    description: str = Field(default="", max_length=1_000_000)


class PassphraseIn(BaseModel):
    passphrase: str = Field(min_length=1)


class JoinIn(BaseModel):
    source: str = Field(min_length=1)
