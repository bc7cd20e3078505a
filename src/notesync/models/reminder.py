from dataclasses import dataclass, field

from ulid import ULID

from notesync.models.note import now_millis


def new_reminder_id() -> str:
    return f"r_{ULID()}"


@dataclass(frozen=True)
class Reminder:
    """Reminder attached to a note. Scheduling is handled outside NoteSync."""
    note_id: str
    note_title: str
    note_description: str
    reminder_time: int
    id: str = field(default_factory=new_reminder_id)
    is_active: bool = True
    created_at: int = field(default_factory=now_millis)
