from notesync.models.note import Note, PendingDeletion, new_note_id, now_millis
from notesync.models.reminder import Reminder
from notesync.models.path import RemotePath, is_valid_segment

__all__ = [
    'Note',
    'PendingDeletion',
    'Reminder',
    'RemotePath',
    'is_valid_segment',
    'new_note_id',
    'now_millis',
]
