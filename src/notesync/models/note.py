import time
from dataclasses import dataclass, field, replace

from ulid import ULID


def now_millis() -> int:
    return int(time.time() * 1000)


def new_note_id() -> str:
    return f"n_{ULID()}"


@dataclass(frozen=True)
class Note:
    """Immutable note snapshot shared by the local store, sync engine and API."""
    title: str
    description: str
    device_id: str
    id: str = field(default_factory=new_note_id)
    timestamp: int = field(default_factory=now_millis)

    def with_device(self, device_id: str) -> "Note":
        return replace(self, device_id=device_id)


@dataclass(frozen=True)
class PendingDeletion:
    """Durable intent to remove a note remotely that is already gone locally."""
    note_id: str
    device_id: str
    deletion_timestamp: int = field(default_factory=now_millis)
