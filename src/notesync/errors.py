"""Error taxonomy and the ``Result`` wrapper returned by the service layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class SyncError(Exception):
    """Base class for every error raised inside NoteSync."""

    retryable: bool = False


class LocalStorageError(SyncError):
    """The local database failed; fatal to the single operation."""


class NotFound(LocalStorageError):
    def __init__(self, note_id: str) -> None:
        super().__init__(f"Note not found: {note_id}")
        self.note_id = note_id


class NetworkError(SyncError):
    """Transient remote failure. Local state is already durable."""

    retryable = True


class RemotePermissionError(SyncError):
    """The remote store rejected access. Needs reconfiguration, not a retry."""

    def __init__(self, message: str) -> None:
        super().__init__(
            f"Permission denied: {message}. Check the Redis ACL for this user "
            "and make sure it may read and write the configured key prefix."
        )


class AuthenticationFailed(SyncError):
    def __init__(self, cause: Optional[BaseException] = None) -> None:
        detail = str(cause) if cause is not None else "unknown"
        super().__init__(f"Authentication failed: {detail}")
        self.cause = cause


class InvalidToken(SyncError):
    """An account token or note id cannot be used as a remote path segment."""

    def __init__(self, token: str) -> None:
        super().__init__(f"Not usable as a remote path segment: {token!r}")
        self.token = token


class AccountNotFound(SyncError):
    """No account exists remotely under the given token."""

    def __init__(self, token: str) -> None:
        super().__init__(f"No account found for {token!r}")
        self.token = token


class DecodeFailure(SyncError):
    """Content could not be recovered under any known key."""

    def __init__(self, note_id: str) -> None:
        super().__init__(f"Could not decode note {note_id} under any candidate key")
        self.note_id = note_id


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[SyncError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: SyncError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
