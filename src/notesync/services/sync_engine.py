"""Push, pull and deletion propagation between the local store and the remote tree.

Every public method returns a :class:`~notesync.errors.Result`. Local writes
always land first; a remote failure only leaves the note (or its tombstone)
pending for the next trigger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from notesync.database import LocalStore, RemoteTree
from notesync.errors import (
    DecodeFailure,
    InvalidToken,
    LocalStorageError,
    NetworkError,
    NotFound,
    Result,
    SyncError,
)
from notesync.models import Note, PendingDeletion, is_valid_segment, new_note_id, now_millis
from notesync.network import Connectivity
from notesync.schema import RemoteNoteRecord, is_note_shaped, iter_note_records
from notesync.security import codec
from notesync.services.account_service import AccountResolver, Authenticator

logger = logging.getLogger(__name__)


def encode_note(note: Note, key: Optional[str] = None) -> RemoteNoteRecord:
    """Wire record for ``note`` with content encoded under ``key`` (its device id by default)."""
    key = note.device_id if key is None else key
    return RemoteNoteRecord.from_note(
        note,
        codec.encode(note.title, key),
        codec.encode(note.description, key),
    )


def decode_record(record: RemoteNoteRecord, candidates: Sequence[str]) -> Optional[Note]:
    decoded = codec.try_decode_pair(record.title, record.description, candidates)
    if decoded is None:
        return None
    title, description, _ = decoded
    return record.to_note(title, description)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


@dataclass(frozen=True)
class PushReport:
    synced_notes: int = 0
    deleted_notes: int = 0
    failed_notes: List[str] = field(default_factory=list)
    failed_deletions: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        parts = []
        if self.synced_notes:
            parts.append(f"Synced {_plural(self.synced_notes, 'note')}")
        if self.deleted_notes:
            prefix = "deleted" if parts else "Deleted"
            parts.append(f"{prefix} {_plural(self.deleted_notes, 'note')}")
        if not parts:
            return "No changes to sync"
        return " and ".join(parts)


@dataclass(frozen=True)
class ReconcileReport:
    deletions_drained: int = 0
    deletions_pending: int = 0
    upserted: int = 0
    skipped_tombstoned: int = 0
    skipped_undecodable: List[str] = field(default_factory=list)
    local_only: int = 0


@dataclass(frozen=True)
class SyncReport:
    push: PushReport
    pull: ReconcileReport


class SyncEngine:
    """Offline-first sync of this device's notes against its account subtree.

    Runs may overlap (a background tick racing an explicit call). Nothing is
    serialized here: remote writes are full-value overwrites keyed by note id
    and local delete+tombstone is a single transaction, so repeating any step
    is harmless.
    """

    def __init__(
        self,
        store: LocalStore,
        tree: RemoteTree,
        resolver: AccountResolver,
        authenticator: Authenticator,
        connectivity: Connectivity,
    ) -> None:
        self.store = store
        self.tree = tree
        self.resolver = resolver
        self.authenticator = authenticator
        self.connectivity = connectivity

    # ----------local operations----------

    def save_note(self, title: str, description: str, note_id: Optional[str] = None) -> Result[Note]:
        """Persist a note locally, then try to push it."""
        if note_id is not None and not is_valid_segment(note_id):
            return Result.failure(InvalidToken(note_id))
        device_id = self.resolver.device_id()
        timestamp = now_millis()
        try:
            if note_id:
                existing = self.store.get_by_id(note_id)
                if existing is not None:
                    timestamp = max(timestamp, existing.timestamp)
            note = Note(
                id=note_id or new_note_id(),
                title=title,
                description=description,
                device_id=device_id,
                timestamp=timestamp,
            )
            self.store.save(note, synced=False)
        except LocalStorageError as e:
            logger.error("Failed to save note locally: %s", e)
            return Result.failure(e)

        if self._push_note(note):
            logger.info("Note saved and synced: %s", note.id)
        else:
            logger.info("Note saved locally, will sync later: %s", note.id)
        return Result.success(note)

    def delete_note(self, note_id: str) -> Result[PendingDeletion]:
        """Delete locally (with tombstone), then try to delete remotely."""
        try:
            pending = self.store.delete(note_id)
        except LocalStorageError as e:
            logger.error("Failed to delete note %s: %s", note_id, e)
            return Result.failure(e)

        if self._connected():
            try:
                self.authenticator.ensure_authenticated()
                self._delete_remote(pending)
            except SyncError as e:
                logger.warning("Remote delete of %s failed, will retry later: %s", note_id, e)
        return Result.success(pending)

    def load_note(self, note_id: str) -> Result[Note]:
        """Local copy first; fall back to this device's remote leaf and cache it."""
        try:
            note = self.store.get_by_id(note_id)
        except LocalStorageError as e:
            return Result.failure(e)
        if note is not None:
            return Result.success(note)

        if not is_valid_segment(note_id) or not self._connected():
            return Result.failure(NotFound(note_id))
        try:
            self.authenticator.ensure_authenticated()
            value = self.tree.read_subtree(self.resolver.resolve_notes_path().child(note_id))
        except SyncError as e:
            logger.warning("Remote lookup of %s failed: %s", note_id, e)
            return Result.failure(e)

        records = list(iter_note_records({note_id: value})) if is_note_shaped(value) else []
        if not records:
            return Result.failure(NotFound(note_id))
        note = self._decode(records[0])
        if note is None:
            return Result.failure(DecodeFailure(note_id))
        try:
            if not self.store.upsert_remote(note):
                return Result.failure(NotFound(note_id))
        except LocalStorageError as e:
            return Result.failure(e)
        logger.info("Note loaded from remote: %s", note_id)
        return Result.success(note)

    def list_notes(self) -> Result[List[Note]]:
        try:
            return Result.success(self.store.list_all())
        except LocalStorageError as e:
            return Result.failure(e)

    # ----------sync runs----------

    def push_pending(self) -> Result[PushReport]:
        """Push every unsynced note and drain every pending deletion."""
        try:
            pending_notes = self.store.list_pending_sync()
            pending_deletions = self.store.list_pending_deletions()
        except LocalStorageError as e:
            return Result.failure(e)

        if not pending_notes and not pending_deletions:
            return Result.success(PushReport())
        if not self._connected():
            return Result.failure(NetworkError("No network connection"))
        try:
            self.authenticator.ensure_authenticated()
        except SyncError as e:
            return Result.failure(e)

        synced, failed_notes = 0, []
        for note in pending_notes:
            if self._push_note(note, check_connection=False):
                synced += 1
            else:
                failed_notes.append(note.id)

        deleted, failed_deletions = self._drain(pending_deletions)
        report = PushReport(synced, deleted, failed_notes, failed_deletions)
        logger.info(report.message)
        return Result.success(report)

    def drain_pending_deletions(self) -> Result[int]:
        try:
            pending = self.store.list_pending_deletions()
        except LocalStorageError as e:
            return Result.failure(e)
        if not pending:
            return Result.success(0)
        if not self._connected():
            return Result.failure(NetworkError("No network connection"))
        try:
            self.authenticator.ensure_authenticated()
        except SyncError as e:
            return Result.failure(e)
        deleted, _ = self._drain(pending)
        return Result.success(deleted)

    def reconcile(self) -> Result[ReconcileReport]:
        """Pull this device's remote notes without resurrecting local deletions.

        Order matters: tombstones are drained before the remote subtree is read
        so a delete issued just before this run cannot be undone by it.
        """
        if not self._connected():
            return Result.failure(NetworkError("No network connection"))
        try:
            self.authenticator.ensure_authenticated()
        except SyncError as e:
            return Result.failure(e)

        try:
            # 1. drain
            drained, still_pending = self._drain(self.store.list_pending_deletions())

            # 2. snapshot
            local_ids = {n.id for n in self.store.list_all()}
            tombstoned = self.store.pending_deletion_ids()

            # 3. read + decode
            try:
                value = self.tree.read_subtree(self.resolver.resolve_notes_path())
            except SyncError as e:
                logger.warning("Failed to read remote notes: %s", e)
                return Result.failure(e)

            # 4. upsert
            upserted, skipped_tombstoned = 0, 0
            undecodable: List[str] = []
            remote_ids = set()
            for record in iter_note_records(value if isinstance(value, dict) else None):
                remote_ids.add(record.id)
                if record.id in tombstoned:
                    skipped_tombstoned += 1
                    continue
                note = self._decode(record)
                if note is None:
                    logger.warning("%s; skipped", DecodeFailure(record.id))
                    undecodable.append(record.id)
                    continue
                if self.store.upsert_remote(note):
                    upserted += 1
                else:
                    skipped_tombstoned += 1
        except LocalStorageError as e:
            logger.error("Reconciliation aborted by local storage error: %s", e)
            return Result.failure(e)

        # 5. local-only notes stay as they are
        report = ReconcileReport(
            deletions_drained=drained,
            deletions_pending=len(still_pending),
            upserted=upserted,
            skipped_tombstoned=skipped_tombstoned,
            skipped_undecodable=undecodable,
            local_only=len(local_ids - remote_ids),
        )
        logger.info(
            "Reconciled: %d pulled, %d tombstoned skipped, %d undecodable, %d deletions drained",
            upserted, skipped_tombstoned, len(undecodable), drained,
        )
        return Result.success(report)

    def sync_now(self) -> Result[SyncReport]:
        """Push pending work, then reconcile."""
        pushed = self.push_pending()
        if not pushed.ok:
            logger.warning("Push before reconcile failed: %s", pushed.error)
            return Result.failure(pushed.error)
        pulled = self.reconcile()
        if not pulled.ok:
            return Result.failure(pulled.error)
        return Result.success(SyncReport(pushed.value, pulled.value))

    # ----------internals----------

    def _connected(self) -> bool:
        connected = self.connectivity.is_connected()
        if not connected:
            logger.debug("Offline, skipping remote operation")
        return connected

    def _push_note(self, note: Note, check_connection: bool = True) -> bool:
        if check_connection:
            if not self._connected():
                return False
            try:
                self.authenticator.ensure_authenticated()
            except SyncError as e:
                logger.warning("Push of %s skipped: %s", note.id, e)
                return False
        try:
            path = self.resolver.resolve_notes_path().child(note.id)
            self.tree.write_leaf(path, encode_note(note).model_dump())
            if self.store.mark_synced(note.id, expected_timestamp=note.timestamp):
                return True
            # deleted while the push was in flight; the leaf just written must go too
            if self.store.requeue_deletion(note.id, note.device_id) is not None:
                logger.info("Stale push of deleted note %s, remote delete re-queued", note.id)
            return False
        except SyncError as e:
            logger.warning("Push of %s failed, will retry later: %s", note.id, e)
            return False

    def _delete_remote(self, pending: PendingDeletion) -> None:
        self.tree.delete_leaf(self.resolver.resolve_notes_path().child(pending.note_id))
        if self.store.clear_pending_deletion(pending.note_id, expected_timestamp=pending.deletion_timestamp):
            logger.info("Note deleted remotely: %s", pending.note_id)
            return
        # re-created while the remote delete was in flight; republish it
        if self.store.get_by_id(pending.note_id) is not None:
            self.store.mark_unsynced(pending.note_id)

    def _drain(self, pending: Sequence[PendingDeletion]) -> Tuple[int, List[str]]:
        deleted, failed = 0, []
        for item in pending:
            try:
                self._delete_remote(item)
                deleted += 1
            except SyncError as e:
                logger.warning("Remote delete of %s failed, will retry later: %s", item.note_id, e)
                failed.append(item.note_id)
        return deleted, failed

    def _decode(self, record: RemoteNoteRecord) -> Optional[Note]:
        note = decode_record(record, [record.mymobiledeviceid] if record.mymobiledeviceid else [])
        if note is None:
            candidates = codec.build_candidates(
                [record.mymobiledeviceid, self.resolver.resolve_account_id(), self.resolver.device_id()]
            )
            note = decode_record(record, candidates)
        if note is not None and not note.device_id:
            note = note.with_device(self.resolver.device_id())
        return note
