"""Joining another device's account: pull, decode, re-key and republish its notes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from pydantic import ValidationError

from notesync.database import LocalStore, RemoteTree
from notesync.errors import InvalidToken, LocalStorageError, Result, SyncError
from notesync.models import is_valid_segment, now_millis
from notesync.schema import AccountMetadata, RemoteNoteRecord, RemoteReminderRecord, iter_note_records
from notesync.security import codec
from notesync.services.account_service import NOTES_NODE, REMINDERS_NODE, AccountResolver, Authenticator
from notesync.services.sync_engine import decode_record, encode_note

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeReport:
    imported: int
    source: str
    target: str
    skipped: List[str] = field(default_factory=list)
    reminders: int = 0
    skipped_deleted: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class UploadReport:
    notes: int
    reminders: int


@dataclass(frozen=True)
class SyncStats:
    total_notes: int = 0
    last_sync_at: int = 0
    created_at: int = 0


def merge_candidates(
    record: RemoteNoteRecord, source: str, target: str, fallback_keys: Sequence[str] = ()
) -> List[str]:
    """Keys worth trying for a foreign note, most likely first."""
    return codec.build_candidates([target, record.mymobiledeviceid, source, *fallback_keys])


class AccountMergeService:
    """One-shot import of a foreign account into this device's local store.

    Notes that no candidate key can decode are skipped and reported, never
    imported as ciphertext. Re-running a merge overwrites the same ids.
    """

    def __init__(self, store: LocalStore, tree: RemoteTree, authenticator: Authenticator) -> None:
        self.store = store
        self.tree = tree
        self.authenticator = authenticator

    def join_account(self, source: str, target: str, fallback_keys: Iterable[str] = ()) -> Result[MergeReport]:
        source, target = source.strip(), target.strip()
        for token in (source, target):
            if not is_valid_segment(token):
                return Result.failure(InvalidToken(token))
        fallback_keys = [k for k in fallback_keys if k]

        try:
            self.authenticator.ensure_authenticated()
            source_path = AccountResolver.account_path(source)
            notes_tree = self.tree.read_subtree(source_path.child(NOTES_NODE))
            reminders_tree = self.tree.read_subtree(source_path.child(REMINDERS_NODE))
        except SyncError as e:
            logger.error("Failed to read account %s: %s", codec.key_preview(source), e)
            return Result.failure(e)

        imported, skipped, tombstoned = 0, [], []
        try:
            for record in iter_note_records(notes_tree if isinstance(notes_tree, dict) else None):
                note = decode_record(record, merge_candidates(record, source, target, fallback_keys))
                if note is None:
                    logger.warning("Skipping note %s: no candidate key decodes it", record.id)
                    skipped.append(record.id)
                    continue
                # a locally deleted note stays deleted
                if not self.store.upsert_remote(note.with_device(target), synced=False):
                    logger.info("Skipping note %s: deleted locally", record.id)
                    tombstoned.append(record.id)
                    continue
                imported += 1

            reminders = self._import_reminders(reminders_tree)
        except LocalStorageError as e:
            logger.error("Merge aborted by local storage error: %s", e)
            return Result.failure(e)

        uploaded = self.upload_local_data(target)
        if not uploaded.ok:
            return Result.failure(uploaded.error)

        report = MergeReport(
            imported=imported,
            source=source,
            target=target,
            skipped=skipped,
            reminders=reminders,
            skipped_deleted=tombstoned,
        )
        logger.info(
            "Merge completed: %d imported, %d undecodable, %d deleted locally",
            imported, len(skipped), len(tombstoned),
        )
        return Result.success(report)

    def upload_local_data(self, token: str) -> Result[UploadReport]:
        """Publish every local note and reminder under ``users/{token}``."""
        if not is_valid_segment(token):
            return Result.failure(InvalidToken(token))
        account = AccountResolver.account_path(token)
        try:
            self.authenticator.ensure_authenticated()
            notes = self.store.list_all()
            reminders = self.store.list_reminders()

            for note in notes:
                owner = note.device_id if is_valid_segment(note.device_id) else token
                self.tree.write_leaf(
                    account.child(NOTES_NODE, owner, note.id),
                    encode_note(note).model_dump(),
                )
            for reminder in reminders:
                self.tree.write_leaf(
                    account.child(REMINDERS_NODE, reminder.id),
                    RemoteReminderRecord.from_reminder(reminder).model_dump(),
                )
            self.tree.update_children(account, {"lastSyncAt": now_millis(), "totalNotes": len(notes)})
        except SyncError as e:
            logger.error("Failed to upload local data: %s", e)
            return Result.failure(e)

        logger.info("Uploaded %d notes and %d reminders", len(notes), len(reminders))
        return Result.success(UploadReport(notes=len(notes), reminders=len(reminders)))

    def get_sync_stats(self, token: str) -> Result[SyncStats]:
        if not is_valid_segment(token):
            return Result.failure(InvalidToken(token))
        account = AccountResolver.account_path(token)
        try:
            self.authenticator.ensure_authenticated()
            value = {
                name: self.tree.read_subtree(account.child(name))
                for name in ("totalNotes", "lastSyncAt", "createdAt")
            }
        except SyncError as e:
            logger.error("Failed to read sync stats: %s", e)
            return Result.failure(e)

        try:
            meta = AccountMetadata.model_validate({k: v for k, v in value.items() if v is not None})
        except ValidationError as e:
            logger.warning("Malformed account metadata: %s", e)
            return Result.success(SyncStats())
        return Result.success(
            SyncStats(total_notes=meta.totalNotes, last_sync_at=meta.lastSyncAt, created_at=meta.createdAt)
        )

    def _import_reminders(self, tree: Optional[object]) -> int:
        if not isinstance(tree, dict):
            return 0
        deleted = self.store.pending_deletion_ids()
        count = 0
        for key, value in tree.items():
            if not isinstance(value, dict):
                continue
            try:
                reminder = RemoteReminderRecord.model_validate({"id": key, **value}).to_reminder()
            except ValidationError as e:
                logger.warning("Ignoring malformed reminder %s: %s", key, e)
                continue
            if reminder.note_id in deleted:
                continue
            self.store.save_reminder(reminder)
            count += 1
        return count
