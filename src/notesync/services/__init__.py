"""Service layer for NoteSync."""

from notesync.services.account_service import (
    AccountResolver,
    DeviceRegistry,
    PassphraseService,
    RemoteAuthenticator,
)
from notesync.services.auto_sync_service import AutoSyncService
from notesync.services.merge_service import AccountMergeService, MergeReport, SyncStats, UploadReport
from notesync.services.sync_engine import PushReport, ReconcileReport, SyncEngine, SyncReport

__all__ = [
    "AccountMergeService",
    "AccountResolver",
    "AutoSyncService",
    "DeviceRegistry",
    "MergeReport",
    "PassphraseService",
    "PushReport",
    "ReconcileReport",
    "RemoteAuthenticator",
    "SyncEngine",
    "SyncReport",
    "SyncStats",
    "UploadReport",
]
