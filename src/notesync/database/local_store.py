import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Set, Union

from notesync.errors import LocalStorageError, NotFound
from notesync.models import Note, PendingDeletion, Reminder, now_millis
from notesync.security import codec

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    device_id TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    synced INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_notes_synced ON notes (synced, timestamp);

CREATE TABLE IF NOT EXISTS pending_deletions (
    note_id TEXT PRIMARY KEY,
    device_id TEXT NOT NULL,
    deletion_timestamp INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS reminders (
    id TEXT PRIMARY KEY,
    note_id TEXT NOT NULL,
    note_title TEXT NOT NULL,
    note_description TEXT NOT NULL,
    reminder_time INTEGER NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reminders_note ON reminders (note_id);
CREATE INDEX IF NOT EXISTS idx_reminders_time ON reminders (reminder_time);

CREATE TABLE IF NOT EXISTS preferences (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

NOTE_COLUMNS = "id, title, description, device_id, timestamp"


class LocalStore:
    """Durable on-device store for notes, pending deletions, reminders and preferences.

    One SQLite connection is shared by every component and guarded by a
    re-entrant lock. Every write runs inside ``BEGIN IMMEDIATE`` so a local
    delete and its tombstone insert land together or not at all.
    """

    def __init__(self, path: Union[str, Path] = MEMORY, encrypt_at_rest: bool = True) -> None:
        self.path = str(path)
        self.encrypt_at_rest = encrypt_at_rest
        self._lock = threading.RLock()
        try:
            if self.path != MEMORY:
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
            if self.path != MEMORY:
                self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise LocalStorageError(f"Cannot open local database {self.path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            try:
                self.conn.close()
            except sqlite3.Error:
                logger.warning("Error while closing local database", exc_info=True)

    def __enter__(self) -> "LocalStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                yield cursor
                cursor.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback()
                raise LocalStorageError(str(e)) from e
            except BaseException:
                self._rollback()
                raise
            finally:
                cursor.close()

    def _rollback(self) -> None:
        try:
            self.conn.execute("ROLLBACK")
        except sqlite3.Error:
            pass

    def _fetch(self, sql: str, params: tuple = ()) -> List[tuple]:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise LocalStorageError(str(e)) from e

    def _seal(self, text: str, device_id: str) -> str:
        return codec.encode(text, device_id) if self.encrypt_at_rest else text

    def _open(self, text: str, device_id: str, note_id: str) -> str:
        if not self.encrypt_at_rest or not codec.looks_encoded(text):
            return text
        plaintext = codec.decode(text, device_id)
        if plaintext is None:
            logger.warning("Stored content of note %s does not decode under its device id", note_id)
            return text
        return plaintext

    def _row_to_note(self, row: tuple) -> Note:
        note_id, title, description, device_id, timestamp = row
        return Note(
            id=note_id,
            title=self._open(title, device_id, note_id),
            description=self._open(description, device_id, note_id),
            device_id=device_id,
            timestamp=timestamp,
        )

    @staticmethod
    def _insert_note(cursor: sqlite3.Cursor, note: Note, title: str, description: str, synced: bool) -> None:
        cursor.execute(
            "INSERT OR REPLACE INTO notes (id, title, description, device_id, timestamp, synced) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (note.id, title, description, note.device_id, note.timestamp, int(synced)),
        )

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------
    def save(self, note: Note, synced: bool = False) -> None:
        """Insert or replace ``note``.

        Saving an id that has a pending deletion re-creates the note: the
        tombstone is dropped in the same transaction.
        """
        title = self._seal(note.title, note.device_id)
        description = self._seal(note.description, note.device_id)
        with self._transaction() as cur:
            self._insert_note(cur, note, title, description, synced)
            cur.execute("DELETE FROM pending_deletions WHERE note_id = ?", (note.id,))
            if cur.rowcount:
                logger.info("Note %s re-created, pending deletion dropped", note.id)
        logger.debug("Note saved locally: %s (synced: %s)", note.id, synced)

    def upsert_remote(self, note: Note, synced: bool = True) -> bool:
        """Store a note pulled from a remote, unless it is tombstoned.

        The tombstone check and the write share one transaction, so a local
        delete racing a pull or a merge is never undone by it. Merged notes
        are stored with ``synced=False`` so they get republished.
        """
        title = self._seal(note.title, note.device_id)
        description = self._seal(note.description, note.device_id)
        with self._transaction() as cur:
            cur.execute("SELECT 1 FROM pending_deletions WHERE note_id = ?", (note.id,))
            if cur.fetchone() is not None:
                return False
            self._insert_note(cur, note, title, description, synced)
        return True

    def delete(self, note_id: str) -> PendingDeletion:
        """Remove the live row and record a pending deletion, atomically."""
        with self._transaction() as cur:
            cur.execute("SELECT device_id FROM notes WHERE id = ?", (note_id,))
            row = cur.fetchone()
            if row is None:
                raise NotFound(note_id)
            pending = PendingDeletion(note_id=note_id, device_id=row[0], deletion_timestamp=now_millis())
            cur.execute("DELETE FROM notes WHERE id = ?", (note_id,))
            cur.execute("DELETE FROM reminders WHERE note_id = ?", (note_id,))
            cur.execute(
                "INSERT OR REPLACE INTO pending_deletions (note_id, device_id, deletion_timestamp) "
                "VALUES (?, ?, ?)",
                (pending.note_id, pending.device_id, pending.deletion_timestamp),
            )
        logger.info("Note deleted locally and marked for remote deletion: %s", note_id)
        return pending

    def get_by_id(self, note_id: str) -> Optional[Note]:
        rows = self._fetch(f"SELECT {NOTE_COLUMNS} FROM notes WHERE id = ?", (note_id,))
        return self._row_to_note(rows[0]) if rows else None

    def is_synced(self, note_id: str) -> Optional[bool]:
        rows = self._fetch("SELECT synced FROM notes WHERE id = ?", (note_id,))
        return bool(rows[0][0]) if rows else None

    def list_all(self) -> List[Note]:
        rows = self._fetch(f"SELECT {NOTE_COLUMNS} FROM notes ORDER BY timestamp DESC, id")
        return [self._row_to_note(r) for r in rows]

    def list_pending_sync(self) -> List[Note]:
        rows = self._fetch(f"SELECT {NOTE_COLUMNS} FROM notes WHERE synced = 0 ORDER BY timestamp ASC, id")
        return [self._row_to_note(r) for r in rows]

    def mark_synced(self, note_id: str, expected_timestamp: Optional[int] = None) -> bool:
        """Flip ``synced`` for ``note_id``.

        With ``expected_timestamp`` only that revision is marked, so a newer
        local write that raced the push stays pending.
        """
        sql = "UPDATE notes SET synced = 1 WHERE id = ?"
        params: tuple = (note_id,)
        if expected_timestamp is not None:
            sql += " AND timestamp = ?"
            params = (note_id, expected_timestamp)
        with self._transaction() as cur:
            cur.execute(sql, params)
            updated = cur.rowcount > 0
        if not updated:
            logger.warning("Note not marked as synced (missing or changed): %s", note_id)
        return updated

    def mark_unsynced(self, note_id: str) -> bool:
        with self._transaction() as cur:
            cur.execute("UPDATE notes SET synced = 0 WHERE id = ?", (note_id,))
            return cur.rowcount > 0

    def reassign_device_id(self, new_device_id: str) -> int:
        """Re-tag every note with ``new_device_id`` and mark it pending sync."""
        with self._transaction() as cur:
            cur.execute(f"SELECT {NOTE_COLUMNS} FROM notes")
            notes = [self._row_to_note(r) for r in cur.fetchall()]
            for note in notes:
                cur.execute(
                    "UPDATE notes SET title = ?, description = ?, device_id = ?, synced = 0 WHERE id = ?",
                    (
                        self._seal(note.title, new_device_id),
                        self._seal(note.description, new_device_id),
                        new_device_id,
                        note.id,
                    ),
                )
        logger.info("Reassigned %d notes to device %s", len(notes), new_device_id)
        return len(notes)

    # ------------------------------------------------------------------
    # Pending deletions
    # ------------------------------------------------------------------
    def list_pending_deletions(self) -> List[PendingDeletion]:
        rows = self._fetch(
            "SELECT note_id, device_id, deletion_timestamp FROM pending_deletions "
            "ORDER BY deletion_timestamp ASC, note_id"
        )
        return [PendingDeletion(note_id=r[0], device_id=r[1], deletion_timestamp=r[2]) for r in rows]

    def pending_deletion_ids(self) -> Set[str]:
        return {r[0] for r in self._fetch("SELECT note_id FROM pending_deletions")}

    def clear_pending_deletion(self, note_id: str, expected_timestamp: Optional[int] = None) -> bool:
        """Drop the tombstone of ``note_id``.

        With ``expected_timestamp`` only that tombstone is dropped; one that
        was re-queued meanwhile stays for the next drain.
        """
        sql = "DELETE FROM pending_deletions WHERE note_id = ?"
        params: tuple = (note_id,)
        if expected_timestamp is not None:
            sql += " AND deletion_timestamp = ?"
            params = (note_id, expected_timestamp)
        with self._transaction() as cur:
            cur.execute(sql, params)
            removed = cur.rowcount > 0
        if removed:
            logger.debug("Pending deletion removed for synced note: %s", note_id)
        else:
            logger.warning("No pending deletion found for note: %s", note_id)
        return removed

    def requeue_deletion(self, note_id: str, device_id: str) -> Optional[PendingDeletion]:
        """Record a fresh tombstone for ``note_id`` unless the note is live again.

        Used when a stale push re-created the remote leaf of a note that was
        already deleted. The new tombstone is always newer than any previous
        one for the same id.
        """
        with self._transaction() as cur:
            cur.execute("SELECT 1 FROM notes WHERE id = ?", (note_id,))
            if cur.fetchone() is not None:
                return None
            cur.execute("SELECT deletion_timestamp FROM pending_deletions WHERE note_id = ?", (note_id,))
            row = cur.fetchone()
            stamp = now_millis() if row is None else max(now_millis(), row[0] + 1)
            pending = PendingDeletion(note_id=note_id, device_id=device_id, deletion_timestamp=stamp)
            cur.execute(
                "INSERT OR REPLACE INTO pending_deletions (note_id, device_id, deletion_timestamp) "
                "VALUES (?, ?, ?)",
                (pending.note_id, pending.device_id, pending.deletion_timestamp),
            )
        logger.info("Pending deletion re-queued for note: %s", note_id)
        return pending

    def has_pending_sync(self) -> bool:
        rows = self._fetch(
            "SELECT EXISTS(SELECT 1 FROM notes WHERE synced = 0) "
            "OR EXISTS(SELECT 1 FROM pending_deletions)"
        )
        return bool(rows[0][0])

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------
    def save_reminder(self, reminder: Reminder) -> None:
        with self._transaction() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO reminders "
                "(id, note_id, note_title, note_description, reminder_time, is_active, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    reminder.id,
                    reminder.note_id,
                    reminder.note_title,
                    reminder.note_description,
                    reminder.reminder_time,
                    int(reminder.is_active),
                    reminder.created_at,
                ),
            )

    def list_reminders(self) -> List[Reminder]:
        rows = self._fetch(
            "SELECT id, note_id, note_title, note_description, reminder_time, is_active, created_at "
            "FROM reminders ORDER BY reminder_time ASC, id"
        )
        return [
            Reminder(
                id=r[0],
                note_id=r[1],
                note_title=r[2],
                note_description=r[3],
                reminder_time=r[4],
                is_active=bool(r[5]),
                created_at=r[6],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------
    def get_preference(self, key: str) -> Optional[str]:
        rows = self._fetch("SELECT value FROM preferences WHERE key = ?", (key,))
        return rows[0][0] if rows else None

    def set_preference(self, key: str, value: str) -> None:
        with self._transaction() as cur:
            cur.execute("INSERT OR REPLACE INTO preferences (key, value) VALUES (?, ?)", (key, value))

    def delete_preference(self, key: str) -> None:
        with self._transaction() as cur:
            cur.execute("DELETE FROM preferences WHERE key = ?", (key,))

    def clear_all(self) -> None:
        """Drop notes, pending deletions and reminders. Preferences survive."""
        with self._transaction() as cur:
            cur.execute("DELETE FROM notes")
            cur.execute("DELETE FROM pending_deletions")
            cur.execute("DELETE FROM reminders")
        logger.info("Local note data cleared")
