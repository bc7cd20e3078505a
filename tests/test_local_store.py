import sqlite3

import pytest

from notesync.database import LocalStore
from notesync.errors import LocalStorageError, NotFound
from notesync.models import Note, Reminder
from notesync.security import codec


def make_note(note_id="n_1", title="Title", description="Body", device_id="d_A", timestamp=1000):
    return Note(id=note_id, title=title, description=description, device_id=device_id, timestamp=timestamp)


def test_save_and_read_back(store):
    note = make_note()
    store.save(note)
    assert store.get_by_id("n_1") == note
    assert store.is_synced("n_1") is False
    assert store.list_pending_sync() == [note]


def test_missing_note(store):
    assert store.get_by_id("nope") is None
    assert store.is_synced("nope") is None


def test_list_all_newest_first_and_pending_oldest_first(store):
    store.save(make_note("n_old", timestamp=1))
    store.save(make_note("n_new", timestamp=2))
    assert [n.id for n in store.list_all()] == ["n_new", "n_old"]
    assert [n.id for n in store.list_pending_sync()] == ["n_old", "n_new"]


def test_mark_synced(store):
    store.save(make_note())
    assert store.mark_synced("n_1")
    assert store.is_synced("n_1") is True
    assert store.list_pending_sync() == []
    assert not store.mark_synced("missing")


def test_mark_synced_ignores_a_newer_revision(store):
    store.save(make_note(timestamp=1000))
    store.save(make_note(title="edited", timestamp=2000))
    assert not store.mark_synced("n_1", expected_timestamp=1000)
    assert store.is_synced("n_1") is False
    assert store.mark_synced("n_1", expected_timestamp=2000)


def test_delete_records_pending_deletion(store):
    store.save(make_note())
    pending = store.delete("n_1")
    assert pending.note_id == "n_1"
    assert pending.device_id == "d_A"
    assert store.get_by_id("n_1") is None
    assert [p.note_id for p in store.list_pending_deletions()] == ["n_1"]
    assert store.pending_deletion_ids() == {"n_1"}


def test_delete_missing_note_raises_not_found(store):
    with pytest.raises(NotFound):
        store.delete("ghost")
    assert store.list_pending_deletions() == []


def test_recreate_after_delete_drops_the_tombstone(store):
    store.save(make_note())
    store.delete("n_1")
    store.save(make_note(title="again"))
    assert store.get_by_id("n_1").title == "again"
    assert store.list_pending_deletions() == []


def test_upsert_remote_skips_tombstoned_ids(store):
    store.save(make_note())
    store.delete("n_1")
    assert not store.upsert_remote(make_note(title="from remote"))
    assert store.get_by_id("n_1") is None
    assert store.pending_deletion_ids() == {"n_1"}


def test_upsert_remote_marks_synced(store):
    assert store.upsert_remote(make_note())
    assert store.is_synced("n_1") is True


def test_clear_pending_deletion(store):
    store.save(make_note())
    store.delete("n_1")
    assert store.clear_pending_deletion("n_1")
    assert not store.clear_pending_deletion("n_1")


def test_has_pending_sync(store):
    assert not store.has_pending_sync()
    store.save(make_note(), synced=True)
    assert not store.has_pending_sync()
    store.delete("n_1")
    assert store.has_pending_sync()


def test_state_survives_restart(tmp_path):
    path = tmp_path / "restart.db"
    with LocalStore(path) as first:
        first.save(make_note("keep"))
        first.save(make_note("gone"))
        first.delete("gone")
    with LocalStore(path) as second:
        assert second.get_by_id("keep").title == "Title"
        assert second.pending_deletion_ids() == {"gone"}


def test_content_is_obscured_at_rest(tmp_path):
    path = tmp_path / "sealed.db"
    with LocalStore(path) as local:
        local.save(make_note(title="secret title"))
    raw = sqlite3.connect(str(path)).execute("SELECT title FROM notes").fetchone()[0]
    assert raw != "secret title"
    assert codec.decode(raw, "d_A") == "secret title"


def test_plaintext_storage_when_disabled(tmp_path):
    path = tmp_path / "plain.db"
    with LocalStore(path, encrypt_at_rest=False) as local:
        local.save(make_note(title="visible"))
    raw = sqlite3.connect(str(path)).execute("SELECT title FROM notes").fetchone()[0]
    assert raw == "visible"


def test_reassign_device_id(store):
    store.save(make_note("n_1"), synced=True)
    store.save(make_note("n_2"), synced=True)
    assert store.reassign_device_id("d_B") == 2
    assert {n.device_id for n in store.list_all()} == {"d_B"}
    assert {n.title for n in store.list_all()} == {"Title"}
    assert len(store.list_pending_sync()) == 2


def test_delete_removes_reminders_of_the_note(store):
    store.save(make_note())
    store.save_reminder(Reminder(note_id="n_1", note_title="Title", note_description="Body", reminder_time=5))
    store.save_reminder(Reminder(note_id="other", note_title="x", note_description="y", reminder_time=1))
    store.delete("n_1")
    assert [r.note_id for r in store.list_reminders()] == ["other"]


def test_preferences(store):
    assert store.get_preference("k") is None
    store.set_preference("k", "v1")
    store.set_preference("k", "v2")
    assert store.get_preference("k") == "v2"
    store.delete_preference("k")
    assert store.get_preference("k") is None


def test_clear_all_keeps_preferences(store):
    store.set_preference("device_id", "d_X")
    store.save(make_note())
    store.delete("n_1")
    store.clear_all()
    assert store.list_all() == []
    assert store.list_pending_deletions() == []
    assert store.get_preference("device_id") == "d_X"


def test_closed_store_raises_local_storage_error(tmp_path):
    local = LocalStore(tmp_path / "closed.db")
    local.close()
    with pytest.raises(LocalStorageError):
        local.list_all()


def test_reassign_device_id_never_revives_a_deleted_row(store, monkeypatch):
    store.save(make_note("n_1"), synced=True)
    store.save(make_note("n_2"), synced=True)
    list_all = store.list_all

    def delete_then_list():
        store.delete("n_2")
        return list_all()

    # a delete landing between a read and the rewrite must not be undone
    monkeypatch.setattr(store, "list_all", delete_then_list)
    store.reassign_device_id("d_B")
    monkeypatch.undo()

    live = {n.id for n in store.list_all()}
    assert live.isdisjoint(store.pending_deletion_ids())
    assert {n.device_id for n in store.list_all()} == {"d_B"}


def test_reassign_device_id_keeps_timestamps_and_tombstones(store):
    store.save(make_note("n_1", timestamp=7), synced=True)
    store.save(make_note("n_2"))
    store.delete("n_2")
    assert store.reassign_device_id("d_B") == 1
    assert store.get_by_id("n_1") == make_note("n_1", device_id="d_B", timestamp=7)
    assert store.get_by_id("n_2") is None
    assert [p.note_id for p in store.list_pending_deletions()] == ["n_2"]


def test_upsert_remote_unsynced_for_merges(store):
    assert store.upsert_remote(make_note(), synced=False) is True
    assert store.is_synced("n_1") is False
    store.delete("n_1")
    assert store.upsert_remote(make_note(), synced=False) is False
    assert store.get_by_id("n_1") is None


def test_mark_unsynced(store):
    store.save(make_note(), synced=True)
    assert store.mark_unsynced("n_1") is True
    assert store.is_synced("n_1") is False
    assert store.mark_unsynced("missing") is False


def test_requeue_deletion_only_for_absent_notes(store):
    store.save(make_note())
    assert store.requeue_deletion("n_1", "d_A") is None
    assert store.list_pending_deletions() == []

    store.delete("n_1")
    first = store.list_pending_deletions()[0]
    again = store.requeue_deletion("n_1", "d_A")
    assert again.deletion_timestamp > first.deletion_timestamp
    assert store.list_pending_deletions() == [again]


def test_clear_pending_deletion_with_expected_timestamp(store):
    store.save(make_note())
    first = store.delete("n_1")
    again = store.requeue_deletion("n_1", "d_A")
    assert store.clear_pending_deletion("n_1", expected_timestamp=first.deletion_timestamp) is False
    assert store.pending_deletion_ids() == {"n_1"}
    assert store.clear_pending_deletion("n_1", expected_timestamp=again.deletion_timestamp) is True
    assert store.pending_deletion_ids() == set()
