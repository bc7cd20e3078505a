import pytest
from fastapi.testclient import TestClient

from notesync.api import create_app
from notesync.errors import RemotePermissionError


@pytest.fixture
def client(app_context):
    return TestClient(create_app(app_context))


def test_root(client):
    assert client.get("/").json() == "running"


def test_note_crud(client, app_context):
    created = client.post("/notes", json={"title": "A", "description": "B"})
    assert created.status_code == 201
    note_id = created.json()["id"]

    assert client.get(f"/notes/{note_id}").json()["title"] == "A"
    assert [n["id"] for n in client.get("/notes").json()] == [note_id]

    updated = client.put(f"/notes/{note_id}", json={"title": "A2", "description": "B2"})
    assert updated.json()["title"] == "A2"

    deleted = client.delete(f"/notes/{note_id}")
    assert deleted.json()["ok"] is True
    assert client.get(f"/notes/{note_id}").status_code == 404


def test_invalid_body_is_422(client):
    assert client.post("/notes", json={"title": 5}).status_code == 422
    assert client.post("/notes", content=b"not json", headers={"content-type": "application/json"}).status_code == 422
    assert client.post("/account/passphrase", json={}).status_code == 422


def test_delete_missing_is_404(client):
    assert client.delete("/notes/n_missing").status_code == 404


def test_sync_reports_message(client, network):
    network.online = False
    client.post("/notes", json={"title": "A", "description": "B"})
    network.online = True

    response = client.post("/sync")
    assert response.status_code == 200
    assert response.json()["message"] == "Synced 1 note"


def test_sync_offline_is_503(client, network):
    network.online = False
    client.post("/notes", json={"title": "A", "description": "B"})
    assert client.post("/sync").status_code == 503
    assert client.post("/sync/pull").status_code == 503


def test_permission_error_is_403(client, tree):
    tree.fail("read", RemotePermissionError("denied"))
    response = client.post("/sync/pull")
    assert response.status_code == 403
    assert "Permission denied" in response.json()["error"]


def test_account_endpoints(client, app_context):
    assert client.post("/account/passphrase", json={"passphrase": "calm-river-042"}).json()["ok"] is True
    account = client.get("/account").json()
    assert account["accountId"] == "calm-river-042"
    assert account["hasPassphrase"] is True
    assert account["deepLink"] == "notesync://sync?passphrase=calm-river-042"

    client.post("/notes", json={"title": "A", "description": "B"})
    joined = client.post("/account/join", json={"source": "calm-river-042"})
    assert joined.status_code == 200
    assert joined.json()["imported"] == 1

    stats = client.get("/account/stats").json()
    assert stats["total_notes"] == 1


def test_invalid_passphrase_is_422(client):
    assert client.post("/account/passphrase", json={"passphrase": "a/b"}).status_code == 422


def test_join_unknown_account_is_404(client, tree):
    response = client.post("/account/join", json={"source": "no-such-acct-000"})
    assert response.status_code == 404
    assert "No account found" in response.json()["error"]
    assert tree.calls["write"] == 0


def test_verify_passphrase(client):
    assert client.post("/account/verify", json={"passphrase": "calm-river-042"}).json() == {"exists": False}
    client.post("/account/passphrase", json={"passphrase": "calm-river-042"})
    assert client.post("/account/verify", json={"passphrase": "calm-river-042"}).json() == {"exists": True}


def test_reset_clears_local_notes(client, app_context, network):
    network.online = False
    client.post("/notes", json={"title": "A", "description": "B"})
    device_id = app_context.resolver.device_id()

    assert client.post("/reset").json() == {"ok": True}
    assert client.get("/notes").json() == []
    assert app_context.resolver.device_id() == device_id
