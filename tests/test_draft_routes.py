import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from inkwell import create_app
from inkwell.config import TestConfig
from inkwell.extensions import db
from inkwell.models import User
from inkwell.services.draft_store import MemoryStorage


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


def _make_user(email):
    user = User(email=email, display_name=email.split("@")[0])
    user.set_password("password123")
    db.session.add(user)
    db.session.commit()
    return user


def _logged_in_client(app, user):
    client = app.test_client()
    client.post(
        "/auth/login",
        data={"email": user.email, "password": "password123"},
        follow_redirects=True,
    )
    return client


@pytest.fixture
def user(app_instance):
    return _make_user("writer@example.com")


@pytest.fixture
def client(app_instance, user):
    return _logged_in_client(app_instance, user)


def test_drafts_require_login(app_instance):
    response = app_instance.test_client().get("/api/drafts")

    assert response.status_code == 401


def test_save_and_read_draft(client, user):
    response = client.put(
        "/api/drafts/chapter-1",
        json={"content": {"text": "Half a scene."}, "meta": {"storyId": 3}},
    )

    assert response.status_code == 200
    draft = response.get_json()["draft"]
    assert draft["draftId"] == "chapter-1"
    assert draft["syncStatus"] == "pending"
    assert draft["version"].startswith("local-")
    assert draft["meta"] == {"type": "draft", "storyId": 3, "ownerId": user.id}

    fetched = client.get("/api/drafts/chapter-1").get_json()["draft"]
    assert fetched["data"] == {"text": "Half a scene."}

    listed = client.get("/api/drafts").get_json()["drafts"]
    assert [item["draftId"] for item in listed] == ["chapter-1"]


def test_saving_again_replaces_the_draft(client):
    first = client.put("/api/drafts/notes", json={"content": "one"}).get_json()["draft"]
    second = client.put("/api/drafts/notes", json={"content": "two"}).get_json()["draft"]

    assert second["data"] == "two"
    assert second["version"] != first["version"]
    assert len(client.get("/api/drafts").get_json()["drafts"]) == 1


def test_sync_status_moves_drafts_between_lists(client):
    client.put("/api/drafts/a", json={"content": "first"})
    client.put("/api/drafts/b", json={"content": "second"})

    synced = client.post("/api/drafts/a/sync-status", json={"status": "synced"})
    assert synced.get_json()["draft"]["syncStatus"] == "synced"
    client.post("/api/drafts/b/sync-status", json={"status": "conflict"})

    payload = client.get("/api/drafts/pending").get_json()
    assert payload["pending"] == []
    assert [item["draftId"] for item in payload["conflicts"]] == ["b"]


def test_invalid_sync_status_and_missing_draft(client):
    client.put("/api/drafts/a", json={"content": "first"})

    assert client.post("/api/drafts/a/sync-status", json={"status": "merged"}).status_code == 400
    assert client.post("/api/drafts/missing/sync-status", json={"status": "synced"}).status_code == 404
    assert client.get("/api/drafts/missing").status_code == 404


def test_draft_requests_are_validated(client):
    assert client.put("/api/drafts/scene", json={}).status_code == 400
    assert client.put("/api/drafts/bad.id", json={"content": "x"}).status_code == 400


def test_delete_draft(client):
    client.put("/api/drafts/gone", json={"content": "soon deleted"})

    response = client.delete("/api/drafts/gone")

    assert response.status_code == 200
    assert client.get("/api/drafts/gone").status_code == 404
    assert client.delete("/api/drafts/gone").status_code == 404


def test_storage_status(client):
    payload = client.get("/api/drafts/storage").get_json()

    assert payload["available"] is True
    assert payload["remaining"] > 0


def test_full_storage_returns_507(app_instance, client):
    app_instance.extensions["draft_store"].storage = MemoryStorage(quota_bytes=10)

    response = client.put("/api/drafts/big", json={"content": "x" * 100})

    assert response.status_code == 507
    assert response.get_json()["error"] == "Storage unavailable"


def test_drafts_are_private_to_their_owner(app_instance, client):
    client.put("/api/drafts/secret", json={"content": "My plot twist"})
    other_user = _make_user("other@example.com")

    # Flask-Login keeps the current user on the app context, so the second
    # writer needs a context of their own.
    with app_instance.app_context():
        other = _logged_in_client(app_instance, other_user)
        assert other.get("/api/drafts/secret").status_code == 404
        assert other.get("/api/drafts").get_json()["drafts"] == []
        assert other.get("/api/drafts/pending").get_json()["pending"] == []
        assert other.post("/api/drafts/secret/sync-status", json={"status": "synced"}).status_code == 404

    assert client.get("/api/drafts/secret").status_code == 200


def test_draft_id_with_trailing_newline_is_rejected(client):
    response = client.put("/api/drafts/abc%0A", json={"content": "x"})

    assert response.status_code == 400
    assert client.get("/api/drafts").get_json()["drafts"] == []
