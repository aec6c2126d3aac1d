import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from inkwell import create_app
from inkwell.config import TestConfig
from inkwell.extensions import db
from inkwell.models import Chapter, Character, Story, StoryVersion, User


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


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


def _make_user(email, name):
    user = User(email=email, display_name=name)
    user.set_password("password123")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def user(app_instance):
    return _make_user("writer@example.com", "Writer")


@pytest.fixture
def story(app_instance, user):
    story = Story(title="The Salt Road", content="The caravan left at dawn.", owner=user)
    db.session.add(story)
    db.session.commit()
    return story


def _login(client, user):
    client.post(
        "/auth/login",
        data={"email": user.email, "password": "password123"},
        follow_redirects=True,
    )


def test_anonymous_api_requests_get_json_401(client):
    response = client.get("/api/stories")

    assert response.status_code == 401
    assert response.get_json()["error"] == "Unauthorized"


def test_anonymous_page_requests_redirect_to_login(client):
    response = client.get("/dashboard")

    assert response.status_code == 302
    assert "/auth/login" in response.headers["Location"]


def test_create_and_list_stories(client, user):
    _login(client, user)

    response = client.post(
        "/api/stories",
        json={"title": "  Night Train ", "content": ["First paragraph.", "", "Second paragraph."]},
    )

    assert response.status_code == 201
    created = response.get_json()["story"]
    assert created["title"] == "Night Train"
    assert created["content"] == ["First paragraph.", "Second paragraph."]
    assert created["storyStatus"] == "in_progress"

    listed = client.get("/api/stories").get_json()["stories"]
    assert [item["title"] for item in listed] == ["Night Train"]


def test_create_story_requires_title(client, user):
    _login(client, user)

    response = client.post("/api/stories", json={"content": "No title here."})

    assert response.status_code == 400
    assert response.get_json()["error"] == "Invalid request"


def test_update_story_fields_and_status(client, user, story):
    _login(client, user)

    response = client.put(
        f"/api/stories/{story.id}",
        json={"content": "New opening.", "summary": "A desert crossing.", "storyStatus": "completed"},
    )
    assert response.status_code == 200
    payload = response.get_json()["story"]
    assert payload["content"] == ["New opening."]
    assert payload["summary"] == "A desert crossing."
    assert payload["storyStatus"] == "completed"

    bad = client.put(f"/api/stories/{story.id}", json={"storyStatus": "abandoned"})
    assert bad.status_code == 400


def test_other_users_story_is_forbidden(client, story):
    intruder = _make_user("intruder@example.com", "Intruder")
    _login(client, intruder)

    response = client.get(f"/api/stories/{story.id}")

    assert response.status_code == 403
    assert response.get_json()["error"] == "Forbidden"
    assert client.delete(f"/api/stories/{story.id}").status_code == 403
    assert db.session.get(Story, story.id) is not None


def test_missing_story_is_json_404(client, user):
    _login(client, user)

    response = client.get("/api/stories/999")

    assert response.status_code == 404
    assert response.get_json()["error"] == "Not Found"


def test_delete_story_removes_children(client, user, story):
    db.session.add(Chapter(story=story, title="One", content="Text", sequence=1))
    db.session.commit()
    _login(client, user)

    response = client.delete(f"/api/stories/{story.id}")

    assert response.status_code == 200
    assert Story.query.count() == 0
    assert Chapter.query.count() == 0


def test_outline_round_trip(client, user, story):
    _login(client, user)

    assert client.get(f"/api/stories/{story.id}/outline").get_json()["outline"] == ""
    response = client.put(f"/api/stories/{story.id}/outline", json={"outline": "1. Departure\n2. Wells"})
    assert response.get_json()["outline"] == "1. Departure\n2. Wells"
    assert client.put(f"/api/stories/{story.id}/outline", json={}).status_code == 400


def test_chapters_are_numbered_and_reorderable(client, user, story):
    _login(client, user)

    first = client.post(f"/api/stories/{story.id}/chapters", json={"title": "Departure"}).get_json()["chapter"]
    second = client.post(
        f"/api/stories/{story.id}/chapters", json={"title": "The Wells", "content": "Dry."}
    ).get_json()["chapter"]
    assert (first["order"], second["order"]) == (1, 2)

    moved = client.put(f"/api/stories/{story.id}/chapters/{first['id']}", json={"order": 3})
    assert moved.get_json()["chapter"]["order"] == 3

    titles = [chapter["title"] for chapter in client.get(f"/api/stories/{story.id}/chapters").get_json()["chapters"]]
    assert titles == ["The Wells", "Departure"]

    invalid = client.put(f"/api/stories/{story.id}/chapters/{first['id']}", json={"order": 0})
    assert invalid.status_code == 400
    assert client.get(f"/api/stories/{story.id}/chapters/999").status_code == 404


def test_character_crud_and_attributes(client, user, story):
    _login(client, user)

    created = client.post(
        f"/api/stories/{story.id}/characters",
        json={"name": "Amira", "description": "A merchant.", "attributes": {"age": 34}},
    )
    assert created.status_code == 201
    character = created.get_json()["character"]
    assert character["attributes"] == {"age": 34}

    updated = client.put(
        f"/api/stories/{story.id}/characters/{character['id']}",
        json={"attributes": "Hates camels"},
    ).get_json()["character"]
    assert updated["attributes"] == {"notes": "Hates camels"}

    assert client.post(f"/api/stories/{story.id}/characters", json={"name": " "}).status_code == 400
    assert client.delete(f"/api/stories/{story.id}/characters/{character['id']}").status_code == 200
    assert Character.query.count() == 0


def test_manual_version_and_restore(client, user, story):
    _login(client, user)

    saved = client.post(f"/api/stories/{story.id}/versions", json={"description": "Before rewrite"})
    assert saved.status_code == 201
    version = saved.get_json()["version"]
    assert version["changeType"] == "manual"
    assert version["createdBy"] == "Writer"

    client.put(f"/api/stories/{story.id}", json={"content": "A completely different opening."})

    restored = client.post(f"/api/stories/{story.id}/versions/{version['versionId']}/restore")
    assert restored.status_code == 200
    assert restored.get_json()["version"]["versionId"].startswith("restore-")

    db.session.refresh(story)
    assert story.content == "The caravan left at dawn."

    versions = client.get(f"/api/stories/{story.id}/versions").get_json()["versions"]
    assert sorted(item["changeType"] for item in versions) == ["auto-backup", "manual", "restore"]
    backup = next(item for item in versions if item["changeType"] == "auto-backup")
    assert backup["versionId"].startswith("auto-backup-")
    detail = client.get(f"/api/stories/{story.id}/versions/{backup['versionId']}").get_json()["version"]
    assert detail["content"] == "A completely different opening."


def test_unknown_version_is_404(client, user, story):
    _login(client, user)

    assert client.get(f"/api/stories/{story.id}/versions/v-missing").status_code == 404
    assert client.post(f"/api/stories/{story.id}/versions/v-missing/restore").status_code == 404


def test_import_new_story(client, user):
    _login(client, user)

    response = client.post(
        "/api/stories/import",
        json={"title": "Imported", "content": ["Para one.", "Para two."]},
    )

    assert response.status_code == 201
    story = db.session.get(Story, response.get_json()["storyId"])
    assert story.paragraphs == ["Para one.", "Para two."]
    assert [version.change_type for version in story.versions] == ["import"]


def test_import_update_backs_up_existing_content(client, user, story):
    _login(client, user)

    response = client.post(
        "/api/stories/import",
        json={"title": "Renamed", "content": "Replacement text.", "importType": "update", "storyId": story.id},
    )

    assert response.status_code == 200
    db.session.refresh(story)
    assert story.title == "Renamed"
    assert story.content == "Replacement text."
    change_types = sorted(v.change_type for v in StoryVersion.query.filter_by(story_id=story.id))
    assert change_types == ["auto-backup", "import"]


def test_import_validation(client, user):
    _login(client, user)

    assert client.post("/api/stories/import", json={"title": "No content"}).status_code == 400
    assert (
        client.post(
            "/api/stories/import", json={"title": "T", "content": "C", "importType": "merge"}
        ).status_code
        == 400
    )
    assert (
        client.post(
            "/api/stories/import", json={"title": "T", "content": "C", "importType": "update"}
        ).status_code
        == 400
    )


def test_export_formats(client, user, story):
    db.session.add(Chapter(story=story, title="Departure", content="They left the city.", sequence=1))
    story.outline = "1. Departure"
    db.session.commit()
    _login(client, user)

    text = client.post(f"/api/stories/{story.id}/export", json={"format": "txt", "includeOutline": True})
    assert text.status_code == 200
    assert text.mimetype == "text/plain"
    assert "The Salt Road.txt" in text.headers["Content-Disposition"]
    body = text.get_data(as_text=True)
    assert body.startswith("THE SALT ROAD")
    assert "OUTLINE" in body
    assert "They left the city." in body

    markdown = client.post(f"/api/stories/{story.id}/export", json={"format": "markdown"})
    md_body = markdown.get_data(as_text=True)
    assert md_body.startswith("# The Salt Road")
    assert "### Departure" in md_body
    assert "## Outline" not in md_body

    pdf = client.post(f"/api/stories/{story.id}/export", json={"format": "pdf"})
    assert pdf.mimetype == "application/pdf"
    assert pdf.data.startswith(b"%PDF")

    assert client.post(f"/api/stories/{story.id}/export", json={"format": "docx"}).status_code == 400


def test_csrf_token_endpoint(client, user):
    _login(client, user)

    response = client.get("/api/csrf-token")

    assert response.status_code == 200
    assert response.get_json()["csrfToken"]


def test_dashboard_form_creates_story(client, user):
    _login(client, user)

    response = client.post(
        "/dashboard",
        data={"title": "From the form", "opening": "It began with a letter."},
        follow_redirects=False,
    )

    assert response.status_code == 302
    story = Story.query.filter_by(title="From the form").one()
    assert story.owner_id == user.id
    assert story.content == "It began with a letter."


def test_chapter_content_must_be_text(client, user, story):
    _login(client, user)

    created = client.post(f"/api/stories/{story.id}/chapters", json={"title": "Lists", "content": ["a", "b"]})
    assert created.status_code == 400
    assert created.get_json()["error"] == "Invalid request"
    assert Chapter.query.count() == 0

    chapter = client.post(f"/api/stories/{story.id}/chapters", json={"title": "Departure"}).get_json()["chapter"]
    updated = client.put(f"/api/stories/{story.id}/chapters/{chapter['id']}", json={"content": {"text": "x"}})
    assert updated.status_code == 400
    cleared = client.put(f"/api/stories/{story.id}/chapters/{chapter['id']}", json={"content": None})
    assert cleared.get_json()["chapter"]["content"] == ""


def test_export_format_must_be_text(client, user, story):
    _login(client, user)

    response = client.post(f"/api/stories/{story.id}/export", json={"format": 5})

    assert response.status_code == 400
    assert "format must be one of" in response.get_json()["message"]


def test_html_export(client, user, story):
    db.session.add(Chapter(story=story, title="Departure <1>", content="They left.\n\nThe city slept.", sequence=1))
    db.session.commit()
    _login(client, user)

    response = client.post(f"/api/stories/{story.id}/export", json={"format": "HTML"})

    assert response.status_code == 200
    assert response.mimetype == "text/html"
    assert "The Salt Road.html" in response.headers["Content-Disposition"]
    body = response.get_data(as_text=True)
    assert body.startswith("<!DOCTYPE html>")
    assert "<h3>Departure &lt;1&gt;</h3>" in body
    assert "<p>They left.</p>\n<p>The city slept.</p>" in body
