from __future__ import annotations

import io
import json
import re
import time
from typing import Any, Optional

from flask import current_app, jsonify, request, send_file
from flask_login import current_user, login_required

from pdf_handler import PDFExportError, build_story_pdf
from text_exporter import render_story_html, render_story_text

from ..api_utils import api_error, clean_text, json_payload, load_owned_story
from ..extensions import db
from ..models import (
    PARAGRAPH_SEPARATOR,
    Chapter,
    Character,
    Story,
    StoryVersion,
    content_size_kb,
    generate_version_id,
)
from . import bp

STORY_STATUSES = ("in_progress", "completed", "archived")
EXPORT_FORMATS = {
    "txt": ("text/plain; charset=utf-8", "txt"),
    "markdown": ("text/markdown; charset=utf-8", "md"),
    "html": ("text/html; charset=utf-8", "html"),
    "pdf": ("application/pdf", "pdf"),
}

_UNSAFE_FILENAME = re.compile(r"[^\w\- ]+")


def _normalize_content(value: Any) -> Optional[str]:
    """Accept story content as a paragraph list or a single string."""

    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        paragraphs = [str(item).strip() for item in value if item is not None and str(item).strip()]
        return PARAGRAPH_SEPARATOR.join(paragraphs) or None
    return str(value).strip() or None


def _author_label() -> str:
    return current_user.display_name or current_user.email or "Writer"


def _record_version(
    story: Story,
    content: Optional[str],
    *,
    change_type: str,
    description: Optional[str],
    version_id: Optional[str] = None,
) -> StoryVersion:
    text = content or ""
    version = StoryVersion(
        story=story,
        version_id=version_id or generate_version_id(),
        content=text,
        description=description,
        change_type=change_type,
        created_by=_author_label(),
        size=content_size_kb(text),
    )
    db.session.add(version)
    return version


def _parse_attributes(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            json.loads(value)
        except json.JSONDecodeError:
            return json.dumps({"notes": value}, ensure_ascii=False)
        return value
    return json.dumps(value, ensure_ascii=False)


# ---------------- stories ----------------
@bp.route("", methods=["GET"])
@login_required
def list_stories():
    stories = (
        Story.query.filter_by(owner_id=current_user.id)
        .order_by(Story.updated_at.desc())
        .all()
    )
    return jsonify({"stories": [story.to_dict() for story in stories]})


@bp.route("", methods=["POST"])
@login_required
def create_story():
    payload = json_payload()
    title = clean_text(payload.get("title"))
    if not title:
        return api_error("Invalid request", "A story title is required.", 400)

    story = Story(
        title=title,
        content=_normalize_content(payload.get("content")),
        summary=clean_text(payload.get("summary")),
        world_setting=clean_text(payload.get("worldSetting")),
        owner=current_user,
    )
    db.session.add(story)
    db.session.commit()
    return jsonify({"story": story.to_dict()}), 201


@bp.route("/<int:story_id>", methods=["GET"])
@login_required
def get_story(story_id: int):
    story = load_owned_story(story_id)
    return jsonify({"story": story.to_dict(include_children=True)})


@bp.route("/<int:story_id>", methods=["PUT"])
@login_required
def update_story(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()

    if "title" in payload:
        title = clean_text(payload.get("title"))
        if not title:
            return api_error("Invalid request", "A story title cannot be empty.", 400)
        story.title = title
    if "content" in payload:
        story.content = _normalize_content(payload.get("content"))
    if "summary" in payload:
        story.summary = clean_text(payload.get("summary"))
    if "worldSetting" in payload:
        story.world_setting = clean_text(payload.get("worldSetting"))
    if "storyStatus" in payload:
        status = clean_text(payload.get("storyStatus"))
        if status not in STORY_STATUSES:
            return api_error(
                "Invalid request", f"storyStatus must be one of: {', '.join(STORY_STATUSES)}.", 400
            )
        story.story_status = status

    db.session.commit()
    return jsonify({"story": story.to_dict()})


@bp.route("/<int:story_id>", methods=["DELETE"])
@login_required
def delete_story(story_id: int):
    story = load_owned_story(story_id)
    db.session.delete(story)
    db.session.commit()
    return jsonify({"message": "Story deleted.", "storyId": story_id})


# ---------------- outline ----------------
@bp.route("/<int:story_id>/outline", methods=["GET"])
@login_required
def get_outline(story_id: int):
    story = load_owned_story(story_id)
    return jsonify({"storyId": story.id, "outline": story.outline or ""})


@bp.route("/<int:story_id>/outline", methods=["PUT"])
@login_required
def update_outline(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    if "outline" not in payload:
        return api_error("Invalid request", "Provide the outline text.", 400)
    story.outline = clean_text(payload.get("outline"))
    db.session.commit()
    return jsonify({"storyId": story.id, "outline": story.outline or ""})


# ---------------- chapters ----------------
def _load_chapter(story: Story, chapter_id: int) -> Optional[Chapter]:
    return Chapter.query.filter_by(id=chapter_id, story_id=story.id).first()


def next_chapter_sequence(story: Story) -> int:
    highest = (
        db.session.query(db.func.max(Chapter.sequence)).filter(Chapter.story_id == story.id).scalar()
    )
    return (highest or 0) + 1


@bp.route("/<int:story_id>/chapters", methods=["GET"])
@login_required
def list_chapters(story_id: int):
    story = load_owned_story(story_id)
    return jsonify({"chapters": [chapter.to_dict() for chapter in story.chapters]})


@bp.route("/<int:story_id>/chapters", methods=["POST"])
@login_required
def create_chapter(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    title = clean_text(payload.get("title"))
    if not title:
        return api_error("Invalid request", "A chapter title is required.", 400)
    content = payload.get("content") or ""
    if not isinstance(content, str):
        return api_error("Invalid request", "Chapter content must be text.", 400)

    chapter = Chapter(
        story=story,
        title=title,
        content=content.strip(),
        summary=clean_text(payload.get("summary")),
        notes=clean_text(payload.get("notes")),
        sequence=next_chapter_sequence(story),
    )
    db.session.add(chapter)
    db.session.commit()
    return jsonify({"chapter": chapter.to_dict()}), 201


@bp.route("/<int:story_id>/chapters/<int:chapter_id>", methods=["GET"])
@login_required
def get_chapter(story_id: int, chapter_id: int):
    story = load_owned_story(story_id)
    chapter = _load_chapter(story, chapter_id)
    if not chapter:
        return api_error("Not found", "We couldn't find that chapter.", 404)
    return jsonify({"chapter": chapter.to_dict()})


@bp.route("/<int:story_id>/chapters/<int:chapter_id>", methods=["PUT"])
@login_required
def update_chapter(story_id: int, chapter_id: int):
    story = load_owned_story(story_id)
    chapter = _load_chapter(story, chapter_id)
    if not chapter:
        return api_error("Not found", "We couldn't find that chapter.", 404)

    payload = json_payload()
    if "title" in payload:
        title = clean_text(payload.get("title"))
        if not title:
            return api_error("Invalid request", "A chapter title cannot be empty.", 400)
        chapter.title = title
    if "content" in payload:
        content = payload.get("content") or ""
        if not isinstance(content, str):
            return api_error("Invalid request", "Chapter content must be text.", 400)
        chapter.content = content.strip()
    if "summary" in payload:
        chapter.summary = clean_text(payload.get("summary"))
    if "notes" in payload:
        chapter.notes = clean_text(payload.get("notes"))
    if "order" in payload:
        try:
            order = int(payload.get("order"))
        except (TypeError, ValueError):
            return api_error("Invalid request", "order must be a positive integer.", 400)
        if order < 1:
            return api_error("Invalid request", "order must be a positive integer.", 400)
        chapter.sequence = order

    db.session.commit()
    return jsonify({"chapter": chapter.to_dict()})


@bp.route("/<int:story_id>/chapters/<int:chapter_id>", methods=["DELETE"])
@login_required
def delete_chapter(story_id: int, chapter_id: int):
    story = load_owned_story(story_id)
    chapter = _load_chapter(story, chapter_id)
    if not chapter:
        return api_error("Not found", "We couldn't find that chapter.", 404)
    db.session.delete(chapter)
    db.session.commit()
    return jsonify({"message": "Chapter deleted.", "chapterId": chapter_id})


# ---------------- characters ----------------
def _load_character(story: Story, character_id: int) -> Optional[Character]:
    return Character.query.filter_by(id=character_id, story_id=story.id).first()


@bp.route("/<int:story_id>/characters", methods=["GET"])
@login_required
def list_characters(story_id: int):
    story = load_owned_story(story_id)
    return jsonify({"characters": [character.to_dict() for character in story.characters]})


@bp.route("/<int:story_id>/characters", methods=["POST"])
@login_required
def create_character(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    name = clean_text(payload.get("name"))
    if not name:
        return api_error("Invalid request", "A character name is required.", 400)

    character = Character(
        story=story,
        owner_id=current_user.id,
        name=name,
        description=clean_text(payload.get("description")),
        attributes=_parse_attributes(payload.get("attributes")),
    )
    db.session.add(character)
    db.session.commit()
    return jsonify({"character": character.to_dict()}), 201


@bp.route("/<int:story_id>/characters/<int:character_id>", methods=["GET"])
@login_required
def get_character(story_id: int, character_id: int):
    story = load_owned_story(story_id)
    character = _load_character(story, character_id)
    if not character:
        return api_error("Not found", "We couldn't find that character.", 404)
    return jsonify({"character": character.to_dict()})


@bp.route("/<int:story_id>/characters/<int:character_id>", methods=["PUT"])
@login_required
def update_character(story_id: int, character_id: int):
    story = load_owned_story(story_id)
    character = _load_character(story, character_id)
    if not character:
        return api_error("Not found", "We couldn't find that character.", 404)

    payload = json_payload()
    if "name" in payload:
        name = clean_text(payload.get("name"))
        if not name:
            return api_error("Invalid request", "A character name cannot be empty.", 400)
        character.name = name
    if "description" in payload:
        character.description = clean_text(payload.get("description"))
    if "attributes" in payload:
        character.attributes = _parse_attributes(payload.get("attributes"))

    db.session.commit()
    return jsonify({"character": character.to_dict()})


@bp.route("/<int:story_id>/characters/<int:character_id>", methods=["DELETE"])
@login_required
def delete_character(story_id: int, character_id: int):
    story = load_owned_story(story_id)
    character = _load_character(story, character_id)
    if not character:
        return api_error("Not found", "We couldn't find that character.", 404)
    db.session.delete(character)
    db.session.commit()
    return jsonify({"message": "Character deleted.", "characterId": character_id})


# ---------------- version history ----------------
def _load_version(story: Story, version_id: str) -> Optional[StoryVersion]:
    return StoryVersion.query.filter_by(story_id=story.id, version_id=version_id).first()


@bp.route("/<int:story_id>/versions", methods=["GET"])
@login_required
def list_versions(story_id: int):
    story = load_owned_story(story_id)
    versions = (
        StoryVersion.query.filter_by(story_id=story.id)
        .order_by(StoryVersion.created_at.desc(), StoryVersion.id.desc())
        .all()
    )
    return jsonify({"versions": [version.to_dict() for version in versions]})


@bp.route("/<int:story_id>/versions", methods=["POST"])
@login_required
def create_version(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    content = _normalize_content(payload.get("content")) if "content" in payload else story.content

    version = _record_version(
        story,
        content,
        change_type=clean_text(payload.get("changeType")) or "manual",
        description=clean_text(payload.get("description")) or "Manual save",
    )
    db.session.commit()
    return jsonify({"version": version.to_dict()}), 201


@bp.route("/<int:story_id>/versions/<version_id>", methods=["GET"])
@login_required
def get_version(story_id: int, version_id: str):
    story = load_owned_story(story_id)
    version = _load_version(story, version_id)
    if not version:
        return api_error("Not found", "We couldn't find that version.", 404)
    return jsonify({"version": version.to_dict(include_content=True)})


@bp.route("/<int:story_id>/versions/<version_id>", methods=["DELETE"])
@login_required
def delete_version(story_id: int, version_id: str):
    story = load_owned_story(story_id)
    version = _load_version(story, version_id)
    if not version:
        return api_error("Not found", "We couldn't find that version.", 404)
    db.session.delete(version)
    db.session.commit()
    return jsonify({"message": "Version deleted.", "versionId": version_id})


@bp.route("/<int:story_id>/versions/<version_id>/restore", methods=["POST"])
@login_required
def restore_version(story_id: int, version_id: str):
    story = load_owned_story(story_id)
    version = _load_version(story, version_id)
    if not version:
        return api_error("Not found", "We couldn't find that version.", 404)

    now_ms = int(time.time() * 1000)
    _record_version(
        story,
        story.content,
        change_type="auto-backup",
        description="Automatic backup before restore",
        version_id=f"auto-backup-{now_ms}",
    )
    story.content = version.content or None
    restored = _record_version(
        story,
        version.content,
        change_type="restore",
        description=f"Restored from version {version.version_id}",
        version_id=f"restore-{now_ms}",
    )
    db.session.commit()
    current_app.logger.info("Story %s restored from version %s", story.id, version.version_id)
    return jsonify(
        {
            "message": "The story was restored to the selected version.",
            "storyId": story.id,
            "version": restored.to_dict(),
        }
    )


# ---------------- import / export ----------------
@bp.route("/import", methods=["POST"])
@login_required
def import_story():
    payload = json_payload()
    title = clean_text(payload.get("title"))
    content = _normalize_content(payload.get("content"))
    if not title or not content:
        return api_error("Invalid request", "Both a title and content are required.", 400)

    import_type = payload.get("importType") or "new"
    if import_type not in ("new", "update"):
        return api_error("Invalid request", "importType must be 'new' or 'update'.", 400)

    if import_type == "update":
        try:
            target_id = int(payload.get("storyId"))
        except (TypeError, ValueError):
            return api_error("Invalid request", "storyId is required when updating a story.", 400)
        story = load_owned_story(target_id)
        if story.content:
            _record_version(
                story,
                story.content,
                change_type="auto-backup",
                description="Automatic backup before import",
            )
        story.title = title
        story.content = content
        _record_version(story, content, change_type="import", description="Imported content")
        db.session.commit()
        return jsonify({"message": "Story updated from import.", "storyId": story.id})

    story = Story(title=title, content=content, owner=current_user)
    db.session.add(story)
    _record_version(story, content, change_type="import", description="Imported initial version")
    db.session.commit()
    return jsonify({"message": "Story imported.", "storyId": story.id}), 201


def _export_filename(title: str, extension: str) -> str:
    stem = _UNSAFE_FILENAME.sub("", title or "").strip() or "story"
    return f"{stem}.{extension}"


@bp.route("/<int:story_id>/export", methods=["POST"])
@login_required
def export_story(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    export_format = payload.get("format") or "txt"
    if not isinstance(export_format, str) or export_format.lower() not in EXPORT_FORMATS:
        return api_error(
            "Invalid request", f"format must be one of: {', '.join(EXPORT_FORMATS)}.", 400
        )
    export_format = export_format.lower()
    include_characters = bool(payload.get("includeCharacters"))
    include_outline = bool(payload.get("includeOutline"))
    mimetype, extension = EXPORT_FORMATS[export_format]

    if export_format == "pdf":
        try:
            document = build_story_pdf(
                story,
                story.chapters,
                story.characters,
                include_outline=include_outline,
                include_characters=include_characters,
            )
        except PDFExportError as exc:
            current_app.logger.warning("PDF export failed for story %s: %s", story.id, exc)
            return api_error("Export failed", str(exc), 500)
    elif export_format == "html":
        document = render_story_html(
            story,
            story.chapters,
            story.characters,
            include_outline=include_outline,
            include_characters=include_characters,
        ).encode("utf-8")
    else:
        document = render_story_text(
            story,
            story.chapters,
            story.characters,
            markdown=export_format == "markdown",
            include_outline=include_outline,
            include_characters=include_characters,
        ).encode("utf-8")

    return send_file(
        io.BytesIO(document),
        mimetype=mimetype,
        as_attachment=True,
        download_name=_export_filename(story.title, extension),
    )
