from __future__ import annotations

import json
from typing import Any, Callable, List

from flask import current_app, jsonify
from flask_login import current_user, login_required

from ..api_utils import api_error, clean_text, json_payload, load_owned_story
from ..extensions import db
from ..models import PARAGRAPH_SEPARATOR, Chapter, Character, Story
from ..services.story_generation import (
    StoryGenerationError,
    analyze_characters,
    analyze_consistency,
    continue_story,
    describe_character,
    extract_characters,
    generate_chapter_from_outline,
    generate_outline_from_characters,
    generate_outline_from_story,
    parse_character_analysis,
    parse_consistency_report,
    parse_extracted_characters,
    provide_ai_assistance,
    review_story,
    suggest_story_prompts,
    suggest_writing_improvements,
)
from ..stories.routes import next_chapter_sequence
from . import bp

GENERATION_TASKS = ("generate_prompts", "continue_story")


def _run(operation: Callable[[], Any], failure_message: str):
    """Call a generation service, mapping its errors to JSON responses.

    Returns ``(result, None)`` on success or ``(None, response)`` when the
    request should be answered with an error.
    """

    try:
        return operation(), None
    except StoryGenerationError as exc:
        return None, api_error("Invalid request", str(exc), 400)
    except Exception:
        current_app.logger.exception("Unexpected error during %s", failure_message)
        return None, api_error("Generation failed", f"We couldn't {failure_message} right now. Please try again.", 500)


def _story_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return PARAGRAPH_SEPARATOR.join(str(item) for item in value if item)
    return "" if value is None else str(value)


def _id_list(value: Any) -> List[int]:
    if not isinstance(value, (list, tuple)):
        return []
    ids = []
    for item in value:
        try:
            ids.append(int(item))
        except (TypeError, ValueError):
            continue
    return ids


def _selected_chapters(story: Story, ids: List[int]) -> List[Chapter]:
    if not ids:
        return []
    return (
        Chapter.query.filter(Chapter.story_id == story.id, Chapter.id.in_(ids))
        .order_by(Chapter.sequence)
        .all()
    )


def _selected_characters(story: Story, ids: List[int]) -> List[Character]:
    if not ids:
        return []
    return Character.query.filter(Character.story_id == story.id, Character.id.in_(ids)).all()


def _neighbour_chapters(story: Story, chapter_id: Any) -> List[Chapter]:
    try:
        target = int(chapter_id)
    except (TypeError, ValueError):
        return []
    chapters = list(story.chapters)
    for index, chapter in enumerate(chapters):
        if chapter.id == target:
            return chapters[max(index - 1, 0):index] + chapters[index + 1:index + 2]
    return []


# ---------------- story writing ----------------
@bp.route("/generate", methods=["POST"])
@login_required
def generate():
    payload = json_payload()
    task = payload.get("task")
    if task not in GENERATION_TASKS:
        return api_error("Invalid request", f"task must be one of: {', '.join(GENERATION_TASKS)}.", 400)

    story_text = _story_text(payload.get("story"))
    if task == "generate_prompts":
        result, error = _run(lambda: suggest_story_prompts(story_text), "suggest plot directions")
        if error:
            return error
        return jsonify({"prompts": result.prompts, "used_fallback": result.used_fallback})

    result, error = _run(
        lambda: continue_story(story_text, payload.get("prompt") or ""), "continue the story"
    )
    if error:
        return error
    return jsonify({"story": result.text, "used_fallback": result.used_fallback})


@bp.route("/generate/character-description", methods=["POST"])
@login_required
def character_description():
    payload = json_payload()
    result, error = _run(
        lambda: describe_character(payload.get("prompt") or ""), "describe the character"
    )
    if error:
        return error
    return jsonify({"description": result.text, "used_fallback": result.used_fallback})


@bp.route("/generate/writing-suggestion", methods=["POST"])
@login_required
def writing_suggestion():
    payload = json_payload()
    result, error = _run(
        lambda: suggest_writing_improvements(
            payload.get("prompt") or "",
            partial_result=payload.get("partialResult"),
            priority=payload.get("priority"),
        ),
        "suggest improvements",
    )
    if error:
        return error
    return jsonify({"suggestion": result.text, "used_fallback": result.used_fallback})


# ---------------- outlines and chapters ----------------
@bp.route("/stories/<int:story_id>/outline/generate", methods=["POST"])
@login_required
def generate_outline(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    auto_save = payload.get("autoSave", True) is not False

    result, error = _run(
        lambda: generate_outline_from_story(story, story.chapters, payload.get("prompt")),
        "generate an outline",
    )
    if error:
        return error

    saved = auto_save and not result.used_fallback
    if saved:
        story.outline = result.text
        db.session.commit()
    return jsonify({"outline": result.text, "saved": saved, "used_fallback": result.used_fallback})


@bp.route("/stories/<int:story_id>/outline/generate-from-characters", methods=["POST"])
@login_required
def generate_outline_from_cast(story_id: int):
    story = load_owned_story(story_id)
    if not story.characters:
        return api_error(
            "Invalid request", "Add at least one character before generating an outline from the cast.", 400
        )

    payload = json_payload()
    result, error = _run(
        lambda: generate_outline_from_characters(
            story,
            story.characters,
            theme=clean_text(payload.get("theme")),
            genre=clean_text(payload.get("genre")),
            additional_notes=clean_text(payload.get("additionalNotes")),
        ),
        "generate an outline",
    )
    if error:
        return error

    saved = bool(payload.get("autoSave")) and not result.used_fallback
    if saved:
        story.outline = result.text
        db.session.commit()
    return jsonify({"outline": result.text, "saved": saved, "used_fallback": result.used_fallback})


@bp.route("/stories/<int:story_id>/chapters/generate-from-outline", methods=["POST"])
@login_required
def generate_chapter(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    chapter_title = clean_text(payload.get("chapterTitle")) or ""

    result, error = _run(
        lambda: generate_chapter_from_outline(story, payload.get("outlineSection") or "", chapter_title),
        "write the chapter",
    )
    if error:
        return error

    response = {"title": chapter_title, "content": result.text, "used_fallback": result.used_fallback}
    if payload.get("save") and not result.used_fallback:
        chapter = Chapter(
            story=story,
            title=chapter_title,
            content=result.text,
            sequence=next_chapter_sequence(story),
        )
        db.session.add(chapter)
        db.session.commit()
        response["chapter"] = chapter.to_dict()
    return jsonify(response)


# ---------------- assistance and review ----------------
@bp.route("/stories/<int:story_id>/ai-assistance", methods=["POST"])
@login_required
def ai_assistance(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    chapters = _selected_chapters(story, _id_list(payload.get("selectedChapterIds")))
    characters = _selected_characters(story, _id_list(payload.get("selectedCharacterIds")))

    result, error = _run(
        lambda: provide_ai_assistance(
            story,
            payload.get("assistanceType") or "",
            payload.get("prompt") or "",
            chapters,
            characters,
        ),
        "provide assistance",
    )
    if error:
        return error
    return jsonify({"result": result.text, "used_fallback": result.used_fallback})


@bp.route("/stories/<int:story_id>/feedback", methods=["POST"])
@login_required
def feedback(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    result, error = _run(lambda: review_story(story, payload.get("content")), "review the story")
    if error:
        return error
    return jsonify({"feedback": result.text, "used_fallback": result.used_fallback})


@bp.route("/stories/<int:story_id>/analyze-consistency", methods=["POST"])
@login_required
def consistency(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    check_type = payload.get("checkType") or "all"

    result, error = _run(
        lambda: analyze_consistency(
            story,
            payload.get("content") or "",
            check_type,
            _neighbour_chapters(story, payload.get("chapterId")),
            story.characters,
        ),
        "analyse consistency",
    )
    if error:
        return error

    analysis = None if result.used_fallback else parse_consistency_report(result.text)
    return jsonify(
        {
            "analysis": analysis,
            "text": result.text,
            "checkType": check_type,
            "used_fallback": result.used_fallback,
        }
    )


# ---------------- characters ----------------
@bp.route("/stories/<int:story_id>/characters/extract", methods=["POST"])
@login_required
def extract_story_characters(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    auto_save = bool(payload.get("autoSave"))

    result, error = _run(lambda: extract_characters(story, story.chapters), "extract characters")
    if error:
        return error

    extracted = [] if result.used_fallback else parse_extracted_characters(result.text)
    saved: List[Character] = []
    skipped: List[str] = []
    if auto_save and extracted:
        existing = {character.name.casefold() for character in story.characters}
        for item in extracted:
            if item["name"].casefold() in existing:
                skipped.append(item["name"])
                continue
            character = Character(
                story=story,
                owner_id=current_user.id,
                name=item["name"],
                description=item["description"] or None,
                attributes=json.dumps(item["attributes"], ensure_ascii=False) if item["attributes"] else None,
            )
            db.session.add(character)
            saved.append(character)
            existing.add(item["name"].casefold())
        db.session.commit()
        current_app.logger.info(
            "Saved %d extracted characters for story %s (%d already existed)", len(saved), story.id, len(skipped)
        )

    return jsonify(
        {
            "extractedCharacters": extracted,
            "savedCharacters": [character.to_dict() for character in saved],
            "skippedNames": skipped,
            "autoSaved": auto_save,
            "used_fallback": result.used_fallback,
        }
    )


@bp.route("/stories/<int:story_id>/characters/analyze", methods=["POST"])
@login_required
def analyze_story_characters(story_id: int):
    story = load_owned_story(story_id)
    payload = json_payload()
    character_ids = _id_list(payload.get("characterIds"))
    chapter_ids = _id_list(payload.get("chapterIds"))
    if not character_ids:
        return api_error("Invalid request", "Provide a list of characterIds to analyse.", 400)
    if not chapter_ids:
        return api_error("Invalid request", "Provide a list of chapterIds to analyse.", 400)

    characters = _selected_characters(story, character_ids)
    if not characters:
        return api_error("Not found", "None of the requested characters belong to this story.", 404)
    chapters = _selected_chapters(story, chapter_ids)
    if not chapters:
        return api_error("Not found", "None of the requested chapters belong to this story.", 404)

    result, error = _run(lambda: analyze_characters(story, characters, chapters), "analyse the characters")
    if error:
        return error

    analysis = None if result.used_fallback else parse_character_analysis(result.text, characters)
    return jsonify({"analysis": analysis, "text": result.text, "used_fallback": result.used_fallback})
