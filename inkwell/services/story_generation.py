from __future__ import annotations

import json
import random
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from flask import current_app

from .content_cleanup import sanitize_generated_content, strip_repeated_overlap
from .fallback_content import FallbackCategory
from .resilience import (
    RandomSource,
    RetryConfig,
    execute_with_fallback,
    get_fallback,
    is_valid_response,
)

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
GENERATOR_CACHE_KEY = "_TEXT_GENERATOR_INSTANCE"

PROMPT_COUNT = 3

BACKUP_STORY_PROMPTS = [
    "The protagonist decides to explore uncharted territory and uncovers a secret that changes everything, "
    "overturning the way they understand their own world.",
    "A mysterious stranger arrives with unexpected news and a rare opportunity, but the offer carries dangers "
    "and trials no one can foresee.",
    "A sudden event shatters the calm and forces the protagonist to face their deepest fear and rethink what "
    "they want from life.",
    "An accidental discovery reveals a long-buried truth, and the protagonist begins to doubt everything they "
    "know and everyone they trust.",
    "The conflict between the protagonist and their rival comes to a head, forcing both to make decisions and "
    "sacrifices that could change everything.",
    "The protagonist faces a pivotal choice where every path looks promising yet hides its own risks and costs.",
    "An unplanned journey carries the protagonist somewhere unfamiliar, where they meet the people and events "
    "that will redirect their life.",
]

ASSISTANCE_PROMPT_KEYS: Dict[str, str] = {
    "plot_idea": "assistance_plot_idea",
    "character_dialogue": "assistance_character_dialogue",
    "plot_suggestion": "assistance_plot_suggestion",
    "setting_development": "assistance_setting_development",
    "writing_style": "assistance_writing_style",
}

CONSISTENCY_PROMPT_KEYS: Dict[str, str] = {
    "all": "consistency_all",
    "character": "consistency_character",
    "plot": "consistency_plot",
    "setting": "consistency_setting",
}

EXTRACTION_CHAPTER_LIMIT = 3
EXTRACTION_TEXT_LIMIT = 12000

WRITING_PRIORITIES = ("speed", "balanced", "quality")
CONTINUE_ANSWER_MESSAGE = "Please continue your answer."

_LIST_ITEM = re.compile(r"^\s*-\s?")
_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class StoryGenerationError(RuntimeError):
    """Raised when a generation request cannot be attempted."""


@dataclass
class GenerationResult:
    text: str
    prompt: str
    used_fallback: bool


@dataclass
class PromptSuggestions:
    prompts: List[str]
    used_fallback: bool


# ---------------- story writing ----------------
def suggest_story_prompts(story_text: str, *, rng: Optional[RandomSource] = None) -> PromptSuggestions:
    """Offer three directions in which the story could continue.

    Model output is parsed as ``- `` list items. When fewer than three items
    come back (including when the model is unavailable), distinct prompts from
    a built-in backup pool fill the gap and ``used_fallback`` is set.
    """

    story = _require(story_text, "Provide the story so far to get plot suggestions.")
    entry = _load_prompt_entry("story_prompts")
    final_prompt = _format_template(entry, story_text=story)

    response, used_fallback = _call_model(
        _build_messages(entry, final_prompt),
        FallbackCategory.AI_ASSISTANCE,
        entry.get("parameters"),
        rng=rng,
    )
    prompts = [] if used_fallback else parse_prompt_list(response)[:PROMPT_COUNT]

    if len(prompts) < PROMPT_COUNT:
        prompts.extend(_pick_backup_prompts(PROMPT_COUNT - len(prompts), exclude=prompts, rng=rng))
        used_fallback = True

    return PromptSuggestions(prompts=prompts, used_fallback=used_fallback)


def continue_story(story_text: str, prompt: str, *, rng: Optional[RandomSource] = None) -> GenerationResult:
    story = _require(story_text, "Provide the story so far before asking for a continuation.")
    direction = _require(prompt, "Choose a direction for the story to continue in.")

    entry = _load_prompt_entry("story_continuation")
    final_prompt = _format_template(entry, story_text=story, prompt=direction)
    text, used_fallback = _call_model(
        _build_messages(entry, final_prompt),
        FallbackCategory.CHAPTER,
        entry.get("parameters"),
        rng=rng,
    )

    if not used_fallback:
        cleaned = strip_repeated_overlap(story, sanitize_generated_content(text))
        if cleaned.strip():
            text = cleaned.strip()
        else:
            current_app.logger.warning("Continuation was empty after cleanup; using fallback content.")
            text = get_fallback(FallbackCategory.CHAPTER, _retry_config(), rng=rng)
            used_fallback = True

    return GenerationResult(text=text, prompt=final_prompt, used_fallback=used_fallback)


def describe_character(prompt: str, *, rng: Optional[RandomSource] = None) -> GenerationResult:
    idea = _require(prompt, "Describe the character you have in mind.")
    return _generate(
        "character_description",
        FallbackCategory.CHARACTER_DESCRIPTION,
        {"prompt": idea},
        rng=rng,
    )


def suggest_writing_improvements(
    prompt: str,
    partial_result: Optional[str] = None,
    priority: Optional[str] = None,
    *,
    rng: Optional[RandomSource] = None,
) -> GenerationResult:
    """Ask for writing advice, optionally resuming an answer cut short.

    With ``partial_result`` the earlier exchange is replayed and the model is
    asked to carry on from where it stopped. ``priority`` of ``"speed"`` makes a
    single attempt instead of the configured number of retries.
    """

    request_text = _require(prompt, "Provide the passage or question you want suggestions for.")
    priority = (_optional_text(priority, "priority must be text.") or "balanced").lower()
    if priority not in WRITING_PRIORITIES:
        raise StoryGenerationError(f"Unknown priority '{priority}'. Use one of: {', '.join(WRITING_PRIORITIES)}.")

    entry = _load_prompt_entry("writing_suggestion")
    final_prompt = _format_template(entry, prompt=request_text)
    messages = _build_messages(entry, final_prompt)
    partial = _optional_text(partial_result, "partialResult must be text.")
    if partial:
        messages.append({"role": "assistant", "content": partial})
        messages.append({"role": "user", "content": CONTINUE_ANSWER_MESSAGE})

    text, used_fallback = _call_model(
        messages,
        FallbackCategory.WRITING_SUGGESTION,
        entry.get("parameters"),
        rng=rng,
        max_retries=1 if priority == "speed" else None,
    )
    return GenerationResult(text=text, prompt=final_prompt, used_fallback=used_fallback)


# ---------------- outlines and chapters ----------------
def generate_outline_from_story(
    story: Any,
    chapters: Sequence[Any] = (),
    prompt: Optional[str] = None,
    *,
    rng: Optional[RandomSource] = None,
) -> GenerationResult:
    story_text = "\n\n".join(getattr(story, "paragraphs", []) or [])
    chapter_lines = [
        f"{index}. {chapter.title}: {_excerpt(chapter.summary or chapter.content, 200)}"
        for index, chapter in enumerate(chapters, start=1)
    ]
    request = _optional_text(prompt, "The outline prompt must be text.")
    if not (story_text.strip() or chapter_lines or request or (story.summary or "").strip()):
        raise StoryGenerationError("Write some of the story or describe it before generating an outline.")

    return _generate(
        "outline_from_story",
        FallbackCategory.OUTLINE,
        {
            "title": story.title,
            "request": f"Writer's notes: {request}\n\n" if request else "",
            "summary_block": _block("Summary", story.summary),
            "story_block": _block("Story so far", _excerpt(story_text, 6000)),
            "chapters_block": _block("Chapters", "\n".join(chapter_lines)),
        },
        rng=rng,
    )


def generate_outline_from_characters(
    story: Any,
    characters: Sequence[Any],
    theme: Optional[str] = None,
    genre: Optional[str] = None,
    additional_notes: Optional[str] = None,
    *,
    rng: Optional[RandomSource] = None,
) -> GenerationResult:
    if not characters:
        raise StoryGenerationError("Add at least one character before generating an outline from the cast.")

    return _generate(
        "outline_from_characters",
        FallbackCategory.OUTLINE,
        {
            "title": story.title,
            "characters": describe_characters(characters),
            "theme_block": _block("Theme", theme),
            "genre_block": _block("Genre", genre),
            "world_block": _block("World setting", story.world_setting),
            "notes_block": _block("Additional notes", additional_notes),
        },
        rng=rng,
    )


def generate_chapter_from_outline(
    story: Any,
    outline_section: str,
    chapter_title: str,
    *,
    rng: Optional[RandomSource] = None,
) -> GenerationResult:
    section = _require(outline_section, "Provide the outline section the chapter should cover.")
    title = _require(chapter_title, "Give the new chapter a title.")

    previous_block = ""
    chapters = list(story.chapters or [])
    if chapters:
        last = chapters[-1]
        previous_block = _block("Previous chapter", last.content) + _block("Previous chapter summary", last.summary)

    return _generate(
        "chapter_from_outline",
        FallbackCategory.CHAPTER,
        {
            "chapter_title": title,
            "outline_section": section,
            "summary_block": _block("Story summary", story.summary),
            "world_block": _block("World setting", story.world_setting),
            "characters_block": _block("Characters", describe_characters(story.characters or [])),
            "previous_block": previous_block,
        },
        rng=rng,
    )


# ---------------- assistance and review ----------------
def provide_ai_assistance(
    story: Any,
    assistance_type: str,
    prompt: str,
    chapters: Sequence[Any] = (),
    characters: Sequence[Any] = (),
    *,
    rng: Optional[RandomSource] = None,
) -> GenerationResult:
    prompt_key = ASSISTANCE_PROMPT_KEYS.get(assistance_type) if isinstance(assistance_type, str) else None
    if not prompt_key:
        raise StoryGenerationError("Unsupported assistance type requested.")
    request_text = _require(prompt, "Tell the assistant what you need help with.")
    if assistance_type == "character_dialogue" and not characters:
        raise StoryGenerationError("Select at least one character to write dialogue for.")

    chapter_context = "\n\n".join(
        f"{chapter.title}:\n{_excerpt(chapter.content, 1500)}" for chapter in chapters
    )
    return _generate(
        prompt_key,
        FallbackCategory.AI_ASSISTANCE,
        {
            "prompt": request_text,
            "characters_block": _block("Character information", describe_characters(characters), lead="\n\n"),
            "chapters_block": _block("Relevant chapters", chapter_context, lead="\n\n"),
        },
        rng=rng,
    )


def review_story(story: Any, content: Optional[str] = None, *, rng: Optional[RandomSource] = None) -> GenerationResult:
    """Literary feedback on the story, or on ``content`` when given.

    Without explicit content the chapters are reviewed; a story that has no
    chapters yet is reviewed from its running text.
    """

    text = _optional_text(content, "Feedback content must be text.")
    if not text:
        chapters = list(story.chapters or [])
        if chapters:
            text = "\n\n".join(chapter.content for chapter in chapters if chapter.content).strip()
        else:
            text = "\n\n".join(story.paragraphs).strip()
    if not text:
        raise StoryGenerationError("There is no story content to review yet.")

    return _generate(
        "story_feedback",
        FallbackCategory.FEEDBACK,
        {
            "title": story.title,
            "content": text,
            "characters_block": _block(
                "Characters",
                "\n".join(f"{c.name}: {c.description or ''}" for c in (story.characters or [])),
                lead="\n\n",
            ),
        },
        rng=rng,
    )


def analyze_consistency(
    story: Any,
    content: str,
    check_type: str = "all",
    chapters: Sequence[Any] = (),
    characters: Sequence[Any] = (),
    *,
    rng: Optional[RandomSource] = None,
) -> GenerationResult:
    """Check ``content`` against the story's characters, outline and nearby chapters.

    The model is asked for a JSON report; see :func:`parse_consistency_report`.
    """

    prompt_key = CONSISTENCY_PROMPT_KEYS.get(check_type) if isinstance(check_type, str) else None
    if not prompt_key:
        raise StoryGenerationError(
            f"Unknown check type '{check_type}'. Use one of: {', '.join(CONSISTENCY_PROMPT_KEYS)}."
        )
    text = _require(content, "Provide the content to analyse.")

    context = "\n\n".join(
        f"{chapter.title}\nSummary: {chapter.summary or _excerpt(chapter.content, 200)}" for chapter in chapters
    )
    return _generate(
        prompt_key,
        FallbackCategory.ANALYZE_CONSISTENCY,
        {
            "content": text,
            "characters_block": _block("Character information", describe_characters(characters), lead="\n\n"),
            "outline_block": _block("Story outline", story.outline, lead="\n\n"),
            "context_block": _block("Related chapters", context, lead="\n\n"),
        },
        rng=rng,
    )


def parse_consistency_report(text: str) -> Optional[Dict[str, Any]]:
    """Parse a JSON consistency report, tolerating a fenced code block."""

    parsed = _parse_json(text)
    return parsed if isinstance(parsed, dict) else None


# ---------------- characters ----------------
def extract_characters(
    story: Any,
    chapters: Sequence[Any] = (),
    *,
    rng: Optional[RandomSource] = None,
) -> GenerationResult:
    """Ask the model to list the characters appearing in the story.

    The running text is read together with the first few chapters. The reply is
    a JSON report; see :func:`parse_extracted_characters`.
    """

    parts = ["\n\n".join(getattr(story, "paragraphs", []) or [])]
    parts.extend(chapter.content or "" for chapter in list(chapters)[:EXTRACTION_CHAPTER_LIMIT])
    text = "\n\n".join(part.strip() for part in parts if part and part.strip())
    if not text:
        raise StoryGenerationError("Write some of the story before extracting its characters.")

    return _generate(
        "character_extraction",
        FallbackCategory.CHARACTER_DESCRIPTION,
        {"title": story.title, "content": _excerpt(text, EXTRACTION_TEXT_LIMIT)},
        rng=rng,
    )


def parse_extracted_characters(text: str) -> List[Dict[str, Any]]:
    """Return the ``{"name", "description", "attributes"}`` entries of an extraction report.

    Entries without a usable name are dropped, as are repeats of a name already
    listed (compared case-insensitively).
    """

    parsed = _parse_json(text)
    if isinstance(parsed, dict):
        parsed = parsed.get("characters")
    if not isinstance(parsed, list):
        return []

    characters: List[Dict[str, Any]] = []
    seen = set()
    for item in parsed:
        if not isinstance(item, dict) or not isinstance(item.get("name"), str):
            continue
        name = item["name"].strip()
        if not name or name.casefold() in seen:
            continue
        seen.add(name.casefold())
        description = item.get("description")
        attributes = item.get("attributes")
        characters.append(
            {
                "name": name,
                "description": description.strip() if isinstance(description, str) else "",
                "attributes": attributes if isinstance(attributes, dict) and attributes else None,
            }
        )
    return characters


def analyze_characters(
    story: Any,
    characters: Sequence[Any],
    chapters: Sequence[Any],
    *,
    rng: Optional[RandomSource] = None,
) -> GenerationResult:
    """Review how ``characters`` appear and develop across ``chapters``."""

    if not characters:
        raise StoryGenerationError("Select at least one character to analyse.")
    if not chapters:
        raise StoryGenerationError("Select at least one chapter to analyse.")

    chapter_text = "\n\n".join(
        f"Chapter: {chapter.title}\nContent:\n{_excerpt(chapter.content, 4000) or '(empty)'}" for chapter in chapters
    )
    return _generate(
        "character_analysis",
        FallbackCategory.ANALYZE_CONSISTENCY,
        {
            "title": story.title,
            "characters": describe_characters(characters),
            "chapters": chapter_text,
        },
        rng=rng,
    )


def parse_character_analysis(text: str, characters: Sequence[Any]) -> Optional[Dict[str, Any]]:
    """Parse a character analysis report and attach ``characterId`` by name."""

    report = parse_consistency_report(text)
    if report is None or not isinstance(report.get("results"), list):
        return None

    ids = {character.name.casefold(): character.id for character in characters}
    results = []
    for result in report["results"]:
        if not isinstance(result, dict):
            continue
        name = result.get("name")
        character_id = ids.get(name.strip().casefold()) if isinstance(name, str) else None
        results.append({**result, "characterId": character_id})
    return {**report, "results": results}


# ---------------- helpers ----------------
def parse_prompt_list(response: str) -> List[str]:
    prompts = []
    for line in (response or "").splitlines():
        if line.strip().startswith("-"):
            item = _LIST_ITEM.sub("", line, count=1).strip()
            if item:
                prompts.append(item)
    return prompts


def describe_characters(characters: Iterable[Any]) -> str:
    lines = []
    for character in characters:
        line = f"{character.name}: {character.description or ''}".rstrip()
        attributes = getattr(character, "attributes_dict", None) or {}
        if attributes:
            details = ", ".join(f"{key}: {value}" for key, value in attributes.items())
            line += f" ({details})"
        lines.append(line)
    return "\n".join(lines)


def _parse_json(text: str) -> Any:
    cleaned = _JSON_FENCE.sub("", (text or "").strip())
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        return None


def _pick_backup_prompts(count: int, *, exclude: Sequence[str], rng: Optional[RandomSource]) -> List[str]:
    source = rng if rng is not None else random
    pool = [prompt for prompt in BACKUP_STORY_PROMPTS if prompt not in exclude]
    picks: List[str] = []
    while pool and len(picks) < count:
        picks.append(pool.pop(source.randrange(len(pool))))
    return picks


def _generate(
    prompt_key: str,
    category: FallbackCategory,
    values: Dict[str, Any],
    *,
    rng: Optional[RandomSource] = None,
) -> GenerationResult:
    entry = _load_prompt_entry(prompt_key)
    final_prompt = _format_template(entry, **values)
    text, used_fallback = _call_model(
        _build_messages(entry, final_prompt),
        category,
        entry.get("parameters"),
        rng=rng,
    )
    return GenerationResult(text=text, prompt=final_prompt, used_fallback=used_fallback)


def _call_model(
    messages: List[Dict[str, str]],
    category: FallbackCategory,
    parameters: Optional[Dict[str, Any]],
    *,
    rng: Optional[RandomSource] = None,
    max_retries: Optional[int] = None,
) -> Tuple[str, bool]:
    config = _retry_config(max_retries)
    generator = _get_text_generator()
    if generator is None:
        return get_fallback(category, config, rng=rng), True

    outcome = execute_with_fallback(
        generator.generate_response,
        category,
        args=(messages,),
        config=config,
        kwargs=_extract_generation_parameters(parameters),
        rng=rng,
    )
    if outcome.used_fallback:
        return outcome.value, True

    if not is_valid_response(outcome.value):
        current_app.logger.warning("Model returned an unusable %s response; using fallback content.", category.value)
        return get_fallback(category, config, rng=rng), True
    return outcome.value.strip(), False


def _build_messages(entry: Dict[str, Any], final_prompt: str) -> List[Dict[str, str]]:
    messages = []
    system_prompt = (entry.get("system_prompt") or "").strip()
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": final_prompt})
    return messages


def _format_template(entry: Dict[str, Any], **values: Any) -> str:
    template = entry.get("prompt_template")
    if not template:
        raise StoryGenerationError("Prompt configuration is missing the template text.")
    try:
        return template.format(**values).strip()
    except KeyError as exc:
        raise StoryGenerationError(f"Prompt template refers to an unknown field: {exc}") from exc


def _block(label: str, value: Optional[str], *, lead: str = "") -> str:
    text = (value or "").strip()
    if not text:
        return ""
    if lead:
        return f"{lead}{label}:\n{text}"
    return f"{label}:\n{text}\n\n"


def _excerpt(text: Optional[str], limit: int) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "…"


def _require(value: Optional[str], message: str) -> str:
    text = _optional_text(value, message)
    if not text:
        raise StoryGenerationError(message)
    return text


def _optional_text(value: Any, message: str) -> str:
    """Strip ``value``, rejecting JSON values that are not text."""

    if value is None:
        return ""
    if not isinstance(value, str):
        raise StoryGenerationError(message)
    return value.strip()


def _retry_config(max_retries: Optional[int] = None) -> RetryConfig:
    config = current_app.config
    return RetryConfig(
        max_retries=int(max_retries or config.get("AI_MAX_RETRIES", 3)),
        retry_delay_ms=float(config.get("AI_RETRY_DELAY_MS", 1500)),
        timeout_ms=float(config.get("AI_TIMEOUT_MS", 30000)),
    )


def _load_prompt_entry(key: str) -> Dict[str, Any]:
    config = _load_prompt_config()
    try:
        entry = config[key]
    except KeyError as exc:  # pragma: no cover - configuration issues are caught at runtime
        raise StoryGenerationError(f"Prompt configuration is missing the '{key}' entry.") from exc
    if not isinstance(entry, dict):
        raise StoryGenerationError(f"Prompt configuration entry '{key}' must be a dictionary.")
    return entry


def _load_prompt_config() -> Dict[str, Any]:
    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    config_path = app.config.get("PROMPT_CONFIG_PATH")
    if not config_path:
        raise StoryGenerationError("PROMPT_CONFIG_PATH is not configured.")

    path = Path(config_path)
    if not path.exists():
        raise StoryGenerationError(f"Prompt configuration file not found at: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:  # pragma: no cover - malformed file should be obvious at runtime
            raise StoryGenerationError(f"Unable to parse prompt configuration: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise StoryGenerationError("Prompt configuration must be a JSON object.")

    app.config[PROMPT_CACHE_KEY] = data
    return data


_GENERATION_PARAMETER_KEYS = {"max_tokens", "temperature"}


def _extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to the kwargs the chat client accepts."""

    if not isinstance(parameters, dict):
        return {}

    kwargs: Dict[str, Any] = {}
    for key in _GENERATION_PARAMETER_KEYS:
        if key in parameters and parameters[key] is not None:
            kwargs[key] = parameters[key]
    return kwargs


def _get_text_generator() -> Optional[Any]:  # pragma: no cover - integration point
    app = current_app
    if GENERATOR_CACHE_KEY in app.config:
        return app.config[GENERATOR_CACHE_KEY]

    api_key = app.config.get("OPENAI_API_KEY")
    if not api_key:
        app.logger.info("OPENAI_API_KEY not configured; serving fallback content for generation requests.")
        app.config[GENERATOR_CACHE_KEY] = None
        return None

    try:
        from api_handler import ChatCompletionsGenerator

        app.logger.info("Initialising chat client for model %s", app.config.get("AI_MODEL"))
        generator = ChatCompletionsGenerator(
            model_name=app.config.get("AI_MODEL", ""),
            api_key=api_key,
            base_url=app.config.get("OPENAI_API_BASE_URL"),
        )
    except Exception as exc:
        app.logger.warning("Failed to initialise chat client: %s", exc)
        generator = None
    app.config[GENERATOR_CACHE_KEY] = generator
    return generator
