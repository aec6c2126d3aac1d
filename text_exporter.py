"""Helpers for exporting stories to plain text, Markdown and HTML files."""
from __future__ import annotations

from html import escape
from pathlib import Path
from typing import Iterable, List, Optional


class TextExportError(RuntimeError):
    """Raised when exporting data to a text file fails."""


def _clean(value: Optional[str]) -> str:
    """Return ``value`` stripped of leading/trailing whitespace."""

    if not value:
        return ""
    return str(value).strip()


def _heading(text: str, level: int, markdown: bool) -> str:
    if markdown:
        return f"{'#' * level} {text}"
    return text.upper() if level <= 2 else text


def _story_body(story: object, chapters: List[object]) -> List[tuple[str, str]]:
    if chapters:
        return [
            (_clean(getattr(chapter, "title", "")) or "Untitled Chapter", _clean(getattr(chapter, "content", "")))
            for chapter in chapters
        ]
    paragraphs = getattr(story, "paragraphs", None) or []
    return [("", "\n\n".join(p.strip() for p in paragraphs if p and p.strip()))]


def render_story_text(
    story: object,
    chapters: Iterable[object] = (),
    characters: Iterable[object] = (),
    *,
    markdown: bool = False,
    include_outline: bool = False,
    include_characters: bool = False,
) -> str:
    """Render ``story`` as one text document.

    The body is the chapters in order, or the story's running text when it
    has no chapters yet. Characters and the outline are prepended on request.
    """

    title = _clean(getattr(story, "title", "")) or "Untitled Story"
    lines: list[str] = [_heading(title, 1, markdown)]

    character_list = list(characters) if include_characters else []
    if character_list:
        lines.extend(["", _heading("Characters", 2, markdown)])
        for character in character_list:
            lines.extend(["", _heading(_clean(getattr(character, "name", "")) or "Unnamed", 3, markdown)])
            description = _clean(getattr(character, "description", ""))
            if description:
                lines.append(description)
            attributes = getattr(character, "attributes_dict", None) or {}
            for key, value in attributes.items():
                lines.append(f"- {key}: {value}")

    outline_text = _clean(getattr(story, "outline", "")) if include_outline else ""
    if outline_text:
        lines.extend(["", _heading("Outline", 2, markdown), "", outline_text])

    lines.extend(["", _heading("Story", 2, markdown)])
    body = _story_body(story, list(chapters))
    for chapter_title, content in body:
        if chapter_title:
            lines.extend(["", _heading(chapter_title, 3, markdown)])
        lines.extend(["", content or "(No text yet.)"])

    return "\n".join(lines).rstrip() + "\n"


_HTML_STYLE = (
    "body { font-family: Georgia, serif; max-width: 800px; margin: 0 auto; padding: 20px; }\n"
    "h1 { text-align: center; }\n"
    "h2 { margin-top: 2em; border-bottom: 1px solid #eee; padding-bottom: 0.5em; }\n"
    ".character, .chapter { margin-bottom: 2em; }"
)


def _html_paragraphs(text: str, separator: str = "\n\n") -> List[str]:
    return [f"<p>{escape(part.strip())}</p>" for part in text.split(separator) if part.strip()]


def render_story_html(
    story: object,
    chapters: Iterable[object] = (),
    characters: Iterable[object] = (),
    *,
    include_outline: bool = False,
    include_characters: bool = False,
) -> str:
    """Render ``story`` as a standalone HTML page with the same sections as the text export."""

    title = escape(_clean(getattr(story, "title", "")) or "Untitled Story")
    parts: list[str] = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{title}</title>",
        f"<style>\n{_HTML_STYLE}\n</style>",
        "</head>",
        "<body>",
        f"<h1>{title}</h1>",
    ]

    character_list = list(characters) if include_characters else []
    if character_list:
        parts.append("<h2>Characters</h2>")
        for character in character_list:
            parts.append('<div class="character">')
            parts.append(f"<h3>{escape(_clean(getattr(character, 'name', '')) or 'Unnamed')}</h3>")
            description = _clean(getattr(character, "description", ""))
            if description:
                parts.append(f"<p>{escape(description)}</p>")
            attributes = getattr(character, "attributes_dict", None) or {}
            if attributes:
                parts.append("<ul>")
                parts.extend(
                    f"<li><strong>{escape(str(key))}:</strong> {escape(str(value))}</li>"
                    for key, value in attributes.items()
                )
                parts.append("</ul>")
            parts.append("</div>")

    outline_text = _clean(getattr(story, "outline", "")) if include_outline else ""
    if outline_text:
        parts.append("<h2>Outline</h2>")
        parts.append('<div class="outline">')
        parts.extend(_html_paragraphs(outline_text, "\n"))
        parts.append("</div>")

    parts.append("<h2>Story</h2>")
    for chapter_title, content in _story_body(story, list(chapters)):
        parts.append('<div class="chapter">')
        if chapter_title:
            parts.append(f"<h3>{escape(chapter_title)}</h3>")
        parts.extend(_html_paragraphs(content) or ["<p>(No text yet.)</p>"])
        parts.append("</div>")

    parts.extend(["</body>", "</html>"])
    return "\n".join(parts) + "\n"


def export_story_to_txt(
    story: object,
    chapters: Iterable[object] = (),
    characters: Iterable[object] = (),
    *,
    output_path: Optional[Path] = None,
    markdown: bool = False,
    include_outline: bool = False,
    include_characters: bool = False,
) -> Path:
    """Write ``story`` to a UTF-8 encoded text or Markdown file."""

    text_blob = render_story_text(
        story,
        chapters,
        characters,
        markdown=markdown,
        include_outline=include_outline,
        include_characters=include_characters,
    )

    default_name = "temp.md" if markdown else "temp.txt"
    resolved_path = Path(output_path) if output_path else Path(default_name)

    try:
        resolved_path.write_text(text_blob, encoding="utf-8")
    except OSError as exc:  # pragma: no cover - IO failure
        raise TextExportError(f"Unable to export text file: {exc}") from exc

    return resolved_path


__all__ = ["TextExportError", "export_story_to_txt", "render_story_html", "render_story_text"]
