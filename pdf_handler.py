"""Utility helpers for exporting stories to PDF documents.

Rendering uses the fpdf2 Latin-1 core fonts, so text is normalised first:
typographic punctuation is mapped to ASCII and anything else outside
Latin-1 becomes ``?``.
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional
import textwrap
import unicodedata

from fpdf import FPDF


class PDFExportError(RuntimeError):
    """Raised when exporting data to PDF fails."""


_PDF_LATIN1_REPLACEMENTS = {
    ord("\u2010"): "-",  # hyphen
    ord("\u2011"): "-",  # non-breaking hyphen
    ord("\u2012"): "-",  # figure dash
    ord("\u2013"): "-",  # en dash
    ord("\u2014"): "-",  # em dash
    ord("\u2015"): "-",  # horizontal bar
    ord("\u2212"): "-",  # minus sign
    ord("\u2018"): "'",  # left single quote
    ord("\u2019"): "'",  # right single quote / apostrophe
    ord("\u201A"): "'",  # single low-9 quote
    ord("\u201B"): "'",  # single high-reversed-9 quote
    ord("\u2032"): "'",  # prime
    ord("\u201C"): '"',  # left double quote
    ord("\u201D"): '"',  # right double quote
    ord("\u201E"): '"',  # double low-9 quote
    ord("\u00AB"): '"',  # left-pointing double angle quote
    ord("\u00BB"): '"',  # right-pointing double angle quote
    ord("\u2026"): "...",  # ellipsis
    ord("\u3001"): ",",  # ideographic comma
    ord("\u3002"): ".",  # ideographic full stop
    ord("\u00A0"): " ",  # non-breaking space
    ord("\u2009"): " ",  # thin space
    ord("\u202F"): " ",  # narrow no-break space
    ord("\u200B"): "",  # zero-width space
    ord("\ufeff"): "",  # BOM
}


def pdf_safe_text(text: str) -> str:
    """Return ``text`` normalised for the PDF Latin-1 core fonts."""

    normalized = unicodedata.normalize("NFKC", text or "")
    normalized = normalized.replace("\t", " ")
    replaced = normalized.translate(_PDF_LATIN1_REPLACEMENTS)
    return replaced.encode("latin-1", "replace").decode("latin-1")


def _pdf_wrapped_text(text: str, *, width: int = 100) -> str:
    safe_text = pdf_safe_text(text)
    if not safe_text:
        return ""

    wrapped_lines = []
    for raw_line in safe_text.splitlines():
        if not raw_line:
            wrapped_lines.append("")
            continue
        line_chunks = textwrap.wrap(
            raw_line,
            width=width,
            break_long_words=True,
            break_on_hyphens=False,
        )
        wrapped_lines.extend(line_chunks or [""])

    return "\n".join(wrapped_lines)


def _safe_multi_cell(pdf: FPDF, width: float, height: float, text: str) -> None:
    """Render ``text`` within a multi-cell, retrying with a fresh line on failure."""

    sanitized = _pdf_wrapped_text(text)
    if not sanitized and not text:
        return

    try:
        pdf.set_x(pdf.l_margin)
        pdf.multi_cell(width, height, sanitized)
    except Exception:
        pdf.ln(height)
        pdf.set_x(pdf.l_margin)
        try:
            pdf.multi_cell(width, height, sanitized)
        except Exception as exc:
            raise PDFExportError(f"Failed to render PDF content: {exc}") from exc


def _write_paragraphs(pdf: FPDF, width: float, text: str) -> None:
    for paragraph in text.split("\n\n"):
        cleaned = paragraph.strip()
        if not cleaned:
            continue
        _safe_multi_cell(pdf, width, 6.5, cleaned)
        pdf.ln(1.5)


def build_story_pdf(
    story: object,
    chapters: Iterable[object] = (),
    characters: Iterable[object] = (),
    *,
    include_outline: bool = False,
    include_characters: bool = False,
) -> bytes:
    """Lay out ``story`` as a PDF and return the document bytes."""

    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.set_left_margin(15)
    pdf.set_right_margin(15)
    pdf.set_cell_margin(1)

    effective_width = pdf.w - pdf.l_margin - pdf.r_margin

    pdf.add_page()
    pdf.set_font("Times", "B", 18)
    _safe_multi_cell(pdf, effective_width, 10, getattr(story, "title", None) or "Untitled Story")
    pdf.ln(4)

    character_list = list(characters) if include_characters else []
    if character_list:
        pdf.set_font("Times", "B", 14)
        _safe_multi_cell(pdf, effective_width, 8, "Characters")
        for character in character_list:
            pdf.set_font("Times", "B", 12)
            _safe_multi_cell(pdf, effective_width, 6.5, getattr(character, "name", None) or "Unnamed")
            pdf.set_font("Times", "", 12)
            description = (getattr(character, "description", "") or "").strip()
            if description:
                _safe_multi_cell(pdf, effective_width, 6, description)
            attributes = getattr(character, "attributes_dict", None) or {}
            for key, value in attributes.items():
                _safe_multi_cell(pdf, effective_width, 6, f"- {key}: {value}")
            pdf.ln(2)

    outline_text = (getattr(story, "outline", "") or "").strip() if include_outline else ""
    if outline_text:
        pdf.set_font("Times", "B", 14)
        _safe_multi_cell(pdf, effective_width, 8, "Outline")
        pdf.set_font("Times", "", 12)
        _safe_multi_cell(pdf, effective_width, 6, outline_text)

    chapter_list = list(chapters)
    if chapter_list:
        for chapter in chapter_list:
            pdf.add_page()
            pdf.set_font("Times", "B", 14)
            _safe_multi_cell(pdf, effective_width, 10, getattr(chapter, "title", None) or "Untitled Chapter")
            pdf.set_font("Times", "", 12)
            content = (getattr(chapter, "content", "") or "").strip() or "(No text yet.)"
            _write_paragraphs(pdf, effective_width, content)
    else:
        pdf.set_font("Times", "", 12)
        paragraphs = getattr(story, "paragraphs", None) or []
        _write_paragraphs(pdf, effective_width, "\n\n".join(paragraphs) or "(No text yet.)")

    try:
        return bytes(pdf.output())
    except Exception as exc:
        raise PDFExportError(f"Unable to export PDF: {exc}") from exc


def export_story_to_pdf(
    story: object,
    chapters: Iterable[object] = (),
    characters: Iterable[object] = (),
    *,
    output_path: Optional[Path] = None,
    include_outline: bool = False,
    include_characters: bool = False,
) -> Path:
    """Create a PDF for ``story`` on disk and return the path."""

    document = build_story_pdf(
        story,
        chapters,
        characters,
        include_outline=include_outline,
        include_characters=include_characters,
    )
    resolved_path = Path(output_path) if output_path else Path("temp.pdf")

    try:
        resolved_path.write_bytes(document)
    except OSError as exc:  # pragma: no cover - IO failure
        raise PDFExportError(f"Unable to export PDF: {exc}") from exc

    return resolved_path


__all__ = ["PDFExportError", "build_story_pdf", "export_story_to_pdf", "pdf_safe_text"]
