"""Flask CLI commands."""
from __future__ import annotations

from pathlib import Path

import click
from flask.cli import with_appcontext

from pdf_handler import PDFExportError, export_story_to_pdf
from text_exporter import TextExportError, export_story_to_txt

from .extensions import db
from .models import Story


@click.command("export-story")
@click.argument("story_id", type=int)
@click.argument("output_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "export_format",
    type=click.Choice(["txt", "markdown", "pdf"]),
    default="txt",
    show_default=True,
)
@click.option("--include-outline/--no-include-outline", default=False)
@click.option("--include-characters/--no-include-characters", default=False)
@with_appcontext
def export_story_command(
    story_id: int,
    output_path: Path,
    export_format: str,
    include_outline: bool,
    include_characters: bool,
) -> None:
    """Write story STORY_ID to OUTPUT_PATH."""

    story = db.session.get(Story, story_id)
    if story is None:
        raise click.ClickException(f"Story {story_id} does not exist.")

    options = {
        "output_path": output_path,
        "include_outline": include_outline,
        "include_characters": include_characters,
    }
    try:
        if export_format == "pdf":
            written = export_story_to_pdf(story, story.chapters, story.characters, **options)
        else:
            written = export_story_to_txt(
                story,
                story.chapters,
                story.characters,
                markdown=export_format == "markdown",
                **options,
            )
    except (PDFExportError, TextExportError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Exported '{story.title}' to {written}.")
