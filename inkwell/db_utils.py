"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from typing import Iterable, Set

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db

# Columns added to ``stories`` after the first release, with their DDL.
_LATER_STORY_COLUMNS = {
    "summary": "ALTER TABLE stories ADD COLUMN summary TEXT",
    "outline": "ALTER TABLE stories ADD COLUMN outline TEXT",
    "world_setting": "ALTER TABLE stories ADD COLUMN world_setting TEXT",
    "story_status": (
        "ALTER TABLE stories ADD COLUMN story_status VARCHAR(50) NOT NULL DEFAULT 'in_progress'"
    ),
}


def _get_column_names(table_name: str) -> Set[str]:
    inspector = inspect(db.engine)
    return {column["name"] for column in inspector.get_columns(table_name)}


def ensure_database_schema() -> None:
    """Ensure that essential schema updates are applied.

    Runs on every application start. Missing tables are created, and a
    ``stories`` table from an older database gets the outline, summary,
    world setting and status columns added in place.
    """

    try:
        inspector = inspect(db.engine)
        table_names: Iterable[str] = inspector.get_table_names()

        if "stories" not in table_names:
            db.create_all()
            inspector = inspect(db.engine)
            table_names = inspector.get_table_names()

        # Import locally to avoid circular import issues during application setup.
        from .models import Chapter, Character, StoryVersion

        required_tables = {
            "chapters": Chapter.__table__,
            "characters": Character.__table__,
            "story_versions": StoryVersion.__table__,
        }

        for table_name, table in required_tables.items():
            if table_name not in table_names:
                table.create(bind=db.engine)

        story_columns = _get_column_names("stories")
        for column, statement in _LATER_STORY_COLUMNS.items():
            if column not in story_columns:
                with db.engine.begin() as connection:
                    connection.execute(text(statement))
    except SQLAlchemyError:
        # A half-migrated schema is worse than a failed start.
        raise
