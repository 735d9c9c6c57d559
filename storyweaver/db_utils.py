"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from typing import Iterable, Set

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db


def _get_column_names(table_name: str) -> Set[str]:
    inspector = inspect(db.engine)
    return {column["name"] for column in inspector.get_columns(table_name)}


def ensure_database_schema() -> None:
    """Ensure that essential schema updates are applied.

    The function is intentionally light-weight so it can run on every
    application start. It creates the ``stories`` table when it is missing and
    adds the ``version`` column to databases created before optimistic
    versioning was introduced.
    """

    try:
        inspector = inspect(db.engine)
        table_names: Iterable[str] = inspector.get_table_names()

        if "stories" not in table_names:
            # Import locally to avoid circular import issues during application setup.
            from .models import StoryRecord

            StoryRecord.__table__.create(bind=db.engine)
            return

        story_columns = _get_column_names("stories")
        if "version" not in story_columns:
            with db.engine.begin() as connection:
                connection.execute(
                    text("ALTER TABLE stories ADD COLUMN version INTEGER NOT NULL DEFAULT 1")
                )
    except SQLAlchemyError:
        # If we fail to introspect or modify the schema we re-raise the error so
        # that the application does not continue in a partially configured state.
        raise
