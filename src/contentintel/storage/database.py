"""SQLite database initialization and session management."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Callable

from sqlmodel import Session, SQLModel, create_engine

# Import models so SQLModel registers them
from contentintel.storage import models as _models  # noqa: F401

_engines: dict[str, object] = {}

SessionFactory = Callable[[], Session]

# (table, column, column type) added after the first schema shipped
_MIGRATIONS = [
    ("source", "last_fetched_at", "TIMESTAMP"),
    ("pipelinesettings", "retention_months", "INTEGER DEFAULT 6"),
    ("pipelinesettings", "sop_min_impact", "VARCHAR DEFAULT 'high'"),
    ("sopdraft", "template_set_id", "INTEGER"),
]


def _migrate_if_needed(db_path: Path) -> None:
    """Add any missing columns to existing tables (lightweight migration).

    This handles a database created before new columns were added to the
    models. Tables that do not exist yet are left to ``create_all``.
    """
    if not db_path.exists():
        return

    conn = sqlite3.connect(str(db_path))
    try:
        for table, col, col_type in _MIGRATIONS:
            cursor = conn.execute(f"PRAGMA table_info({table})")
            existing_cols = {row[1] for row in cursor.fetchall()}
            if existing_cols and col not in existing_cols:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {col} {col_type}")

        conn.commit()
    finally:
        conn.close()


def get_engine(db_path: Path):
    """Get or create a SQLAlchemy engine for the given database path."""
    key = str(db_path)
    if key not in _engines:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _migrate_if_needed(db_path)
        engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
        SQLModel.metadata.create_all(engine)
        _engines[key] = engine
    return _engines[key]


def get_session(db_path: Path) -> Session:
    """Create a new database session.

    Objects stay readable after commit so they can be handed to code that
    runs outside the session (fetchers, delivery).
    """
    engine = get_engine(db_path)
    return Session(engine, expire_on_commit=False)


def session_factory(db_path: Path) -> SessionFactory:
    """Return a zero-argument callable producing sessions for ``db_path``."""
    return lambda: get_session(db_path)
