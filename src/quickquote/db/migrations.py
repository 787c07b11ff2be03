"""
Database migrations for the local store.

Uses SQLite ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent.

Called from init_db() after create_all() so both fresh installs and
databases created by older releases are handled without manual steps.
"""
from sqlalchemy import text


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times. Supports SQLite only (uses PRAGMA table_info).

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    with engine.connect() as conn:
        # QueueItem: backoff gate for retried items
        _add_column_if_missing(conn, "queueitem", "next_eligible_at", "INTEGER")
        # QueueItem: processing lease so concurrent workers never share an item
        _add_column_if_missing(conn, "queueitem", "claimed_at", "INTEGER")

        # Draft: share tracking arrived after the first release
        _add_column_if_missing(conn, "draft", "shared_at", "INTEGER")
        _add_column_if_missing(conn, "draft", "share_method", "TEXT")

        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name (lowercase, as SQLite stores it).
        column: Column name to add.
        col_type: SQLite type string, e.g. "INTEGER", "REAL", "TEXT".
    """
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    existing_columns = {row[1] for row in result}
    if column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
