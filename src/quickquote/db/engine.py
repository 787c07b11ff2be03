"""SQLModel engine singleton."""
from sqlmodel import SQLModel, create_engine

from quickquote.config import get_settings

_engine = None


def init_db(engine) -> None:
    """Create all tables and apply additive migrations."""
    # Import all models so metadata is populated before create_all
    from quickquote.models.draft import Draft  # noqa
    from quickquote.models.queue import QueueItem  # noqa
    from quickquote.models.setting import AppSetting  # noqa
    SQLModel.metadata.create_all(engine)
    from quickquote.db.migrations import run_migrations
    run_migrations(engine)


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},  # SQLite only; safe for FastAPI
        )
        init_db(_engine)
    return _engine
