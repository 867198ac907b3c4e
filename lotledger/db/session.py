# lotledger/db/session.py
"""Database session factory, initialization and transaction scope."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlmodel import SQLModel, create_engine, Session

from lotledger.config import Settings

settings = Settings.from_env()
DATABASE_URL = settings.database_url

# Make sure the parent directory of a local SQLite file exists
if DATABASE_URL.startswith("sqlite:///") and ":memory:" not in DATABASE_URL:
    db_path = DATABASE_URL.replace("sqlite:///", "")
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {},
    echo=False,
)


def create_db_and_tables():
    """Create all tables if they don't exist."""
    # Registers the table classes on SQLModel.metadata
    from lotledger.db import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Session:
    """Get a new database session."""
    return Session(engine)


def init_db():
    """Initialize database on startup."""
    create_db_and_tables()


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """
    Run a block as one transaction on ``session``.

    Commits when the block finishes, rolls back and re-raises on any
    exception so no partial write is ever visible to other sessions.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
