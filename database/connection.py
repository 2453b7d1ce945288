"""
Database engine and session management.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from core.config import settings
from .base import Base


class DatabaseConnection:
    """Owns the engine and the session factory."""

    def __init__(self, url: str = None):
        self.url = url or settings.DATABASE_URL
        connect_args = {"check_same_thread": False} if self.url.startswith("sqlite") else {}
        self.engine = create_engine(
            self.url,
            connect_args=connect_args,
            pool_pre_ping=True,
        )
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Session context manager: rolls back on error, always closes."""
        session = self.SessionLocal()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_session_direct(self) -> Session:
        """Plain session for background tasks. Caller must close it."""
        return self.SessionLocal()


db = DatabaseConnection()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    session = db.SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db():
    """Create any missing tables."""
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=db.engine, checkfirst=True)


def reset_db():
    """Drop and recreate all tables. Development only."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=db.engine)
    Base.metadata.create_all(bind=db.engine)
