"""
Database engine + session factory for the primary lead store.

Defaults to a local SQLite file; Postgres in production via DATABASE_URL.
The schema itself is owned by Alembic (see alembic/versions).
"""
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from leadchat.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


def make_engine(database_url: str):
    """Build an engine with the right kwargs for SQLite vs Postgres."""
    # Hosting platforms inject postgres:// but SQLAlchemy 2.x requires postgresql://
    url = database_url.replace('postgres://', 'postgresql://', 1)
    if url.startswith('sqlite'):
        # Sink writes happen on fan-out worker threads
        return create_engine(url, connect_args={'check_same_thread': False})
    return create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine)


def get_session():
    """Return a new DB session."""
    return SessionLocal()


@contextmanager
def session_scope(session_factory=None):
    """Commit on success, roll back and re-raise on failure, always close."""
    session = (session_factory or get_session)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
