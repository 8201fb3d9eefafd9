"""
Database engine and session lifecycle (SQLAlchemy)

Request handlers get a session through the ``get_db`` dependency; background
jobs use ``session_scope()``. Both close the session when done; neither
commits on its own (use cases commit).
"""
from contextlib import contextmanager
from typing import Iterator

import psycopg
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from agenda.config import get_settings
from agenda.errors import StoreUnavailable


class Base(DeclarativeBase):
    """Declarative base for scheduling models"""
    pass


_engine = None
_SessionLocal = None


def get_engine():
    """Engine for DATABASE_URL, built on first use"""
    global _engine
    if _engine is None:
        url = get_settings().get_sqlalchemy_url()
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    return _engine


def get_session_factory():
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)
    return _SessionLocal


def get_db() -> Iterator[Session]:
    """
    FastAPI dependency: one session per request

    Usage:
        @router.get("/appointments")
        def get_appointments(db: Session = Depends(get_db)):
            ...
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for a scheduled job; uncommitted work is rolled back on error."""
    db = get_session_factory()()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_db_connection() -> None:
    """
    Readiness probe against PostgreSQL (raw psycopg)

    Raises:
        StoreUnavailable: the database does not answer
    """
    settings = get_settings()
    try:
        with psycopg.connect(settings.DATABASE_URL, connect_timeout=3) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
    except psycopg.OperationalError as e:
        raise StoreUnavailable(f"readiness check failed: {e}") from e
