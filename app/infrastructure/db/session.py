"""
Engine, session factory and the per-request / per-job session helpers.

Use cases commit through ``run_in_transaction``; the helpers here only open
and close sessions.
"""
from contextlib import contextmanager
from typing import Iterator

import psycopg
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.config import get_settings


class Base(DeclarativeBase):
    pass


_engine = None
_SessionLocal = None


def get_engine():
    """Process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine(get_settings().get_sqlalchemy_url(), pool_pre_ping=True)
    return _engine


def get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        # autoflush off: position rewrites flush explicitly in two phases
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)
    return _SessionLocal


def get_db() -> Iterator[Session]:
    """
    FastAPI dependency, one session per request. Uncommitted work is rolled
    back when the session closes.

    Usage:
        @router.get("/boards")
        def list_boards(db: Session = Depends(get_db)):
            ...
    """
    with session_scope() as db:
        yield db


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for code running outside a request (scheduler jobs, scripts)."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def check_db_connection() -> None:
    """
    Readiness probe against PostgreSQL (raw psycopg, bypasses the pool)

    Raises:
        psycopg.OperationalError: database is unreachable
    """
    with psycopg.connect(get_settings().DATABASE_URL, connect_timeout=3) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1;")
            cur.fetchone()
