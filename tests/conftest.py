"""
Pytest fixtures for testing
"""
import pytest
from sqlalchemy import create_engine, JSON
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool

from app.auth import hash_password
from app.domain.permissions import Principal
from app.infrastructure.db import models  # noqa: F401  (registers tables)
from app.infrastructure.db.models import User
from app.infrastructure.db.session import Base


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient), with JSONB→JSON mapping."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    # SQLite has no JSONB, remap to JSON for tests
    for table in Base.metadata.tables.values():
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def make_user(db_session):
    """
    Factory for approved, verified users.

        admin = make_user("admin")
        emp = make_user("employee", email="bob.euroshub@gmail.com")
    """
    counter = {"n": 0}

    def _make(role: str = "employee", email: str | None = None, password: str = "secret123", **fields) -> User:
        counter["n"] += 1
        n = counter["n"]
        values = dict(
            email=email or f"{role}{n}.euroshub@gmail.com",
            password_hash=hash_password(password),
            role=role,
            name=f"{role.title()} {n}",
            email_verified=True,
            account_status="approved",
            id_assigned=True,
        )
        values.update(fields)
        user = User(**values)
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_principal(make_user):
    """Create a user of ``role`` and return its Principal."""
    def _make(role: str = "employee", **fields) -> Principal:
        user = make_user(role, **fields)
        return Principal(id=user.id, role=user.role, name=user.fullname or user.name)

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin", email="admin@example.com")


@pytest.fixture
def admin_principal(admin) -> Principal:
    return Principal(id=admin.id, role=admin.role, name=admin.name)
