"""Shared fixtures: an in-memory database, seeded users and an API client."""
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fieldsync_core import models
from fieldsync_core.config import get_settings
from fieldsync_core.database import get_db

from .helpers import make_user


@pytest.fixture
def engine():
    # One shared connection so every session (and the API threadpool) sees the same in-memory database
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def admin_id(db) -> UUID:
    return make_user(db, models.AppRole.ADMIN, "Alice", "Admin")


@pytest.fixture
def employee_id(db) -> UUID:
    return make_user(db, models.AppRole.EMPLOYEE, "Erik", "Employee")


@pytest.fixture
def other_employee_id(db) -> UUID:
    return make_user(db, models.AppRole.EMPLOYEE, "Olga", "Other")


@pytest.fixture
def review_mode(monkeypatch):
    """Completed work lands in pending_review."""
    monkeypatch.setattr(get_settings(), "require_review", True)


@pytest.fixture
def client(session_factory):
    from fieldsync_core.api.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
