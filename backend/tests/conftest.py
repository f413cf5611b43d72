"""
Pytest configuration and fixtures for EngliQuest admin backend tests.

Provides:
- In-memory SQLite database per test
- FastAPI test client with auth and Gemini overridden
- Learner and batch fixtures
- Fast retry settings (no backoff sleeps)
"""

import os

# Set test environment before importing the app
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ.pop("OPENROUTER_API_KEY", None)

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from engliquest.db import Base, get_db, get_session_factory
from engliquest.gemini_client import get_generator_factory
from engliquest.main import app
from engliquest.models import Learner
from engliquest.routers.auth import User, get_current_admin
from engliquest.settings import settings
from engliquest.templates import create_batch

from mocks.gemini_mocks import FakeGenerator, question_models


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """Keep retries but never sleep between them"""
    monkeypatch.setattr(settings, "generation_max_retries", 1)
    monkeypatch.setattr(settings, "generation_base_delay", 0.0)


@pytest.fixture(scope="function")
def session_factory() -> Generator[sessionmaker, None, None]:
    """One private in-memory database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def client(session_factory, generator) -> Generator[TestClient, None, None]:
    """API client logged in as admin, talking to the test database and the fake generator"""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_generator_factory] = lambda: (lambda: generator)
    app.dependency_overrides[get_current_admin] = lambda: User(username="admin")
    # No context manager: startup (schema creation, maintenance loop) stays off
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def learner(db: Session) -> Learner:
    row = Learner(
        user_id="learner-1",
        display_name="Test Learner",
        interests=["Sports & Games", "Music & Arts", "Nature & Animals"],
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def batch(db: Session):
    """A saved batch of 10 pending Vocabulary questions for Sports & Games A1"""
    return create_batch(db, "Sports & Games", "A1", "Vocabulary", question_models(10), requested=10)
