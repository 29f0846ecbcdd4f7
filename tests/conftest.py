import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("PINATA_JWT", "")

from typing import Optional

import pytest
from fastapi import Header
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import get_db, init_schema
from app.errors import AuthenticationError
from app.main import app
from app.etherith.api import get_authenticated_uid, get_content_store
from app.etherith.content_store import InMemoryContentStore
from app.etherith.orchestrator import ArchivalOrchestrator
from app.etherith.repository import ArtifactRepository


class FakeContentStore(InMemoryContentStore):
    """In-memory store with failure injection."""

    def __init__(self):
        super().__init__(gateway_url="https://gateway.test")
        self.store_error = None
        self.metadata_error = None
        self.fetch_errors = []
        self.store_calls = 0
        self.fetch_calls = 0

    def store(self, data, mime_type=None, timeout=None):
        self.store_calls += 1
        if self.store_error is not None:
            raise self.store_error
        return super().store(data, mime_type, timeout)

    def store_metadata(self, document, timeout=None):
        if self.metadata_error is not None:
            raise self.metadata_error
        return super().store_metadata(document, timeout)

    def fetch(self, locator, timeout=None):
        self.fetch_calls += 1
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        return super().fetch(locator, timeout)


@pytest.fixture
def test_db_engine():
    """Fresh in-memory SQLite database with the archive schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def enable_foreign_keys(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    init_schema(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def repository(db):
    return ArtifactRepository(db)


@pytest.fixture
def content_store():
    return FakeContentStore()


@pytest.fixture
def orchestrator(repository, content_store):
    return ArchivalOrchestrator(
        repository,
        content_store,
        max_payload_bytes=1024 * 1024,
        retry_backoff_seconds=0,
        pin_metadata=True,
    )


@pytest.fixture
def community_setup(repository):
    """
    Three users and two communities.

    u1 owns artifacts, u2 belongs to c1, u3 belongs to c2 only.
    """
    for uid in ("u1", "u2", "u3"):
        repository.create_user(uid, email=f"{uid}@example.org", username=uid, full_name=f"User {uid}")
    c1 = repository.create_community("Yoruba Diaspora Archive", community_id="c1", cultural_focus=["yoruba"])
    c2 = repository.create_community("Andean Weavers", community_id="c2", cultural_focus=["quechua"])
    repository.add_membership("c1", "u2")
    repository.add_membership("c2", "u3")
    return {"communities": (c1.id, c2.id)}


def _fake_uid(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """Treat the bearer token itself as the verified uid."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid authorization header format")
    return token.strip()


@pytest.fixture
def client(session_factory, content_store):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_content_store] = lambda: content_store
    app.dependency_overrides[get_authenticated_uid] = _fake_uid
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
