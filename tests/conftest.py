"""Shared pytest fixtures for Audio Dedup Pipeline tests.

This module contains common fixtures used across multiple test files:
an isolated database, an isolated blob store, a fresh notification hub,
a fake fingerprint extractor, and a FastAPI test client wired to all of them.
Huey runs in immediate mode so queued analysis executes inline.
"""

import base64
import hashlib
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from audiodedup.blobstore import LocalBlobStore, set_blob_store
from audiodedup.db import configure_session_factory, init_db
from audiodedup.fingerprint import FingerprintResult, set_fingerprint_extractor
from audiodedup.huey_app import huey
from audiodedup.notifications import NotificationHub, get_notification_hub, set_notification_hub


class FakeExtractor:
    """Fingerprint extractor keyed by file content.

    Registered contents get their registered fingerprint. Anything else gets
    a fingerprint derived from its SHA256, which is unrelated to every other.
    """

    def __init__(self):
        self.fingerprints: dict[bytes, str] = {}
        self.calls: list[Path] = []
        self.error: Exception | None = None

    def register(self, content: bytes, fingerprint: str) -> None:
        self.fingerprints[content] = fingerprint

    def extract(self, path: Path) -> FingerprintResult:
        self.calls.append(Path(path))
        if self.error is not None:
            raise self.error
        content = Path(path).read_bytes()
        fingerprint = self.fingerprints.get(content)
        if fingerprint is None:
            fingerprint = base64.b64encode(hashlib.sha256(content).digest()).decode("ascii")
        return FingerprintResult(fingerprint=fingerprint, duration_seconds=1.0)


@pytest.fixture(autouse=True)
def huey_immediate():
    """Run huey tasks inline for every test."""
    huey.immediate = True
    yield huey
    huey.immediate = False


@pytest.fixture
def temp_db():
    """Create a temporary database for testing.

    Creates an isolated SQLite database in a temporary directory and installs
    its session factory process-wide.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        engine, SessionFactory = init_db(db_path)
        configure_session_factory(SessionFactory)
        yield db_path, engine, SessionFactory
        configure_session_factory(None)
        engine.dispose()


@pytest.fixture
def session(temp_db):
    """A session on the temporary database."""
    _, _, SessionFactory = temp_db
    session = SessionFactory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def blob_store():
    """Install a blob store rooted in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LocalBlobStore(Path(tmpdir) / "blobs")
        store.ensure_buckets()
        set_blob_store(store)
        yield store
        set_blob_store(None)


@pytest.fixture
def hub():
    """Install a fresh notification hub."""
    previous = get_notification_hub()
    hub = NotificationHub(max_queue=10)
    set_notification_hub(hub)
    yield hub
    set_notification_hub(previous)


@pytest.fixture
def fake_extractor():
    """Install a FakeExtractor as the process-wide fingerprint extractor."""
    extractor = FakeExtractor()
    set_fingerprint_extractor(extractor)
    yield extractor
    set_fingerprint_extractor(None)


@pytest.fixture
def client(temp_db, blob_store, hub, fake_extractor, monkeypatch):
    """Create a FastAPI test client on the temporary database and blob store.

    The app lifespan is pointed at the temporary database instead of the
    configured DB_PATH.

    Yields:
        tuple: (test_client, SessionFactory)
    """
    from services.ingest_api import main

    _, engine, SessionFactory = temp_db
    monkeypatch.setattr(main, "init_db", lambda: (engine, SessionFactory))

    with TestClient(main.app) as client:
        yield client, SessionFactory


@pytest.fixture
def sample_audio_bytes():
    """Arbitrary bytes standing in for an audio file."""
    return b"RIFF fake wav content " * 200
