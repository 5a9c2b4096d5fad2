"""
FileVault Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v

Nothing here talks to a real Redis, database server or broker: the catalog
runs on in-memory SQLite, blobs go to tmp_path, sessions use a dict-backed
mock Redis client and the derivation queue uses kombu's memory transport.
"""

from __future__ import annotations

import base64
import io
import uuid
from typing import Dict
from unittest.mock import MagicMock

import pytest
from PIL import Image

from filevault.db.session import CatalogDatabase
from filevault.derivation.queue import DerivationQueue
from filevault.derivation.worker import DerivationWorker
from filevault.engine.cache import RedisCache
from filevault.engine.security import SessionValidator
from filevault.files.catalog import Catalog
from filevault.files.ingest import IngestService
from filevault.files.retrieval import RetrievalService
from filevault.storage.content_store import LocalContentStore


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep a developer's FOLDER_PATH from leaking into config tests."""
    monkeypatch.delenv("FOLDER_PATH", raising=False)


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def make_image_bytes(width: int = 800, height: int = 600, format: str = "PNG", color=(200, 40, 40)) -> bytes:
    """Render a solid-color image with Pillow."""
    img = Image.new("RGB", (width, height), color)
    buf = io.BytesIO()
    img.save(buf, format=format)
    return buf.getvalue()


@pytest.fixture
def image_factory():
    return make_image_bytes


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes(800, 600)


@pytest.fixture
def png_b64(png_bytes) -> str:
    return base64.b64encode(png_bytes).decode("ascii")


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def catalog_db():
    db = CatalogDatabase("sqlite://")
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def catalog(catalog_db) -> Catalog:
    return Catalog(catalog_db)


@pytest.fixture
def store(tmp_path) -> LocalContentStore:
    s = LocalContentStore(str(tmp_path / "files"))
    s.ensure_root()
    return s


@pytest.fixture
def redis_data() -> Dict[str, str]:
    """Backing dict for the mock Redis client (keys include the prefix)."""
    return {}


@pytest.fixture
def mock_redis(redis_data):
    """Return a mock Redis client backed by redis_data."""
    client = MagicMock()
    client.ping.return_value = True
    client.get.side_effect = lambda key: redis_data.get(key)

    def _set(key, value, ex=None):
        redis_data[key] = value
        return True

    def _delete(key):
        return 1 if redis_data.pop(key, None) is not None else 0

    client.set.side_effect = _set
    client.delete.side_effect = _delete
    client.exists.side_effect = lambda key: int(key in redis_data)
    return client


@pytest.fixture
def session_store(mock_redis) -> RedisCache:
    cache = RedisCache(prefix="auth_", default_ttl=86400)
    cache.attach(mock_redis)
    return cache


@pytest.fixture
def sessions(session_store) -> SessionValidator:
    return SessionValidator(session_store)


@pytest.fixture
def derivation_queue():
    """Open queue on kombu's memory transport, unique per test."""
    queue = DerivationQueue("memory://", name=f"test.derivation.{uuid.uuid4().hex}")
    queue.open()
    yield queue
    queue.close()


@pytest.fixture
def event_log():
    """Stands in for AsyncLogQueue; inspect event_log.push.call_args_list."""
    log = MagicMock()
    log.push.return_value = True
    return log


def pushed_events(event_log) -> list:
    """Event names pushed to a mock event log, in order."""
    return [c.args[0].data["event"] for c in event_log.push.call_args_list]


@pytest.fixture
def events(event_log):
    """Callable returning the event names pushed so far."""
    return lambda: pushed_events(event_log)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def ingest(catalog, store, derivation_queue, event_log) -> IngestService:
    return IngestService(catalog, store, derivation_queue, event_log=event_log)


@pytest.fixture
def retrieval(catalog, store, sessions, event_log) -> RetrievalService:
    return RetrievalService(catalog, store, sessions, event_log=event_log)


@pytest.fixture
def worker(catalog, store, event_log) -> DerivationWorker:
    return DerivationWorker(catalog, store, widths=(500, 250, 100), max_attempts=3, event_log=event_log)


def blob_names(store: LocalContentStore) -> set:
    """Names of the blobs currently in the store (temp files excluded)."""
    return {p.name for p in store.root.iterdir() if not p.name.startswith(".tmp_")}


@pytest.fixture
def blobs(store):
    """Callable returning the current blob names in the store."""
    return lambda: blob_names(store)
