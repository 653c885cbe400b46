"""
Pytest configuration and fixtures for the import engine tests.

Every test gets its own in-memory SQLite database (one shared connection via
StaticPool, SAVEPOINTs enabled) and a local blob store under tmp_path.
"""

import os
import tempfile

# Settings are read at import time; point them at throwaway resources first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BLOB_BACKEND", "local")
os.environ.setdefault("UPLOADS_DIR", tempfile.mkdtemp(prefix="dataport-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from dataport.api.dependencies.context import get_session, get_store
from dataport.db.models.client import Client
from dataport.db.session import enable_sqlite_savepoints, init_db
from dataport.services import import_jobs
from dataport.services.import_controller import ImportJobController
from dataport.storage.blob_store import LocalBlobStore, blob_key

HEADER = "商品コード,商品名,ＪＡＮコード,在庫数,原価,売価"


def build_csv(rows: int, start: int = 1, header: str = HEADER) -> bytes:
    """A UTF-8 product file with ``rows`` distinct product codes."""
    lines = [header]
    for n in range(start, start + rows):
        lines.append(f"P{n:05d},Product {n},49{n:011d},{n % 50},{n}.50,\"1,{n % 1000:03d}\"")
    return ("\r\n".join(lines) + "\r\n").encode("utf-8")


class FakeTask:
    """Stands in for a Celery task; records apply_async calls."""

    def __init__(self):
        self.calls = []

    def apply_async(self, args=None, kwargs=None, **options):
        self.calls.append({"args": args, "kwargs": kwargs, **options})


class StepClock:
    """Monotonic clock that advances one second per reading, starting at 0."""

    def __init__(self):
        self.now = -1.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = Session(bind=engine, autoflush=False)
    yield session
    session.close()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def client_record(db_session):
    db_session.add_all([Client(id=1, name="Acme Retail"), Client(id=2, name="Globex Trading")])
    db_session.commit()
    return db_session.get(Client, 1)


@pytest.fixture
def make_job(db_session, blob_store, client_record):
    """Create a pending job whose file is already in the blob store."""

    def _make(content: bytes, file_name: str = "products.csv", client_id: int = 1):
        job = import_jobs.create_job(
            db_session,
            client_id=client_id,
            file_name=file_name,
            file_size=len(content),
        )
        job.blob_ref = blob_store.put(blob_key(job.id, file_name), content)
        db_session.commit()
        return job

    return _make


@pytest.fixture
def make_controller(db_session, blob_store):
    def _make(**kwargs) -> ImportJobController:
        kwargs.setdefault("chunk_size", 1000)
        kwargs.setdefault("memory_exceeded", lambda: False)
        return ImportJobController(db_session, blob_store, **kwargs)

    return _make


@pytest.fixture
def enqueued(monkeypatch):
    from dataport.api.routers import uploads

    fake = FakeTask()
    monkeypatch.setattr(uploads, "process_import_job", fake)
    return fake


@pytest.fixture
def api_client(db_session, blob_store, client_record, enqueued):
    from dataport.main import app

    app.dependency_overrides[get_session] = lambda: db_session
    app.dependency_overrides[get_store] = lambda: blob_store
    with TestClient(app) as client:
        client.headers.update({"X-Client-Id": "1", "X-User-Email": "ops@acme.example"})
        yield client
    app.dependency_overrides.clear()
