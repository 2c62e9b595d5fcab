"""Pytest configuration and fixtures."""
import os
import tempfile

# Settings and the engine are built at import time, so point them at a
# throwaway SQLite database before anything from wms is imported.
_TEST_DIR = tempfile.mkdtemp(prefix="wms-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_DIR, "uploads")
os.environ["INGESTION_BACKEND"] = "inline"
os.environ["PROGRESS_BACKEND"] = "database"
os.environ["PUBLISH_PROGRESS"] = "false"

import csv  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from wms.config import get_settings  # noqa: E402
from wms.database import Base, SessionLocal, engine  # noqa: E402
from wms.main import app  # noqa: E402
from wms.models import Warehouse  # noqa: E402
from wms.services.progress import SqlProgressStore  # noqa: E402


@pytest.fixture(autouse=True)
def test_db():
    """Create all tables for a test and drop them afterwards."""
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    """Database session for arranging and checking rows."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    """HTTP client; background tasks run before each call returns."""
    return TestClient(app)


@pytest.fixture
def warehouses(db):
    """Two warehouses: 1 (Bangalore) and 2 (Delhi)."""
    db.add_all([
        Warehouse(id=1, name="Bangalore", code="BLR"),
        Warehouse(id=2, name="Delhi", code="DEL"),
    ])
    db.commit()
    return {1: "Bangalore", 2: "Delhi"}


@pytest.fixture
def store():
    """Progress store backed by the test database."""
    return SqlProgressStore(SessionLocal, retention_seconds=3600)


@pytest.fixture
def small_chunks():
    """Settings with tiny chunk sizes so a handful of rows spans several chunks."""
    return get_settings().model_copy(
        update={
            "master_data_chunk_size": 2,
            "inbound_chunk_size": 2,
            "qc_chunk_size": 2,
            "picking_chunk_size": 2,
        }
    )


@pytest.fixture
def write_csv(tmp_path):
    """Write rows (header first) to a CSV file and return its path."""

    def _write(rows, name="upload.csv"):
        path = tmp_path / name
        with open(path, "w", newline="", encoding="utf-8") as f:
            csv.writer(f).writerows(rows)
        return path

    return _write
