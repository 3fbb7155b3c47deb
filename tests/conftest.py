"""
Pytest configuration and fixtures for the import pipeline tests.

The history database is pointed at in-memory SQLite before any caseload
module reads its settings, so tests never touch a file on disk.
"""

import os
import uuid

os.environ.setdefault("HISTORY_DATABASE_URL", "sqlite://")
os.environ.setdefault("TEMPLATE_STORE_PATH", "")

import pytest

from caseload.domain.imports.history import ImportHistoryStore, InMemoryHistoryBackend
from caseload.domain.imports.templates import ImportTemplateStore
from caseload.integrations.record_store import InMemoryRecordStore


SAMPLE_CSV = (
    "Test Case,Description,Expected Result,Status,Priority,Category\n"
    "TC001,Login with valid credentials,User is logged in,passed,high,UI/UX\n"
    "TC002,Login with wrong password,Error message shown,Fail,P2 (Medium),UI/UX\n"
    "TC001,Login with valid credentials again,User is logged in,Pass,low,UI/UX\n"
)


@pytest.fixture
def sample_csv_bytes() -> bytes:
    return SAMPLE_CSV.encode("utf-8")


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def history_store() -> ImportHistoryStore:
    """Fresh in-memory history store in its own namespace."""
    return ImportHistoryStore(
        backend=InMemoryHistoryBackend(),
        max_sessions=100,
        namespace=f"test-{uuid.uuid4().hex[:8]}",
    )


@pytest.fixture
def template_store() -> ImportTemplateStore:
    return ImportTemplateStore()


@pytest.fixture
def client(history_store, record_store, template_store):
    """TestClient whose app.state stores are replaced with per-test instances."""
    from fastapi.testclient import TestClient
    from caseload.main import app

    with TestClient(app) as test_client:
        app.state.history_store = history_store
        app.state.record_store = record_store
        app.state.template_store = template_store
        yield test_client
