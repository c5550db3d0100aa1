"""
Pytest Configuration for Proctoring Tests
"""
import os
import tempfile
import uuid

import pytest
from fastapi.testclient import TestClient

# Keep storage side effects out of the working tree
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="proctoring-test-"))

from proctoring.models import Session, sort_by_offset, utcnow  # noqa: E402
from proctoring.storage import LocalStorage  # noqa: E402
from proctoring.stores import check_patch  # noqa: E402


class MemorySessionStore:
    """In-memory stand-in for the Mongo session store"""

    def __init__(self):
        self.sessions = {}
        self.score_writes = []

    async def create(self, candidate_name=None):
        session = Session(id=str(uuid.uuid4()), candidate_name=candidate_name, start_time=utcnow())
        self.sessions[session.id] = session
        return session.model_copy()

    async def get(self, session_id):
        session = self.sessions.get(session_id)
        return session.model_copy() if session else None

    async def list(self):
        return sorted(self.sessions.values(), key=lambda s: s.start_time, reverse=True)

    async def patch(self, session_id, fields):
        check_patch(fields)
        if session_id not in self.sessions:
            return False
        self.sessions[session_id] = self.sessions[session_id].model_copy(update=fields)
        return True

    async def set_score(self, session_id, score):
        self.score_writes.append((session_id, score))
        return await self.patch(session_id, {"integrity_score": score})


class MemoryEventStore:
    """In-memory stand-in for the Mongo event store (keeps arrival order)"""

    def __init__(self):
        self.events = {}

    async def append(self, session_id, events):
        stored = self.events.setdefault(session_id, [])
        for e in events:
            stored.append(e.model_copy(update={"id": str(uuid.uuid4())}))
        return len(events)

    async def query(self, session_id):
        return sort_by_offset(self.events.get(session_id, []))


@pytest.fixture
def session_store():
    return MemorySessionStore()


@pytest.fixture
def event_store():
    return MemoryEventStore()


@pytest.fixture
def blob_storage(tmp_path):
    return LocalStorage(video_dir=tmp_path / "videos", report_dir=tmp_path / "reports")


@pytest.fixture
def app(session_store, event_store, blob_storage):
    """FastAPI app wired to in-memory stores"""
    from proctoring.main import app, get_blob_storage, get_event_store, get_session_store

    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_event_store] = lambda: event_store
    app.dependency_overrides[get_blob_storage] = lambda: blob_storage
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """FastAPI test client"""
    return TestClient(app)
