from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import pytest

# Settings() is read once at import time; keep every test on in-memory SQLite.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ADMIN_TOKEN", "change-me-admin-token")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "1")


class FakeWall:
    """Manually driven wall clock shared by every simulated device."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 1.0) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


def memory_session_factory():
    from meraki.core.db import make_engine, make_session_factory
    from meraki.models.base import Base

    engine = make_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    return make_session_factory(engine)


@pytest.fixture
def new_db():
    """Factory for a fresh, empty in-memory database (one per simulated install)."""
    return memory_session_factory


@pytest.fixture
def wall() -> FakeWall:
    return FakeWall()


@pytest.fixture
def make_store(wall):
    from meraki.store.records import RecordStore
    from meraki.util.time import MonotonicClock

    def _make(session_factory=None):
        return RecordStore(session_factory or memory_session_factory(), clock=MonotonicClock(now=wall))

    return _make


@pytest.fixture
def store(make_store):
    return make_store()


@pytest.fixture
def backend_db():
    return memory_session_factory()


@pytest.fixture
def make_device(backend_db, wall):
    """Build a full replica (store + coordinator) talking to the shared in-process backend."""

    from meraki.client import MerakiClient
    from meraki.sync.transport.local import BackendTransport
    from meraki.util.time import MonotonicClock

    def _make(*, user_id: str = "u1", transport_wrapper=None, **coordinator_kwargs):
        def transport(device_id: str):
            t = BackendTransport(session_factory=backend_db, user_id=user_id, device_id=device_id)
            return transport_wrapper(t) if transport_wrapper else t

        coordinator_kwargs.setdefault("sleep", lambda s: None)
        return MerakiClient(
            memory_session_factory(),
            transport,
            clock=MonotonicClock(now=wall),
            **coordinator_kwargs,
        )

    return _make
