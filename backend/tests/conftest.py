"""Pytest fixtures: in-memory DB, fake Redis, API client."""
import os
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "")
os.environ.setdefault("TELEGRAM_CHAT_ID", "")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from job_digest.models import Base


class FakeRedis:
    """In-process stand-in for the handful of redis-py commands the run registry uses (decode_responses=True)."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def ping(self):
        return True

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = str(value)
        if ex is not None:
            self.ttls[key] = ex
        return True

    def get(self, key):
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    def expire(self, key, seconds):
        if key not in self.data:
            return False
        self.ttls[key] = seconds
        return True

    def hset(self, key, field=None, value=None, mapping=None):
        h = self.data.setdefault(key, {})
        if field is not None:
            h[field] = str(value)
        for k, v in (mapping or {}).items():
            h[k] = str(v)
        return len(mapping or {}) + (1 if field is not None else 0)

    def hget(self, key, field):
        return self.data.get(key, {}).get(field)

    def hgetall(self, key):
        return dict(self.data.get(key, {}))

    def sadd(self, key, *members):
        s = self.data.setdefault(key, set())
        before = len(s)
        s.update(str(m) for m in members)
        return len(s) - before

    def srem(self, key, *members):
        s = self.data.get(key, set())
        before = len(s)
        s.difference_update(members)
        return before - len(s)

    def smembers(self, key):
        return set(self.data.get(key, set()))

    def scard(self, key):
        return len(self.data.get(key, set()))

    def lpush(self, key, *values):
        lst = self.data.setdefault(key, [])
        for v in values:
            lst.insert(0, str(v))
        return len(lst)

    def _slice(self, lst, start, end):
        return lst[start:] if end == -1 else lst[start : end + 1]

    def lrange(self, key, start, end):
        return self._slice(self.data.get(key, []), start, end)

    def ltrim(self, key, start, end):
        if key in self.data:
            self.data[key] = self._slice(self.data[key], start, end)
        return True

    def llen(self, key):
        return len(self.data.get(key, []))


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(db_engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def registry(fake_redis):
    from job_digest.run_registry import RunRegistry

    return RunRegistry(fake_redis, prefix="test-queue", claim_ttl_s=600, keep_completed=5, keep_failed=10)


@pytest.fixture
def sent_runs():
    return []


@pytest.fixture
def queue(registry, sent_runs):
    from job_digest.pipeline_queue import PipelineQueue

    return PipelineQueue(registry, send=sent_runs.append)


@pytest.fixture
def client(queue):
    from job_digest.main import app
    from job_digest.routers.pipeline import get_queue

    app.dependency_overrides[get_queue] = lambda: queue
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
