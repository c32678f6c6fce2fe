"""Shared test fixtures."""
import pytest
from jose import jwt

from backend import RedisBackend
from constants import JWT_ALGORITHM, JWT_SECRET
from relay import SessionState

FIXED_TIME = "2026-01-01T09:30:00+00:00"


class InMemoryRedis:
    """Just enough of the redis.Redis surface for the consultation backend."""

    def __init__(self):
        self.hashes = {}
        self.lists = {}
        self.strings = {}

    def ping(self):
        return True

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update(mapping)
        return len(mapping)

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def exists(self, *keys):
        return sum(1 for key in keys if key in self.hashes or key in self.lists or key in self.strings)

    def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    def set(self, key, value):
        self.strings[key] = value
        return True

    def get(self, key):
        return self.strings.get(key)

    def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start:end + 1])


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def backend(fake_redis):
    return RedisBackend(redis_client=fake_redis)


@pytest.fixture
def fixed_time():
    return FIXED_TIME


@pytest.fixture
def state():
    return SessionState(clock=lambda: FIXED_TIME)


@pytest.fixture
def make_token():
    """Sign a session token the way the auth service does."""
    def _create(user_id="user-1", role="patient", secret=JWT_SECRET):
        claims = {"userId": user_id}
        if role:
            claims["role"] = role
        return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)
    return _create


@pytest.fixture
def auth_headers(make_token):
    return {"Authorization": f"Bearer {make_token('doctor-1', 'doctor')}"}


@pytest.fixture
def client(monkeypatch, fake_redis):
    """TestClient on the real app with Redis swapped for memory and fresh room state."""
    from fastapi.testclient import TestClient
    import backend as backend_module
    from app import app
    from hub import session_hub

    monkeypatch.setattr(backend_module.redis_backend, "redis_client", fake_redis)
    monkeypatch.setattr(session_hub, "state", SessionState())
    # one TestClient context keeps every socket on the same event loop
    with TestClient(app) as test_client:
        yield test_client
