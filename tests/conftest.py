# tests/conftest.py

from __future__ import annotations

import pytest

from tasktracker.auth.codec import CredentialCodec
from tasktracker.cache.layer import ResponseCache
from tasktracker.core.config import Settings
from tasktracker.models import Principal
from tasktracker.services.task_service import TaskService

from .fakes import FakeClock, FakeIdentityStore, FakeTaskStore, fake_hash

SECRET = "test-signing-key-0123456789abcdef0123456789"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> Settings:
    """Explicit settings so a developer's .env can't leak into tests."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        jwt_secret=SECRET,
        redis_dsn=None,
        openai_api_key=None,
    )


@pytest.fixture()
def alice() -> Principal:
    return Principal(id=1, name="alice", secret_hash=fake_hash("wonderland"), email="alice@example.com")


@pytest.fixture()
def bob() -> Principal:
    return Principal(id=2, name="bob", secret_hash=fake_hash("builder"), email="bob@example.com")


@pytest.fixture()
def identities(alice: Principal, bob: Principal) -> FakeIdentityStore:
    return FakeIdentityStore(alice, bob)


@pytest.fixture()
def codec(clock: FakeClock) -> CredentialCodec:
    return CredentialCodec(SECRET, clock=clock)


@pytest.fixture()
def store(clock: FakeClock) -> FakeTaskStore:
    return FakeTaskStore(clock)


@pytest.fixture()
def cache(settings: Settings) -> ResponseCache:
    return ResponseCache(settings)


@pytest.fixture()
def service(store: FakeTaskStore, cache: ResponseCache, clock: FakeClock) -> TaskService:
    return TaskService(store, cache, clock=clock)
