from __future__ import annotations

from collections.abc import Generator

import fakeredis
import pytest

_ENV_VARS = (
    "REDIS_URL",
    "EMULATOR_KEY_PREFIX",
    "EMULATOR_SERVICE_PRIVATE_KEY",
    "EMULATOR_SERVICE_KEY_SEED",
    "EMULATOR_SNAPSHOTS",
    "EMULATOR_COVERAGE_REPORTING",
    "EMULATOR_LOCK_TTL_MS",
)


@pytest.fixture(autouse=True)
def _isolated_emulator_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Run every test against default settings and a freshly derived service key.

    A developer's `.env` or shell exports must not leak into assertions.
    """

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    from emulator_api.engine.service_key import reset_service_key_for_tests

    reset_service_key_for_tests()
    yield
    reset_service_key_for_tests()


@pytest.fixture()
def fake_redis() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def engine(fake_redis: fakeredis.FakeRedis):
    from emulator_api.engine.redis_engine import RedisEmulator
    from emulator_api.engine.service_key import init_service_key
    from emulator_api.settings import settings_from_env

    settings = settings_from_env()
    return RedisEmulator(r=fake_redis, settings=settings, service_key=init_service_key(settings=settings))


@pytest.fixture()
def client_and_redis(fake_redis: fakeredis.FakeRedis):
    """FastAPI TestClient whose engine runs on fakeredis.

    The same fakeredis instance is handed back so tests can seed or inspect
    engine state directly.
    """

    from fastapi.testclient import TestClient

    from emulator_api.api.deps import get_redis
    from emulator_api.main import app

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield fake_redis

    app.dependency_overrides[get_redis] = _override
    with TestClient(app) as c:
        yield c, fake_redis
    app.dependency_overrides.clear()
