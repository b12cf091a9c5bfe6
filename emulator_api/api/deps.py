from __future__ import annotations

from collections.abc import Generator

import redis
from fastapi import Depends, Request

from emulator_api.engine.facade import EmulatorEngine
from emulator_api.engine.redis_engine import RedisEmulator
from emulator_api.engine.service_key import get_service_key
from emulator_api.infra.redis_client import create_redis
from emulator_api.settings import Settings, settings_from_env

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        try:
            client.close()
        except Exception:
            # Some redis client versions don't require explicit close.
            pass


def get_settings() -> Settings:
    return settings_from_env()


def get_engine(
    r: redis.Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> EmulatorEngine:
    return RedisEmulator(r=r, settings=settings, service_key=get_service_key())


async def form_value(request: Request, key: str) -> str:
    """First value for `key` from a form body, falling back to the query string.

    Returns "" when the key is absent everywhere.
    """

    content_type = request.headers.get("content-type", "")
    if content_type.startswith(_FORM_CONTENT_TYPES):
        form = await request.form()
        value = form.get(key)
        if isinstance(value, str) and value:
            return value
    return request.query_params.get(key, "")
