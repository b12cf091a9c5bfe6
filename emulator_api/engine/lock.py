from __future__ import annotations

import uuid
from contextlib import contextmanager

import redis

from emulator_api.engine.facade import EngineBusyError


@contextmanager
def engine_lock(*, r: redis.Redis, key: str, ttl_ms: int = 5_000):
    """Best-effort exclusive lock around an engine mutation.

    Single attempt, no retries: a held lock surfaces as `EngineBusyError`.
    The TTL bounds how long a crashed holder can block the chain.
    """

    token = uuid.uuid4().hex
    acquired = r.set(key, token, nx=True, px=ttl_ms)
    if not acquired:
        raise EngineBusyError("Engine is busy")
    try:
        yield
    finally:
        # Don't release a lock that expired and was taken by someone else.
        if r.get(key) == token:
            r.delete(key)
