# Distributed locking helpers backed by Redis to gate booking creation across processes.
# Designed to fail open so the marketplace stays available if Redis is down; the database row lock
# on the flat remains the authoritative guard.
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator
from uuid import uuid4

from .redis_client import get_redis

logger = logging.getLogger("flatrent.locks")

# Compare-and-delete so a process never releases a lock it no longer owns
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""


def flat_lock_key(flat_id: int) -> str:
    return f"lock:booking:flat:{flat_id}"


@contextmanager
def redis_try_lock(key: str, ttl_ms: int = 5000) -> Iterator[bool]:
    """
    Best-effort distributed lock implemented with Redis SET NX PX.

    Yields:
    - True when the lock is acquired, or when Redis is unavailable (fail-open).
    - False when another process holds the lock.

    Usage:

        with redis_try_lock(flat_lock_key(flat_id)) as locked:
            if not locked:
                raise HTTPException(429, "please retry")
            ...
    """
    r = get_redis()
    if r is None:
        yield True
        return

    token = uuid4().hex
    acquired = False
    try:
        acquired = bool(r.set(key, token, nx=True, px=ttl_ms))
    except Exception as exc:
        logger.warning("redis_try_lock error (key=%s): %s", key, exc)
        yield True
        return

    try:
        yield acquired
    finally:
        if acquired:
            try:
                r.eval(_RELEASE_SCRIPT, 1, key, token)
            except Exception as exc:
                # The lock expires by TTL
                logger.debug("redis_try_lock release error (key=%s): %s", key, exc)
