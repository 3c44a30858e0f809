# Shared, opt-in Redis connection used by the per-flat booking lock and the rate limiter.
# Controlled by REDIS_ENABLED and REDIS_URL; every caller treats a None client as "run without Redis".
import logging
import os
from typing import Optional

_logger = logging.getLogger("flatrent.redis")

_TRUTHY = {"1", "true", "t", "yes", "y", "on"}


def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def is_redis_enabled() -> bool:
    return env_flag("REDIS_ENABLED")


# Cached client and a one-shot guard: after a failed connect this process stays without Redis
_client = None
_initialized = False


def get_redis():
    """
    Return a connected Redis client, or None when disabled or unreachable.

    The first call connects and pings; failures are logged once and never raised.
    """
    global _client, _initialized
    if not is_redis_enabled():
        return None
    if _client is not None or _initialized:
        return _client

    url: Optional[str] = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    _initialized = True
    try:
        import redis

        client = redis.Redis.from_url(
            url,
            socket_timeout=0.25,
            socket_connect_timeout=0.25,
            retry_on_timeout=False,
            health_check_interval=0,
        )
        client.ping()
    except Exception as exc:
        _logger.warning("Redis unavailable (fail-open): %s", exc)
        return None

    _client = client
    _logger.info("Connected to Redis at %s", url)
    return _client
