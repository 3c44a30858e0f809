# Redis-backed fixed-window rate limiter for auth and write endpoints.
# - Per-IP counters; keys: rl:v1:ip:{ip}:{scope} with a TTL-based window.
# - Fail-open if Redis is unavailable, so the API remains usable in dev or outages.
import os
import logging
from typing import Callable, Dict, Literal

from fastapi import Request, HTTPException, status

from .redis_client import get_redis, is_redis_enabled

logger = logging.getLogger("flatrent.rate_limit")

# login/signup: credential endpoints; codes: endpoints that send mail; write: lifecycle mutations
Scope = Literal["login", "signup", "codes", "write"]

# Per-scope cap per window and the env var that overrides it
_SCOPE_LIMITS: Dict[str, tuple] = {
    "login": ("RATE_LIMIT_LOGIN_PER_WINDOW", 10),
    "signup": ("RATE_LIMIT_SIGNUP_PER_WINDOW", 5),
    "codes": ("RATE_LIMIT_CODES_PER_WINDOW", 5),
    "write": ("RATE_LIMIT_WRITE_PER_WINDOW", 30),
}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _window_seconds() -> int:
    return _env_int("RATE_LIMIT_WINDOW_SECONDS", 60)


def _limit_for_scope(scope: Scope) -> int:
    env_name, default = _SCOPE_LIMITS[scope]
    return _env_int(env_name, default)


def _client_ip(request: Request) -> str:
    # Remote address only; X-Forwarded-For is not trusted here
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(scope: Scope) -> Callable[[Request], None]:
    """
    Build a FastAPI dependency enforcing the scope's per-IP cap.

    - The first hit in a window sets the key TTL; later hits share that expiry.
    - Over the cap: 429 with retry_after taken from the key TTL.
    - Redis disabled or failing: requests pass.
    """
    window = _window_seconds()
    limit = _limit_for_scope(scope)

    def _dependency(request: Request) -> None:
        if not is_redis_enabled():
            return
        r = get_redis()
        if r is None:
            return

        ip = _client_ip(request)
        key = f"rl:v1:ip:{ip}:{scope}"
        try:
            current = r.incr(key, amount=1)
            if current == 1:
                r.expire(key, window)
            ttl = r.ttl(key) if current > limit else None
        except Exception as exc:
            logger.warning("Rate limit fail-open (scope=%s, ip=%s): %s", scope, ip, exc)
            return

        if ttl is not None:
            retry_after = ttl if isinstance(ttl, int) and ttl > 0 else window
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": "rate_limited",
                    "scope": scope,
                    "limit": limit,
                    "window_seconds": window,
                    "retry_after": retry_after,
                },
            )

    return _dependency
