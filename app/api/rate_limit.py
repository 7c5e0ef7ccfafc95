from __future__ import annotations

import os

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def _rate_limit_storage_uri() -> str | None:
    return os.getenv("RATE_LIMIT_REDIS_URL") or os.getenv("REDIS_URL") or None


def _get_client_ip(request: Request) -> str:
    """Resolve client IP with proxy headers support."""
    xff = request.headers.get("X-Forwarded-For")
    if xff:
        parts = [part.strip() for part in xff.split(",") if part.strip()]
        if parts:
            return parts[0]

    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip.strip()

    return get_remote_address(request)


def _rate_limit_enabled() -> bool:
    return os.getenv("RATE_LIMIT_DISABLED", "").strip().lower() not in {"1", "true", "yes"}


def order_creation_limit() -> str:
    return os.getenv("RATE_LIMIT_ORDERS", "10/minute")


_rl_storage = _rate_limit_storage_uri()
if _rl_storage:
    limiter = Limiter(key_func=_get_client_ip, storage_uri=_rl_storage, enabled=_rate_limit_enabled())
else:
    limiter = Limiter(key_func=_get_client_ip, enabled=_rate_limit_enabled())


__all__ = ["limiter", "order_creation_limit"]
