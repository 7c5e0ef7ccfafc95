"""Cart storage backends: per-process memory and shared Redis.

Both serialize mutations per user. The Redis backend additionally takes a
``SET NX`` lock so that several API instances never interleave writes to the
same cart.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.exceptions import ConcurrentModification, DatabaseUnavailable
from app.core.locks import KeyedLock
from app.domain.cart import CartLine

logger = logging.getLogger(__name__)

DEFAULT_CART_TTL_SECONDS = 24 * 60 * 60

_UNLOCK_LUA = (
    "if redis.call('get', KEYS[1]) == ARGV[1] "
    "then return redis.call('del', KEYS[1]) else return 0 end"
)


class CartStorage(Protocol):
    def user_lock(self, user_id: str) -> Any:
        ...

    async def load(self, user_id: str) -> list[CartLine]:
        ...

    async def save(self, user_id: str, lines: list[CartLine]) -> None:
        ...

    async def delete(self, user_id: str) -> None:
        ...


class MemoryCartStorage:
    """Process-local carts; lost on restart and not shared between instances."""

    def __init__(self, ttl_seconds: int = DEFAULT_CART_TTL_SECONDS):
        self._ttl_seconds = ttl_seconds
        self._carts: dict[str, list[dict[str, Any]]] = {}
        self._last_access: dict[str, float] = {}
        self._locks = KeyedLock()

    def _cleanup_expired(self) -> None:
        now = time.time()
        expired = [
            user_id
            for user_id, last_access in self._last_access.items()
            if now - last_access > self._ttl_seconds
        ]
        for user_id in expired:
            self._carts.pop(user_id, None)
            self._last_access.pop(user_id, None)

    def user_lock(self, user_id: str):
        return self._locks.hold(f"cart:{user_id}")

    async def load(self, user_id: str) -> list[CartLine]:
        self._cleanup_expired()
        raw = self._carts.get(user_id)
        if not raw:
            return []
        self._last_access[user_id] = time.time()
        return [CartLine.from_dict(item) for item in raw]

    async def save(self, user_id: str, lines: list[CartLine]) -> None:
        if not lines:
            await self.delete(user_id)
            return
        self._carts[user_id] = [line.to_dict() for line in lines]
        self._last_access[user_id] = time.time()

    async def delete(self, user_id: str) -> None:
        self._carts.pop(user_id, None)
        self._last_access.pop(user_id, None)


class RedisCartStorage:
    """Cart storage persisted in Redis with per-user lock and TTL."""

    LOCK_TTL_SECONDS = 5
    LOCK_WAIT_SECONDS = 2.0
    LOCK_POLL_SECONDS = 0.05

    def __init__(self, client: Any, ttl_seconds: int = DEFAULT_CART_TTL_SECONDS):
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._local_locks = KeyedLock()

    @classmethod
    def from_url(cls, redis_url: str, ttl_seconds: int = DEFAULT_CART_TTL_SECONDS) -> RedisCartStorage:
        client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        logger.info("Redis cart storage enabled")
        return cls(client, ttl_seconds=ttl_seconds)

    @staticmethod
    def _cart_key(user_id: str) -> str:
        return f"cart:{user_id}"

    @staticmethod
    def _lock_key(user_id: str) -> str:
        return f"cart_lock:{user_id}"

    @asynccontextmanager
    async def user_lock(self, user_id: str) -> AsyncIterator[None]:
        async with self._local_locks.hold(user_id):
            lock_key = self._lock_key(user_id)
            token = uuid.uuid4().hex
            deadline = time.monotonic() + self.LOCK_WAIT_SECONDS
            acquired = False
            try:
                while time.monotonic() < deadline:
                    acquired = bool(
                        await self._client.set(lock_key, token, nx=True, ex=self.LOCK_TTL_SECONDS)
                    )
                    if acquired:
                        break
                    await asyncio.sleep(self.LOCK_POLL_SECONDS)
            except RedisError as exc:
                raise DatabaseUnavailable("Cart store unavailable") from exc

            if not acquired:
                logger.warning("Cart lock timeout for user %s", user_id)
                raise ConcurrentModification("Cart is being updated, retry shortly")

            try:
                yield
            finally:
                try:
                    await self._client.eval(_UNLOCK_LUA, 1, lock_key, token)
                except RedisError as exc:
                    # The lock expires on its own after LOCK_TTL_SECONDS.
                    logger.warning("Failed to release cart lock for %s: %s", user_id, exc)

    async def load(self, user_id: str) -> list[CartLine]:
        try:
            raw = await self._client.get(self._cart_key(user_id))
        except RedisError as exc:
            raise DatabaseUnavailable("Cart store unavailable") from exc
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable cart payload for user %s", user_id)
            return []
        items = payload.get("items") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            return []
        return [CartLine.from_dict(item) for item in items]

    async def save(self, user_id: str, lines: list[CartLine]) -> None:
        if not lines:
            await self.delete(user_id)
            return
        payload = {"items": [line.to_dict() for line in lines], "updated_at": int(time.time())}
        try:
            await self._client.setex(
                self._cart_key(user_id),
                self._ttl_seconds,
                json.dumps(payload, ensure_ascii=False),
            )
        except RedisError as exc:
            raise DatabaseUnavailable("Cart store unavailable") from exc

    async def delete(self, user_id: str) -> None:
        try:
            await self._client.delete(self._cart_key(user_id))
        except RedisError as exc:
            raise DatabaseUnavailable("Cart store unavailable") from exc


def create_cart_storage(redis_url: str | None, ttl_seconds: int = DEFAULT_CART_TTL_SECONDS) -> CartStorage:
    if not redis_url:
        logger.warning("REDIS_URL is not set; carts are kept in process memory")
        return MemoryCartStorage(ttl_seconds=ttl_seconds)
    return RedisCartStorage.from_url(redis_url, ttl_seconds=ttl_seconds)
