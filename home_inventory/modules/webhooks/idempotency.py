"""
Delivery idempotency keyed by ``svix-id``.

A delivery is reserved before it is applied and the reservation is only
released when processing fails in a way a retry could fix.
"""

from typing import Protocol

import redis.asyncio as redis

RESERVED_VALUE = "1"


class IdempotencyStore(Protocol):
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        ...

    async def delete(self, key: str) -> None:
        ...


class RedisIdempotencyStore:
    """IdempotencyStore backed by ``SET key value NX EX ttl``."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        reserved = await self._client.set(key, value, nx=True, ex=ttl_seconds)
        return bool(reserved)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)


def delivery_key(prefix: str, svix_id: str) -> str:
    return f"{prefix}{svix_id}"
