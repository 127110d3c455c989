from __future__ import annotations

import re
from typing import List, Optional, Set

import redis.asyncio as aioredis
from redis import Redis

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def escape_glob(pattern: str) -> str:
    """Escape SCAN MATCH metacharacters so ``pattern`` matches literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", pattern)


class RedisSessionStore:
    """Thin Redis wrapper exposing the primitives the token service needs."""

    # Keys returned per SCAN round trip
    SCAN_BATCH_SIZE = 500

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before the service accepts traffic."""
        # Use a short-lived synchronous client to avoid binding the async client to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds is not None:
            await self.client.set(key, value, ex=max(1, int(ttl_seconds)))
        else:
            await self.client.set(key, value)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def take(self, key: str) -> Optional[str]:
        """Atomically read and delete ``key`` (GETDEL, Redis >= 6.2)."""
        return await self.client.getdel(key)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.client.delete(*keys)

    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    async def sadd(self, key: str, *members: str) -> int:
        return await self.client.sadd(key, *members)

    async def srem(self, key: str, *members: str) -> int:
        return await self.client.srem(key, *members)

    async def smembers(self, key: str) -> Set[str]:
        return set(await self.client.smembers(key))

    async def scan_prefix(self, prefix: str) -> List[str]:
        """List keys starting with ``prefix`` using incremental SCAN."""
        keys: List[str] = []
        async for key in self.client.scan_iter(
            match=f"{escape_glob(prefix)}*", count=self.SCAN_BATCH_SIZE
        ):
            keys.append(key)
        return keys

    async def close(self) -> None:
        """Close the connection pool. Call once at shutdown."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()
