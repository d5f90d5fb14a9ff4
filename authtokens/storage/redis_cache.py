from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from authtokens.logging import get_logger
from authtokens.storage.common import glob_escape, ttl_milliseconds
from authtokens.storage.errors import StoreError

logger = get_logger(__name__)


class RedisStore:
    """Thin Redis wrapper implementing the key-value TTL store contract."""

    DEFAULT_OPERATION_TIMEOUT = 5.0  # seconds
    SCAN_BATCH_SIZE = 500

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before handing the store to services."""

        # Use a short-lived synchronous client to avoid binding the async client to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        except RedisError as exc:
            logger.warning("redis_ping_failed", error=str(exc))
            raise StoreError("redis ping failed", operation="ping") from exc
        finally:
            sync_client.close()

    async def set(self, key: str, value: str, ttl: timedelta) -> None:
        try:
            await self.client.set(key, value, px=ttl_milliseconds(ttl))
        except RedisError as exc:
            raise StoreError(f"redis SET failed: {exc}", operation="set") from exc

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as exc:
            raise StoreError(f"redis GET failed: {exc}", operation="get") from exc

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self.client.delete(*keys))
        except RedisError as exc:
            raise StoreError(f"redis DEL failed: {exc}", operation="delete") from exc

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except RedisError as exc:
            raise StoreError(f"redis EXISTS failed: {exc}", operation="exists") from exc

    # INCR only an existing key so the counter keeps the expiry it was born with
    _INCR_EXISTING_SCRIPT = """
    if redis.call('EXISTS', KEYS[1]) == 1 then
        return redis.call('INCR', KEYS[1])
    end
    return nil
    """

    async def incr(self, key: str) -> int:
        try:
            result = await self.client.eval(self._INCR_EXISTING_SCRIPT, 1, key)
        except RedisError as exc:
            raise StoreError(f"redis INCR failed: {exc}", operation="incr") from exc
        if result is None:
            raise StoreError("incr on missing key", operation="incr", detail={"key": key})
        return int(result)

    async def scan_prefix(self, prefix: str) -> List[str]:
        pattern = f"{glob_escape(prefix)}*"
        keys: List[str] = []
        try:
            async for key in self.client.scan_iter(match=pattern, count=self.SCAN_BATCH_SIZE):
                keys.append(key)
        except RedisError as exc:
            raise StoreError(f"redis SCAN failed: {exc}", operation="scan") from exc
        return keys

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        try:
            await self.client.aclose()
            await self.client.connection_pool.disconnect()
        except RedisError as exc:
            raise StoreError(f"redis close failed: {exc}", operation="close") from exc
