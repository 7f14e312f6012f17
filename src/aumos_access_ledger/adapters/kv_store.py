"""Key-value store adapters for aumos-access-ledger.

Backs the decision cache and the storage of signed read-side artifacts
(investigations, discovery bundles, compliance reports).

- InMemoryKeyValueStore: single-process store for tests and development.
- RedisKeyValueStore: redis.asyncio-backed store for deployments.

Both raise CacheUnavailableError when the backend cannot be reached.
"""

import fnmatch
import time

import redis.asyncio as redis

from aumos_access_ledger.errors import CacheUnavailableError
from aumos_access_ledger.observability import get_logger

logger = get_logger(__name__)


class InMemoryKeyValueStore:
    """Dict-backed store with per-key expiry.

    Each operation is a single dict get/assign, so concurrent readers never
    wait on writers and same-key writers simply last-write-wins.
    """

    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= time.monotonic():
            self._data.pop(key, None)
            return None
        return value

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (value, time.monotonic() + ttl_seconds)

    async def delete_matching(self, pattern: str) -> int:
        """Delete every key matching a glob-style pattern.

        Args:
            pattern: Glob pattern, e.g. ``rbac:decision:tenant-1:*``.

        Returns:
            Number of keys removed.
        """
        matched = [key for key in list(self._data) if fnmatch.fnmatchcase(key, pattern)]
        for key in matched:
            self._data.pop(key, None)
        return len(matched)

    def __len__(self) -> int:
        return len(self._data)


class RedisKeyValueStore:
    """Redis implementation of the key-value store.

    Args:
        client: Redis client instance (``decode_responses=True``).
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except redis.RedisError as e:
            raise CacheUnavailableError(f"Key-value store read failed: {e}") from e

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as e:
            raise CacheUnavailableError(f"Key-value store write failed: {e}") from e

    async def delete_matching(self, pattern: str) -> int:
        """Delete keys matching a pattern using SCAN, never KEYS."""
        deleted = 0
        try:
            batch: list[str] = []
            async for key in self._client.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await self._client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._client.delete(*batch)
        except redis.RedisError as e:
            raise CacheUnavailableError(f"Key-value store purge failed: {e}") from e
        logger.info("Purged keys", pattern=pattern, deleted=deleted)
        return deleted

    async def close(self) -> None:
        await self._client.aclose()
