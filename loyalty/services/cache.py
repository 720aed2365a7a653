from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from loyalty.core.config import get_settings

logger = structlog.get_logger("loyalty.services.cache")

ANALYTICS_PATTERN = "analytics:*"
SCAN_BATCH_SIZE = 200


def account_pattern(account_id: int) -> str:
    return f"account:{account_id}:*"


def event_pattern(event_id: int) -> str:
    return f"event:{event_id}:*"


class LedgerCache:
    """Best-effort key/value accelerator in front of read-heavy ledger aggregates.

    Every operation degrades to a no-op when Redis is not configured or fails;
    the cache is never a source of truth and never blocks a write.
    """

    def __init__(self, client: Redis | None, *, default_ttl_seconds: int = 300) -> None:
        self._client = client
        self._default_ttl_seconds = default_ttl_seconds

    @classmethod
    def disabled(cls) -> LedgerCache:
        return cls(None)

    @classmethod
    @asynccontextmanager
    async def connect(
        cls,
        redis_url: str | None = None,
        *,
        default_ttl_seconds: int | None = None,
    ) -> AsyncIterator[LedgerCache]:
        settings = get_settings()
        url = settings.redis_url if redis_url is None else redis_url
        ttl = default_ttl_seconds or settings.cache_default_ttl_seconds
        if not url:
            logger.warning("ledger_cache_disabled", reason="redis_url_not_configured")
            yield cls(None, default_ttl_seconds=ttl)
            return

        client = Redis.from_url(url, decode_responses=True)
        try:
            yield cls(client, default_ttl_seconds=ttl)
        finally:
            await client.aclose()

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def get(self, key: str) -> str | None:
        if self._client is None:
            return None
        try:
            return await self._client.get(key)
        except RedisError:
            logger.warning("ledger_cache_get_failed", key=key, exc_info=True)
            return None

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        if self._client is None:
            return
        try:
            await self._client.set(key, value, ex=ttl_seconds or self._default_ttl_seconds)
        except RedisError:
            logger.warning("ledger_cache_set_failed", key=key, exc_info=True)

    async def delete(self, *keys: str) -> None:
        if self._client is None or not keys:
            return
        try:
            await self._client.delete(*keys)
        except RedisError:
            logger.warning("ledger_cache_delete_failed", keys=list(keys), exc_info=True)

    async def delete_pattern(self, pattern: str) -> int:
        if self._client is None:
            return 0
        deleted = 0
        try:
            batch: list[str] = []
            async for key in self._client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= SCAN_BATCH_SIZE:
                    deleted += await self._client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._client.delete(*batch)
        except RedisError:
            logger.warning("ledger_cache_delete_pattern_failed", pattern=pattern, exc_info=True)
        return deleted

    async def invalidate_accounts(self, account_ids: Iterable[int]) -> None:
        if self._client is None:
            return
        for account_id in sorted(set(account_ids)):
            await self.delete_pattern(account_pattern(account_id))
        await self.delete_pattern(ANALYTICS_PATTERN)

    async def invalidate_event(self, event_id: int) -> None:
        if self._client is None:
            return
        await self.delete_pattern(event_pattern(event_id))
        await self.delete_pattern(ANALYTICS_PATTERN)
