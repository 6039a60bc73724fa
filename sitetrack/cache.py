"""
Redis cache for the money roll-ups and the worker dashboard.

Keys:

* ``financials:summary`` - portfolio totals over active projects
* ``projects:summary:<project_id>`` - per-project summary
* ``dashboard:<user_id>:stats`` - a worker's task counters

Attendance, expense, invoice, payment and project writes drop the money
keys; attendance writes also drop the owner's dashboard keys.  With no
Redis connection every lookup is a miss and nothing is stored.
"""
import json
import logging
from typing import Awaitable, Callable

import redis.asyncio as redis

from sitetrack.config import settings

logger = logging.getLogger(__name__)

FINANCIAL_SUMMARY_KEY = "financials:summary"


def project_summary_key(project_id: int | str) -> str:
    return f"projects:summary:{project_id}"


def dashboard_key(user_id: int | str, view: str = "stats") -> str:
    return f"dashboard:{user_id}:{view}"


class CacheManager:
    """JSON values in Redis, with hit/miss counters for ``/api/v1/metrics``."""

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None
        self._hits = 0
        self._misses = 0

    async def connect(self, url: str | None = None) -> None:
        url = url or settings.REDIS_URL
        client = redis.from_url(url, decode_responses=True, socket_connect_timeout=2, socket_timeout=2)
        try:
            await client.ping()
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis at %s unreachable, running without cache: %s", url, exc)
            await client.aclose()
            return
        self._redis = client
        logger.info("Redis connected: %s", url)

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
        self._redis = None

    def _record(self, hit: bool) -> None:
        if hit:
            self._hits += 1
        else:
            self._misses += 1

    async def get(self, key: str) -> dict | list | None:
        if self._redis is None:
            self._record(False)
            return None
        try:
            raw = await self._redis.get(key)
        except Exception as exc:
            logger.debug("Cache read failed for %r: %s", key, exc)
            raw = None
        self._record(raw is not None)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: dict | list, ttl: int | None = None) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except Exception as exc:
            logger.debug("Cache write failed for %r: %s", key, exc)

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[dict | list | None]],
        ttl: int | None = None,
    ) -> dict | list | None:
        """Cache-aside read.  ``None`` results are returned but not stored."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await compute()
        if value is not None:
            await self.set(key, value, ttl=ttl)
        return value

    async def delete_pattern(self, pattern: str) -> int:
        """Remove every key matching *pattern* (SCAN based); returns the count."""
        if self._redis is None:
            return 0
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
            if keys:
                await self._redis.delete(*keys)
        except Exception as exc:
            logger.debug("Cache purge failed for %r: %s", pattern, exc)
            return 0
        return len(keys)

    async def invalidate_financials(self, project_id: int | None = None) -> None:
        await self.delete_pattern(FINANCIAL_SUMMARY_KEY)
        await self.delete_pattern(project_summary_key("*" if project_id is None else project_id))

    async def invalidate_dashboard(self, user_id: int | None = None) -> None:
        await self.delete_pattern(dashboard_key("*" if user_id is None else user_id, "*"))

    @property
    def stats(self) -> dict:
        lookups = self._hits + self._misses
        return {
            "connected": self._redis is not None,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups * 100, 1) if lookups else 0.0,
        }


cache = CacheManager()
