# ecoreco/domain/repositories/catalog_cache_repo.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Optional
import logging
import time

from redis.asyncio import Redis

from ecoreco.domain.models.product import Product
from ecoreco.utils.cache import cache_delete, cache_get, cache_set

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry:
    value: List[Product]
    refreshed_at: float


class SnapshotCache:
    """
    In-process holder for the "all products with order counts" snapshot.

    An entry is served only while `clock() - refreshed_at < ttl`; past that it
    behaves as absent and the caller recomputes. No locking: two concurrent
    refills both write, last one wins.
    """

    def __init__(self, ttl: float = 300, clock: Clock = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entry: Optional[CacheEntry] = None

    def is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        return entry is not None and (self.clock() - entry.refreshed_at) < self.ttl

    async def get(self) -> Optional[List[Product]]:
        entry = self._entry
        return entry.value if self.is_fresh(entry) else None

    async def set(self, products: List[Product]) -> None:
        self._entry = CacheEntry(value=list(products), refreshed_at=self.clock())

    async def invalidate(self) -> None:
        self._entry = None


class RedisSnapshotCache(SnapshotCache):
    """
    Same contract, stored in Redis so every worker shares one snapshot.
    Uses wall-clock time since the timestamp travels between processes.
    Redis failures degrade to a miss (get) or a skipped write (set).
    """

    def __init__(self, redis: Redis, key: str, ttl: float = 300, clock: Clock = time.time):
        super().__init__(ttl=ttl, clock=clock)
        self.redis = redis
        self.key = key

    async def get(self) -> Optional[List[Product]]:
        try:
            raw = await cache_get(self.redis, self.key)
        except Exception as e:
            logger.warning("catalog_cache redis.get error key=%s err=%s", self.key, e)
            return None
        if not isinstance(raw, dict):
            return None
        try:
            entry = CacheEntry(
                value=[Product.model_validate(x) for x in raw.get("items", [])],
                refreshed_at=float(raw["refreshed_at"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("catalog_cache decode error key=%s err=%s", self.key, e)
            return None
        return entry.value if self.is_fresh(entry) else None

    async def set(self, products: List[Product]) -> None:
        payload = {"refreshed_at": self.clock(), "items": [p.model_dump() for p in products]}
        try:
            # Redis expiry is a backstop; freshness is decided by refreshed_at
            await cache_set(self.redis, self.key, payload, ex=max(1, int(self.ttl)))
        except Exception as e:
            logger.warning("catalog_cache redis.set error key=%s err=%s", self.key, e)

    async def invalidate(self) -> None:
        try:
            await cache_delete(self.redis, self.key)
        except Exception as e:
            logger.warning("catalog_cache redis.delete error key=%s err=%s", self.key, e)
