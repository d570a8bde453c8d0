import asyncio
import json
import logging
import threading
import time
from typing import Any, Awaitable, Callable

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from tasktracker.cache.keys import CacheKey, Region
from tasktracker.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class CacheRegion:
    """
    One named, bounded, TTL'd slice of the process-local cache.

    All structural access goes through a single lock, so the region is safe
    to touch from the event loop and from worker threads alike.

    Each principal also has an epoch that moves on every eviction touching
    that principal. A read-through load remembers the epoch it started
    under and is only written back if the epoch is unchanged, so a load
    that overlapped a mutation never re-populates the region with the
    pre-mutation value.
    """

    def __init__(
        self,
        name: Region,
        maxsize: int,
        ttl: float,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.maxsize = maxsize
        self.ttl = ttl
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._epochs: dict[str, int] = {}
        self._floor = 0
        self._counter = 0
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Any | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = value

    def epoch(self, principal: str) -> int:
        with self._lock:
            return max(self._epochs.get(principal, 0), self._floor)

    def put_if_current(self, key: CacheKey, value: Any, epoch: int) -> bool:
        with self._lock:
            current = max(self._epochs.get(key.principal, 0), self._floor)
            if current != epoch:
                return False
            self._entries[key] = value
            return True

    def evict(self, key: CacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._counter += 1
            self._epochs[key.principal] = self._counter

    def evict_all(self) -> None:
        with self._lock:
            self._entries.clear()
            self._counter += 1
            self._floor = self._counter

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ResponseCache:
    """
    Per-identity response cache split into independent regions.

    L1: one CacheRegion per Region (process-local TTLCache)
    L2: optional Redis tier shared by workers, keyed by region + rendered key

    Features:
    - Stampede protection with per-key locks
    - Epoch-guarded write-back so in-flight loads can't resurrect stale data
    - Graceful degradation when Redis is unavailable
    - Automatic key namespacing
    """

    def __init__(self, settings: Settings | None = None, redis: Redis | None = None):
        self._settings = settings
        self._redis: Redis | None = redis
        self.regions: dict[Region, CacheRegion] = {}
        self._initialized = False
        self._locks: TTLCache = TTLCache(maxsize=10_000, ttl=300)
        self._locks_guard = threading.Lock()

        # Stats tracking
        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
            "stale_skips": 0,
        }

    async def init_cache(self):
        """Initialize settings, L1 regions, and Redis connection."""
        if self._initialized:
            return

        if self._settings is None:
            self._settings = get_settings()
        settings = self._settings

        if not self.regions:
            self.regions = {
                Region.COLLECTION: CacheRegion(
                    Region.COLLECTION,
                    settings.collection_maxsize,
                    settings.collection_ttl_seconds,
                ),
                Region.ENTITY: CacheRegion(
                    Region.ENTITY, settings.entity_maxsize, settings.entity_ttl_seconds
                ),
                Region.STATS: CacheRegion(
                    Region.STATS, settings.stats_maxsize, settings.stats_ttl_seconds
                ),
            }

        if self._redis is None and settings.redis_dsn:
            try:
                self._redis = Redis.from_url(
                    settings.redis_dsn,
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=settings.redis_pool_size,
                    socket_connect_timeout=5,
                    socket_keepalive=True,
                    health_check_interval=30,
                )
                await self._redis.ping()
                logger.info("Redis connection established")
            except RedisError as e:
                logger.error(f"Redis initialization failed, running L1 only: {e}")
                self._redis = None

        self._initialized = True
        logger.info("Response cache initialized")

    def region(self, region: Region) -> CacheRegion:
        return self.regions[region]

    def _l2_key(self, region: Region, key: CacheKey) -> str:
        return f"{self._settings.cache_namespace}{region.value}:{key.render()}"

    def _l2_ttl(self, region: Region) -> int:
        return max(int(self.regions[region].ttl), 1)

    def _lock_for(self, region: Region, key: CacheKey) -> asyncio.Lock:
        with self._locks_guard:
            return self._locks.setdefault((region, key), asyncio.Lock())

    async def get(self, region: Region, key: CacheKey) -> Any | None:
        """Return the cached value for `key`, or None when absent in both tiers."""
        await self.init_cache()
        l1 = self.regions[region]

        value = l1.get(key)
        if value is not None:
            self.stats["l1_hits"] += 1
            logger.debug(f"L1 hit {region.value}:{key.render()}")
            return value

        if self._redis:
            epoch = l1.epoch(key.principal)
            try:
                raw = await self._redis.get(self._l2_key(region, key))
            except RedisError as e:
                logger.error(f"Redis GET error for {key.render()}: {e}")
                self.stats["errors"] += 1
            else:
                if raw is not None:
                    value = json.loads(raw)
                    # an eviction landed while Redis answered: treat as a miss
                    if l1.put_if_current(key, value, epoch):
                        self.stats["l2_hits"] += 1
                        logger.debug(f"L2 hit {region.value}:{key.render()}")
                        return value
                    self.stats["stale_skips"] += 1

        self.stats["misses"] += 1
        return None

    async def put(self, region: Region, key: CacheKey, value: Any) -> None:
        """Unconditional overwrite in both tiers."""
        await self.init_cache()
        self.regions[region].put(key, value)
        await self._l2_set(region, key, value)

    async def evict(self, region: Region, key: CacheKey) -> None:
        """
        Remove one entry from both tiers; a no-op when absent.

        Redis failures are logged, never raised.
        """
        await self.init_cache()
        self.regions[region].evict(key)
        logger.debug(f"Evicted {region.value}:{key.render()}")
        await self._l2_delete(region, key)

    async def evict_all(self, region: Region) -> None:
        """Clear a whole region. Every identity pays for this, so use sparingly."""
        await self.init_cache()
        self.regions[region].evict_all()
        logger.info(f"Cleared region {region.value}")

        if not self._redis:
            return

        try:
            pattern = f"{self._settings.cache_namespace}{region.value}:*"
            cursor = 0
            while True:
                cursor, keys = await self._redis.scan(cursor, match=pattern, count=100)
                if keys:
                    await self._redis.delete(*keys)
                if cursor == 0:
                    break
        except RedisError as e:
            logger.error(f"Redis region clear error for {region.value}: {e}")
            self.stats["errors"] += 1

    async def get_or_load(
        self,
        region: Region,
        key: CacheKey,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Read-through: cached value, else `loader()` stored and returned.

        A None result from the loader is returned but never cached.
        """
        value = await self.get(region, key)
        if value is not None:
            return value

        l1 = self.regions[region]
        async with self._lock_for(region, key):
            value = l1.get(key)
            if value is not None:
                return value

            epoch = l1.epoch(key.principal)
            logger.debug(f"Loading {region.value}:{key.render()} from source")
            value = await loader()
            if value is None:
                return None

            if not l1.put_if_current(key, value, epoch):
                self.stats["stale_skips"] += 1
                logger.debug(f"Skipped write-back of {key.render()}, evicted during load")
                return value

            await self._l2_set(region, key, value)
            # an eviction's Redis delete may have run before our set
            if l1.epoch(key.principal) != epoch:
                self.stats["stale_skips"] += 1
                await self._l2_delete(region, key)
            return value

    async def _l2_delete(self, region: Region, key: CacheKey) -> None:
        if not self._redis:
            return
        try:
            await self._redis.delete(self._l2_key(region, key))
        except RedisError as e:
            logger.error(f"Redis DELETE error for {key.render()}: {e}")
            self.stats["errors"] += 1

    async def _l2_set(self, region: Region, key: CacheKey, value: Any) -> None:
        if not self._redis:
            return
        try:
            data = json.dumps(value, default=str)
            await self._redis.set(self._l2_key(region, key), data, ex=self._l2_ttl(region))
        except RedisError as e:
            logger.error(f"Redis SET error for {key.render()}: {e}")
            self.stats["errors"] += 1

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis: {e}")

    def get_stats(self) -> dict:
        """Get cache statistics including per-region occupancy."""
        total = self.stats["l1_hits"] + self.stats["l2_hits"] + self.stats["misses"]
        return {
            **self.stats,
            "redis": self._redis is not None,
            "regions": {
                name.value: {"size": len(r), "maxsize": r.maxsize, "ttl": r.ttl}
                for name, r in self.regions.items()
            },
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total if total > 0 else 0
            ),
        }


# Cache instance (singleton per worker)
response_cache = ResponseCache()
