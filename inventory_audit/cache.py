"""
Read cache for single-item inventory lookups.

Entries are keyed "id:<n>" or "sku:<s>" and hold detached InventoryItem
records. An entry expires a fixed time after it was written or after it was
last read, whichever comes first, and the cache holds at most max_size
entries. Any inventory mutation clears the whole cache.

Every clear bumps a generation counter. A reader captures the generation
before loading from the database and passes it to put(), so a load that
raced with a mutation is dropped instead of caching a stale row.
"""
import json
import logging
import threading
import time
from typing import Callable, Optional

import redis
from redis.exceptions import RedisError, WatchError

from . import config, schemas
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)


def id_key(item_id: int) -> str:
    return f"id:{item_id}"


def sku_key(sku: str) -> str:
    return f"sku:{sku}"


class _Entry:
    __slots__ = ("value", "written_at", "accessed_at")

    def __init__(self, value: schemas.InventoryItem, now: float):
        self.value = value
        self.written_at = now
        self.accessed_at = now


class MemoryItemCache:
    """
    In-process cache.

    Reads take no lock: they look the key up in the current dict and touch
    the entry's access time. Writes and clears are serialized by a lock, and
    clear swaps in a fresh dict so a concurrent reader sees either the old
    contents or the empty cache, never a half-cleared one.
    """

    def __init__(
        self,
        max_size: int = config.CACHE_MAX_SIZE,
        expire_after_write: float = config.CACHE_EXPIRE_AFTER_WRITE,
        expire_after_access: float = config.CACHE_EXPIRE_AFTER_ACCESS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.expire_after_write = expire_after_write
        self.expire_after_access = expire_after_access
        self._clock = clock
        self._entries = {}
        self._generation = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def generation(self) -> int:
        return self._generation

    def _expired(self, entry: _Entry, now: float) -> bool:
        return (
            now - entry.written_at >= self.expire_after_write
            or now - entry.accessed_at >= self.expire_after_access
        )

    def get(self, key: str) -> Optional[schemas.InventoryItem]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if self._expired(entry, now):
            return None
        entry.accessed_at = now
        return entry.value

    def put(self, key: str, value: schemas.InventoryItem, generation: Optional[int]) -> bool:
        """
        Store a value.

        Returns:
            False if the cache was cleared since `generation` was read
        """
        with self._lock:
            if generation != self._generation:
                return False
            now = self._clock()
            # re-inserting moves the key to the end of the eviction order
            self._entries.pop(key, None)
            self._entries[key] = _Entry(value, now)
            if len(self._entries) > self.max_size:
                self._evict(now)
            return True

    def _evict(self, now: float) -> None:
        for key in [k for k, e in self._entries.items() if self._expired(e, now)]:
            del self._entries[key]
        while len(self._entries) > self.max_size:
            del self._entries[next(iter(self._entries))]

    def clear(self) -> None:
        with self._lock:
            self._entries = {}
            self._generation += 1


class RedisItemCache:
    """
    Cache shared by every worker process through redis.

    Values are JSON documents that carry their write time. Each hit resets
    the key's TTL to the access lifetime, capped by what is left of the
    write lifetime. A sorted set of keys scored by write time enforces the
    size bound.
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        namespace: str = config.CACHE_NAMESPACE,
        max_size: int = config.CACHE_MAX_SIZE,
        expire_after_write: float = config.CACHE_EXPIRE_AFTER_WRITE,
        expire_after_access: float = config.CACHE_EXPIRE_AFTER_ACCESS,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = client or redis.from_url(config.REDIS_URL, decode_responses=True)
        self.namespace = namespace
        self.max_size = max_size
        self.expire_after_write = expire_after_write
        self.expire_after_access = expire_after_access
        self._clock = clock
        self._index_key = f"{namespace}:__index__"
        # kept outside the namespace so clear() does not reset it
        self._generation_key = f"{namespace}-generation"

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    @property
    def generation(self) -> Optional[int]:
        try:
            return int(self._redis.get(self._generation_key) or 0)
        except RedisError as e:
            logger.error(f"Cache generation error: {e}")
            return None

    def get(self, key: str) -> Optional[schemas.InventoryItem]:
        redis_key = self._key(key)
        try:
            raw = self._redis.get(redis_key)
            if raw is None:
                return None
            payload = json.loads(raw)
            remaining = self.expire_after_write - (self._clock() - payload["written_at"])
            if remaining <= 0:
                self._redis.delete(redis_key)
                return None
            self._redis.expire(redis_key, max(1, int(min(self.expire_after_access, remaining))))
            return schemas.InventoryItem.model_validate(payload["item"])
        except (RedisError, ValueError, KeyError) as e:
            logger.error(f"Cache get error for {key}: {e}")
            return None

    def put(self, key: str, value: schemas.InventoryItem, generation: Optional[int]) -> bool:
        """
        Store a value unless the cache was cleared since `generation` was read.

        The generation key is WATCHed while it is compared, so a clear that
        lands between the comparison and the write aborts the transaction.
        """
        if generation is None:
            return False
        redis_key = self._key(key)
        try:
            with self._redis.pipeline() as pipe:
                pipe.watch(self._generation_key)
                if int(pipe.get(self._generation_key) or 0) != generation:
                    return False
                now = self._clock()
                payload = json.dumps({"written_at": now, "item": value.model_dump(mode="json")})
                ttl = int(min(self.expire_after_access, self.expire_after_write))

                pipe.multi()
                pipe.set(redis_key, payload, ex=ttl)
                pipe.zadd(self._index_key, {redis_key: now})
                pipe.execute()

            excess = self._redis.zcard(self._index_key) - self.max_size
            if excess > 0:
                evicted = self._redis.zpopmin(self._index_key, excess)
                if evicted:
                    self._redis.delete(*[member for member, _ in evicted])
            return True
        except WatchError:
            logger.debug(f"Cache cleared while storing {key}, entry dropped")
            return False
        except RedisError as e:
            logger.error(f"Cache set error for {key}: {e}")
            return False

    def clear(self) -> None:
        """
        Drop every cached item.

        Raises:
            StoreUnavailable: if redis cannot be reached, since stale entries
                would otherwise outlive the mutation
        """
        try:
            self._redis.incr(self._generation_key)
            keys = list(self._redis.scan_iter(match=f"{self.namespace}:*"))
            if keys:
                self._redis.delete(*keys)
        except RedisError as e:
            logger.error(f"Cache clear error: {e}")
            raise StoreUnavailable("Inventory cache could not be cleared") from e


def create_item_cache():
    """Build the cache backend selected by CACHE_BACKEND."""
    if config.CACHE_BACKEND == "redis":
        logger.info(f"Using redis item cache at {config.REDIS_URL}")
        return RedisItemCache()
    return MemoryItemCache()
