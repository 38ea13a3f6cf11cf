"""
Redis-backed cache for resolved permission sets.

Entries are tagged with the records they were computed from
(``user:7``, ``tenant:3``, ``role:12``, ``plan:2``). Each tag is a Redis set
holding the entry keys that depend on it. Write paths call ``invalidate``
with the tags they touched after their transaction commits.

Every invalidation bumps a shared generation counter. A value is stored
under ``WATCH`` of that counter and only if it still holds the generation
read before computing, so a result computed while another worker
invalidated is returned to its caller but never stored.
"""
import json
from typing import Any, Awaitable, Callable, Iterable, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)

PermissionIds = frozenset[int]


class CacheKeys:
    """Key and tag templates."""

    EFFECTIVE_PERMISSIONS = "effective:{user_id}"
    ENTITLED_PERMISSIONS = "entitled:{tenant_id}"
    GLOBAL_PERMISSIONS = "entitled:global"

    USER = "user:{user_id}"
    TENANT = "tenant:{tenant_id}"
    ROLE = "role:{role_id}"
    PLAN = "plan:{plan_id}"
    # Permissions sold by no feature (the baseline of users without a tenant)
    GLOBAL = "global"

    @staticmethod
    def format(template: str, **kwargs: Any) -> str:
        return template.format(**kwargs)


class ResolutionCache:
    """Tag-invalidated permission-set cache. A ttl of 0 disables it."""

    def __init__(self, client: aioredis.Redis, ttl: int, prefix: str = "acl"):
        self.client = client
        self.ttl = ttl
        self.prefix = prefix

    def _entry_key(self, key: str) -> str:
        return f"{self.prefix}:entry:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.prefix}:tag:{tag}"

    @property
    def _generation_key(self) -> str:
        return f"{self.prefix}:generation"

    async def generation(self) -> int:
        return int(await self.client.get(self._generation_key) or 0)

    async def get(self, key: str) -> Optional[PermissionIds]:
        if self.ttl <= 0:
            return None
        try:
            raw = await self.client.get(self._entry_key(key))
        except RedisError as e:
            log.error(f"Cache get error for key {key}: {e}")
            return None
        if raw is None:
            return None
        log.debug(f"Cache HIT: {key}")
        return frozenset(json.loads(raw))

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[tuple[PermissionIds, Iterable[str]]]],
    ) -> PermissionIds:
        """
        Return the cached set for ``key`` or compute it.

        ``compute`` returns the set together with the tags it depends on.
        """
        if self.ttl <= 0:
            value, _ = await compute()
            return value

        cached = await self.get(key)
        if cached is not None:
            return cached

        log.debug(f"Cache MISS: {key}")
        try:
            generation = await self.generation()
        except RedisError as e:
            log.error(f"Cache generation read failed: {e}")
            value, _ = await compute()
            return value

        value, tags = await compute()
        await self._store(key, value, tags, generation)
        return value

    async def _store(self, key: str, value: PermissionIds, tags: Iterable[str], generation: int) -> None:
        entry_key = self._entry_key(key)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                await pipe.watch(self._generation_key)
                current = int(await pipe.get(self._generation_key) or 0)
                if current != generation:
                    log.debug(f"Cache SKIP: {key} (invalidated while computing)")
                    return
                pipe.multi()
                pipe.set(entry_key, json.dumps(sorted(value)), ex=self.ttl)
                for tag in tags:
                    pipe.sadd(self._tag_key(tag), entry_key)
                    pipe.expire(self._tag_key(tag), self.ttl)
                await pipe.execute()
        except WatchError:
            log.debug(f"Cache SKIP: {key} (invalidated while storing)")
        except RedisError as e:
            log.error(f"Cache set error for key {key}: {e}")

    async def invalidate(self, *tags: str) -> int:
        """
        Drop every entry carrying any of ``tags``. Returns the number dropped.

        The generation is bumped first: anything stored after that was
        computed after the caller's commit. Stale keys are removed from the
        tag sets one by one so such fresh entries stay tagged.
        """
        if self.ttl <= 0 or not tags:
            return 0
        await self.client.incr(self._generation_key)
        tag_keys = [self._tag_key(tag) for tag in tags]
        stale = await self.client.sunion(tag_keys)
        dropped = 0
        if stale:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.delete(*stale)
                for tag_key in tag_keys:
                    pipe.srem(tag_key, *stale)
                dropped, *_ = await pipe.execute()
        log.debug(f"Invalidated {dropped} cache entries for {sorted(tags)}")
        return dropped

    async def invalidate_all(self) -> None:
        if self.ttl <= 0:
            return
        await self.client.incr(self._generation_key)
        # Tags before entries, so an entry stored meanwhile is never left untagged
        for pattern in (f"{self.prefix}:tag:*", f"{self.prefix}:entry:*"):
            keys = [k async for k in self.client.scan_iter(match=pattern)]
            if keys:
                await self.client.delete(*keys)
        log.debug("Invalidated all cache entries")

    async def size(self) -> int:
        return len([k async for k in self.client.scan_iter(match=f"{self.prefix}:entry:*")])


resolution_cache = ResolutionCache(
    aioredis.from_url(config.REDIS_URL, decode_responses=True),
    config.PERMISSION_CACHE_TTL,
    prefix=config.CACHE_PREFIX,
)
