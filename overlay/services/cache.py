"""Named config cache entries and the invalidation protocol around writes.

Entries are stamped with the override document generation they were computed
from and with the invalidation epoch read before computing them. ``invalidate``
bumps the epoch, so an entry computed from a read that began before a write is
a miss even if it lands in the cache after the write's last invalidation. A
lookup with a different generation or epoch is a miss. Every backend error is
absorbed here: logged, counted, and treated as a miss.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from threading import RLock
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol, Tuple

from overlay.metrics import inc_cache
from overlay.telemetry.logging import bind

log = bind(logging.getLogger(__name__), component="cache")


class CacheKeys:
    ADMIN_CONFIG = "admin-config"
    STARTUP_CONFIG = "startupConfig"
    ENDPOINTS_CONFIG = "endpointsConfig"
    MODELS_CONFIG = "modelsConfig"
    OVERRIDE_CONFIG = "overrideConfig"
    # Bumped on every invalidation, never deleted by it.
    EPOCH = "cacheEpoch"


ALL_CONFIG_KEYS: Tuple[str, ...] = (
    CacheKeys.ADMIN_CONFIG,
    CacheKeys.STARTUP_CONFIG,
    CacheKeys.ENDPOINTS_CONFIG,
    CacheKeys.MODELS_CONFIG,
    CacheKeys.OVERRIDE_CONFIG,
)


class ConfigCache(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl_s: int) -> None:
        ...

    async def delete(self, *keys: str) -> None:
        ...

    async def incr(self, key: str) -> int:
        ...


class MemoryConfigCache:
    """In-process TTL cache. A ttl of 0 means no expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = RLock()

    async def get(self, key: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires = item
            if expires is not None and now >= expires:
                self._data.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: str, ttl_s: int) -> None:
        expires = self._clock() + ttl_s if ttl_s > 0 else None
        with self._lock:
            self._data[key] = (value, expires)

    async def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)

    async def incr(self, key: str) -> int:
        with self._lock:
            raw, expires = self._data.get(key, ("0", None))
            value = int(raw) + 1
            self._data[key] = (str(value), expires)
            return value

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisConfigCache:
    """Shared cache across processes; keys are prefixed with ``namespace``."""

    def __init__(self, client: Any, namespace: str = "overlay") -> None:
        self._cli = client
        self._ns = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "overlay") -> "RedisConfigCache":
        from redis.asyncio import Redis

        return cls(Redis.from_url(url, encoding="utf-8", decode_responses=True), namespace)

    def _k(self, key: str) -> str:
        return f"{self._ns}:{key}"

    async def get(self, key: str) -> Optional[str]:
        val = await self._cli.get(self._k(key))
        if isinstance(val, bytes):
            return val.decode("utf-8")
        return val if isinstance(val, str) else None

    async def set(self, key: str, value: str, ttl_s: int) -> None:
        if ttl_s > 0:
            await self._cli.set(self._k(key), value, ex=ttl_s)
        else:
            await self._cli.set(self._k(key), value)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._cli.delete(*(self._k(k) for k in keys))

    async def incr(self, key: str) -> int:
        return int(await self._cli.incr(self._k(key)))

    async def close(self) -> None:
        await self._cli.aclose()


class CacheCoordinator:
    def __init__(
        self,
        cache: ConfigCache,
        grace_ms: int = 50,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.cache = cache
        self.grace_ms = max(0, int(grace_ms))
        self._sleep = sleep

    async def invalidate(self, keys: Iterable[str] = ALL_CONFIG_KEYS) -> None:
        """Bump the epoch, clear ``keys``, then wait out the grace interval."""
        names = tuple(keys)
        try:
            await self.cache.incr(CacheKeys.EPOCH)
        except Exception as exc:
            log.warning("cache epoch bump failed: %s", exc)
            inc_cache(CacheKeys.EPOCH, "error")
        try:
            await self.cache.delete(*names)
            for key in names:
                inc_cache(key, "invalidate")
        except Exception as exc:
            log.warning("cache invalidation failed: %s", exc, extra={"keys": list(names)})
            for key in names:
                inc_cache(key, "error")
        if self.grace_ms:
            await self._sleep(self.grace_ms / 1000.0)

    async def epoch(self) -> Optional[int]:
        """Current invalidation epoch; ``None`` when the backend cannot say."""
        try:
            raw = await self.cache.get(CacheKeys.EPOCH)
        except Exception as exc:
            log.warning("cache epoch read failed: %s", exc)
            inc_cache(CacheKeys.EPOCH, "error")
            return None
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            inc_cache(CacheKeys.EPOCH, "error")
            return None

    async def lookup(
        self, key: str, generation: Optional[int], epoch: Optional[int] = None
    ) -> Optional[Any]:
        """Cached value for ``key``; ``generation=None`` accepts any stamp.

        ``epoch`` defaults to the current one. Entries stamped with another
        epoch were computed before an invalidation and are stale.
        """
        if epoch is None:
            epoch = await self.epoch()
            if epoch is None:
                return None
        try:
            raw = await self.cache.get(key)
        except Exception as exc:
            log.warning("cache read failed for %s: %s", key, exc)
            inc_cache(key, "error")
            return None
        if raw is None:
            inc_cache(key, "miss")
            return None
        try:
            entry = json.loads(raw)
        except ValueError:
            inc_cache(key, "error")
            return None
        if (
            not isinstance(entry, dict)
            or entry.get("epoch") != epoch
            or (generation is not None and entry.get("generation") != generation)
        ):
            inc_cache(key, "stale")
            return None
        inc_cache(key, "hit")
        return entry.get("value")

    async def store(
        self,
        key: str,
        generation: Optional[int],
        value: Any,
        ttl_s: int,
        epoch: Optional[int] = None,
    ) -> None:
        """Populate ``key``; pass the ``epoch`` read before computing ``value``."""
        if epoch is None:
            epoch = await self.epoch()
            if epoch is None:
                return
        payload = json.dumps(
            {"generation": generation, "epoch": epoch, "value": value}, default=str
        )
        try:
            await self.cache.set(key, payload, ttl_s)
        except Exception as exc:
            log.warning("cache write failed for %s: %s", key, exc)
            inc_cache(key, "error")

    async def get_or_compute(
        self,
        key: str,
        generation: Optional[int],
        compute: Callable[[], Any],
        ttl_s: int,
    ) -> Any:
        """Cached value for ``generation``; otherwise compute and populate lazily."""
        epoch = await self.epoch()
        if epoch is not None:
            cached = await self.lookup(key, generation, epoch)
            if cached is not None:
                return cached
        value = compute()
        if epoch is not None:
            await self.store(key, generation, value, ttl_s, epoch)
        return value

    async def close(self) -> None:
        closer = getattr(self.cache, "close", None)
        if closer is None:
            return
        try:
            await closer()
        except Exception as exc:
            log.warning("cache close failed: %s", exc)


__all__ = [
    "ALL_CONFIG_KEYS",
    "CacheCoordinator",
    "CacheKeys",
    "ConfigCache",
    "MemoryConfigCache",
    "RedisConfigCache",
]
