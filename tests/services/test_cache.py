from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from overlay.services.cache import (
    ALL_CONFIG_KEYS,
    CacheCoordinator,
    CacheKeys,
    MemoryConfigCache,
    RedisConfigCache,
)


class _Clock:
    def __init__(self) -> None:
        self.t = 1000.0

    def __call__(self) -> float:
        return self.t


class _BrokenCache:
    async def get(self, key: str) -> Optional[str]:
        raise ConnectionError("cache down")

    async def set(self, key: str, value: str, ttl_s: int) -> None:
        raise ConnectionError("cache down")

    async def delete(self, *keys: str) -> None:
        raise ConnectionError("cache down")

    async def incr(self, key: str) -> int:
        raise ConnectionError("cache down")


class _FakeRedis:
    def __init__(self) -> None:
        self.data: Dict[str, str] = {}
        self.expiry: Dict[str, Any] = {}
        self.closed = False

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> None:
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            removed += 1 if self.data.pop(key, None) is not None else 0
        return removed

    async def incr(self, key: str) -> int:
        value = int(self.data.get(key, "0")) + 1
        self.data[key] = str(value)
        return value

    async def aclose(self) -> None:
        self.closed = True


async def test_memory_cache_expires_after_ttl():
    clock = _Clock()
    cache = MemoryConfigCache(clock=clock)
    await cache.set("k", "v", 10)
    assert await cache.get("k") == "v"
    clock.t += 11
    assert await cache.get("k") is None


async def test_memory_cache_zero_ttl_never_expires():
    clock = _Clock()
    cache = MemoryConfigCache(clock=clock)
    await cache.set("k", "v", 0)
    clock.t += 10_000
    assert await cache.get("k") == "v"


async def test_lookup_hits_only_for_matching_generation():
    coord = CacheCoordinator(MemoryConfigCache(), grace_ms=0)
    await coord.store(CacheKeys.STARTUP_CONFIG, 3, {"appTitle": "x"}, 60)
    assert await coord.lookup(CacheKeys.STARTUP_CONFIG, 3) == {"appTitle": "x"}
    assert await coord.lookup(CacheKeys.STARTUP_CONFIG, 4) is None
    assert await coord.lookup(CacheKeys.STARTUP_CONFIG, None) == {"appTitle": "x"}


async def test_invalidate_clears_every_key_then_waits_grace():
    slept: List[float] = []

    async def fake_sleep(seconds: float) -> None:
        slept.append(seconds)

    cache = MemoryConfigCache()
    coord = CacheCoordinator(cache, grace_ms=50, sleep=fake_sleep)
    for key in ALL_CONFIG_KEYS:
        await coord.store(key, 1, {"k": key}, 60)

    await coord.invalidate()
    for key in ALL_CONFIG_KEYS:
        assert await cache.get(key) is None
    assert slept == [0.05]


async def test_get_or_compute_populates_lazily():
    calls: List[int] = []

    def compute() -> Dict[str, Any]:
        calls.append(1)
        return {"models": ["a"]}

    coord = CacheCoordinator(MemoryConfigCache(), grace_ms=0)
    assert await coord.get_or_compute(CacheKeys.MODELS_CONFIG, 1, compute, 60) == {"models": ["a"]}
    assert await coord.get_or_compute(CacheKeys.MODELS_CONFIG, 1, compute, 60) == {"models": ["a"]}
    assert len(calls) == 1
    await coord.get_or_compute(CacheKeys.MODELS_CONFIG, 2, compute, 60)
    assert len(calls) == 2


async def test_cache_errors_are_absorbed_as_misses():
    slept: List[float] = []

    async def fake_sleep(seconds: float) -> None:
        slept.append(seconds)

    coord = CacheCoordinator(_BrokenCache(), grace_ms=20, sleep=fake_sleep)
    await coord.invalidate([CacheKeys.ENDPOINTS_CONFIG])
    assert slept == [0.02]
    assert await coord.lookup(CacheKeys.ENDPOINTS_CONFIG, 1) is None
    await coord.store(CacheKeys.ENDPOINTS_CONFIG, 1, {"x": 1}, 60)
    value = await coord.get_or_compute(CacheKeys.ENDPOINTS_CONFIG, 1, lambda: {"fresh": True}, 60)
    assert value == {"fresh": True}


async def test_corrupt_entry_is_a_miss():
    cache = MemoryConfigCache()
    await cache.set(CacheKeys.OVERRIDE_CONFIG, "{oops", 60)
    coord = CacheCoordinator(cache, grace_ms=0)
    assert await coord.lookup(CacheKeys.OVERRIDE_CONFIG, 1) is None


async def test_redis_cache_namespaces_keys_and_sets_expiry():
    cli = _FakeRedis()
    cache = RedisConfigCache(cli, namespace="tenant-a")
    coord = CacheCoordinator(cache, grace_ms=0)

    await coord.store(CacheKeys.STARTUP_CONFIG, 7, {"appTitle": "x"}, 3600)
    assert set(cli.data) == {"tenant-a:startupConfig"}
    assert cli.expiry["tenant-a:startupConfig"] == 3600
    assert json.loads(cli.data["tenant-a:startupConfig"])["generation"] == 7
    assert await coord.lookup(CacheKeys.STARTUP_CONFIG, 7) == {"appTitle": "x"}

    await coord.invalidate([CacheKeys.STARTUP_CONFIG])
    assert cli.data == {"tenant-a:cacheEpoch": "1"}

    await coord.close()
    assert cli.closed is True


async def test_entry_computed_before_invalidation_is_stale():
    cache = MemoryConfigCache()
    coord = CacheCoordinator(cache, grace_ms=0)
    before = await coord.epoch()
    assert before == 0

    await coord.invalidate()
    assert await coord.epoch() == 1
    # Lands after the invalidation but carries the epoch its read started under.
    await coord.store(CacheKeys.ADMIN_CONFIG, 0, {"overrides": {}}, 60, before)
    assert await cache.get(CacheKeys.ADMIN_CONFIG) is not None
    assert await coord.lookup(CacheKeys.ADMIN_CONFIG, None) is None

    await coord.store(CacheKeys.ADMIN_CONFIG, 1, {"overrides": {"a": 1}}, 60)
    assert await coord.lookup(CacheKeys.ADMIN_CONFIG, None) == {"overrides": {"a": 1}}


async def test_invalidate_keeps_epoch_key():
    cache = MemoryConfigCache()
    coord = CacheCoordinator(cache, grace_ms=0)
    await coord.invalidate()
    await coord.invalidate(ALL_CONFIG_KEYS)
    assert await cache.get(CacheKeys.EPOCH) == "2"
