from __future__ import annotations

import logging
from typing import Optional

from overlay.config import Settings
from overlay.errors import ArtifactWriteError, StorageUnavailable
from overlay.services.cache import CacheCoordinator, ConfigCache, MemoryConfigCache, RedisConfigCache
from overlay.services.config_service import AdminConfigService
from overlay.services.merge import MergeEngine
from overlay.services.override_store import MemoryOverrideStore, OverrideStore, SqlOverrideStore
from overlay.services.restart import RestartSignal

log = logging.getLogger(__name__)


def build_store(settings: Settings) -> OverrideStore:
    """Memory when OVERRIDES_BACKEND=memory, otherwise SQL over OVERRIDES_DSN."""
    if settings.OVERRIDES_BACKEND == "memory":
        return MemoryOverrideStore()
    return SqlOverrideStore.from_dsn(settings.OVERRIDES_DSN, settings.STORE_CONNECT_TIMEOUT_S)


def build_cache(settings: Settings) -> ConfigCache:
    if settings.CACHE_BACKEND == "redis" and settings.REDIS_URL:
        return RedisConfigCache.from_url(settings.REDIS_URL, settings.CACHE_NAMESPACE)
    if settings.CACHE_BACKEND == "redis":
        log.warning("CACHE_BACKEND=redis without REDIS_URL; using in-process cache")
    return MemoryConfigCache()


def build_merge(settings: Settings, store: Optional[OverrideStore] = None) -> MergeEngine:
    return MergeEngine(
        settings.BASE_CONFIG_PATH,
        settings.MERGED_CONFIG_PATH,
        settings.ADMIN_OVERLAY_PATH or None,
        store=store,
    )


def build_service(
    settings: Settings,
    store: Optional[OverrideStore] = None,
    cache: Optional[ConfigCache] = None,
) -> AdminConfigService:
    store = store if store is not None else build_store(settings)
    return AdminConfigService(
        store,
        build_merge(settings, store),
        CacheCoordinator(cache if cache is not None else build_cache(settings), settings.CACHE_GRACE_MS),
        RestartSignal(settings.restart_marker_paths),
        admin_ttl_s=settings.ADMIN_CONFIG_TTL_S,
        config_ttl_s=settings.CONFIG_CACHE_TTL_S,
        restart_on_write=settings.RESTART_ON_WRITE,
        audit_path=settings.AUDIT_LOG_PATH,
    )


def cold_start(service: AdminConfigService, prune_stale: bool = True) -> bool:
    """Prune duplicates and regenerate the merged artifact from storage.

    Returns False when storage or the artifact could not be reached; the engine
    is then left dirty so the first read or write regenerates it.
    """
    try:
        if prune_stale:
            service.store.prune_stale()
        service.merge.generate()
    except StorageUnavailable as exc:
        log.warning("cold start without overrides, storage unavailable: %s", exc)
        try:
            service.merge.generate(overrides={})
        except ArtifactWriteError as write_exc:
            log.error("cold start merge failed: %s", write_exc)
        service.merge.mark_dirty()
        return False
    except ArtifactWriteError as exc:
        log.error("cold start merge failed: %s", exc)
        return False
    return True


__all__ = ["build_cache", "build_merge", "build_service", "build_store", "cold_start"]
