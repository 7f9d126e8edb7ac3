"""Admin override write sequence and cached read views.

Write: validate -> coerce -> invalidate (+grace) -> persist (+derived) ->
regenerate artifact from the persisted tree -> invalidate (+grace) ->
optional restart marker. Validation failures happen before any side effect.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from overlay.errors import ArtifactWriteError, ConfigValidationError, OverlayError
from overlay.metrics import inc_write
from overlay.services import key_policy
from overlay.services.cache import ALL_CONFIG_KEYS, CacheCoordinator, CacheKeys
from overlay.services.derived_fields import derive
from overlay.services.merge import MergeEngine
from overlay.services.override_store import OverrideDocument, OverrideStore
from overlay.services.resolver import PrecedenceResolver
from overlay.services.restart import RestartSignal
from overlay.services.views import (
    build_endpoints_config,
    build_models_config,
    build_startup_config,
)
from overlay.telemetry.logging import bind, redact

log = bind(logging.getLogger(__name__), component="admin_config")


@dataclass
class WriteResult:
    document: OverrideDocument
    restart_required: bool = False
    markers: Optional[List[str]] = None


class AdminConfigService:
    def __init__(
        self,
        store: OverrideStore,
        merge: MergeEngine,
        cache: CacheCoordinator,
        restart: RestartSignal,
        *,
        environ: Optional[Mapping[str, str]] = None,
        admin_ttl_s: int = 300,
        config_ttl_s: int = 3600,
        restart_on_write: bool = False,
        audit_path: Optional[str] = None,
    ) -> None:
        self.store = store
        self.merge = merge
        self.cache = cache
        self.restart = restart
        self.environ = environ
        self.admin_ttl_s = admin_ttl_s
        self.config_ttl_s = config_ttl_s
        self.restart_on_write = restart_on_write
        self.audit_path = audit_path

    # ------------------------------------------------------------------ writes

    def _validate(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        if not changes:
            raise ConfigValidationError("key is required")
        typed: Dict[str, Any] = {}
        for key, raw in changes.items():
            if key is None or key == "":
                raise ConfigValidationError("key is required")
            spec = key_policy.validate(key)
            typed[spec.path] = key_policy.coerce_checked(spec, raw)
        return typed

    async def set_value(self, key: Any, value: Any, user_id: Optional[str] = None) -> WriteResult:
        if not isinstance(key, str) or not key:
            inc_write("set", "rejected")
            raise ConfigValidationError("key is required")
        return await self.set_many({key: value}, user_id)

    async def set_many(
        self, changes: Mapping[str, Any], user_id: Optional[str] = None
    ) -> WriteResult:
        try:
            typed = self._validate(changes)
        except ConfigValidationError:
            inc_write("set", "rejected")
            raise

        await self.cache.invalidate(ALL_CONFIG_KEYS)
        try:
            doc = self.store.update(typed, user_id, derive=derive)
        except OverlayError:
            inc_write("set", "error")
            raise
        # Persisted and therefore accepted, whatever happens to the artifact below.
        for key, value in typed.items():
            log.info(
                "override updated",
                extra={"key": key, "actor": user_id, "generation": doc.generation},
            )
            self._audit("set", user_id, key, value, doc.generation)

        try:
            self.merge.generate(overrides=doc.overrides)
        except ArtifactWriteError:
            inc_write("set", "artifact_error")
            # The document is persisted; caches must not keep serving the old view.
            await self.cache.invalidate(ALL_CONFIG_KEYS)
            raise
        await self.cache.invalidate(ALL_CONFIG_KEYS)

        needs_restart = key_policy.restart_required(typed)
        markers: Optional[List[str]] = None
        if needs_restart and self.restart_on_write:
            try:
                markers = self.restart.touch()
            except ArtifactWriteError:
                inc_write("set", "artifact_error")
                raise
        inc_write("set", "ok")
        return WriteResult(document=doc, restart_required=needs_restart, markers=markers)

    async def reset_all(self, user_id: Optional[str] = None) -> OverrideDocument:
        await self.cache.invalidate(ALL_CONFIG_KEYS)
        try:
            doc = self.store.reset_all(user_id)
        except OverlayError:
            inc_write("reset", "error")
            raise
        log.info("overrides reset", extra={"actor": user_id, "generation": doc.generation})
        self._audit("reset", user_id, None, None, doc.generation)

        try:
            self.merge.generate(overrides=doc.overrides)
        except ArtifactWriteError:
            inc_write("reset", "artifact_error")
            await self.cache.invalidate(ALL_CONFIG_KEYS)
            raise
        await self.cache.invalidate(ALL_CONFIG_KEYS)
        inc_write("reset", "ok")
        return doc

    async def apply(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Regenerate from storage, then signal the supervisor to restart."""
        try:
            doc = self.store.get_document()
            self.merge.generate(overrides=doc.overrides)
            await self.cache.invalidate(ALL_CONFIG_KEYS)
            markers = self.restart.touch()
        except OverlayError:
            inc_write("apply", "error")
            raise
        self._audit("apply", user_id, None, None, doc.generation)
        inc_write("apply", "ok")
        return {"success": True, "markers": markers, "generation": doc.generation}

    def _audit(
        self,
        op: str,
        actor: Optional[str],
        key: Optional[str],
        value: Any,
        generation: int,
    ) -> None:
        if not self.audit_path:
            return
        line = json.dumps(
            {
                "ts": int(time.time() * 1000),
                "actor": actor,
                "op": op,
                "key": key,
                "value": redact({key: value})[key] if key else value,
                "generation": generation,
            },
            ensure_ascii=False,
            separators=(",", ":"),
            default=str,
        )
        try:
            directory = os.path.dirname(os.path.abspath(self.audit_path))
            os.makedirs(directory, exist_ok=True)
            with open(self.audit_path, "a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            log.warning("audit write failed: %s", exc)

    # ------------------------------------------------------------------- reads

    async def current_document(self) -> OverrideDocument:
        # Read the epoch first: a document fetched before a concurrent write's
        # invalidation is then stamped with the old epoch and never served.
        epoch = await self.cache.epoch()
        if epoch is not None:
            cached = await self.cache.lookup(CacheKeys.ADMIN_CONFIG, None, epoch)
            if isinstance(cached, dict):
                return OverrideDocument.from_dict(cached)
        doc = self.store.get_document()
        if epoch is not None:
            await self.cache.store(
                CacheKeys.ADMIN_CONFIG, doc.generation, doc.to_dict(), self.admin_ttl_s, epoch
            )
        return doc

    async def get_overrides(self) -> Dict[str, Any]:
        return (await self.current_document()).overrides

    def _resolver(self, doc: OverrideDocument) -> PrecedenceResolver:
        return PrecedenceResolver(doc.overrides, self.merge.load_base(), self.environ)

    async def merged_config(self, doc: Optional[OverrideDocument] = None) -> Dict[str, Any]:
        doc = doc or await self.current_document()
        if self.merge.dirty:
            # Retry a regeneration that failed on an earlier write.
            try:
                self.merge.generate(overrides=doc.overrides)
            except ArtifactWriteError as exc:
                log.warning("merged config still not writable: %s", exc)
        return await self.cache.get_or_compute(
            CacheKeys.OVERRIDE_CONFIG,
            doc.generation,
            lambda: self.merge.merge(doc.overrides),
            self.config_ttl_s,
        )

    async def startup_config(self) -> Dict[str, Any]:
        doc = await self.current_document()
        return await self.cache.get_or_compute(
            CacheKeys.STARTUP_CONFIG,
            doc.generation,
            lambda: build_startup_config(self._resolver(doc), doc.generation),
            self.config_ttl_s,
        )

    async def endpoints_config(self) -> Dict[str, Any]:
        doc = await self.current_document()
        merged = await self.merged_config(doc)
        return await self.cache.get_or_compute(
            CacheKeys.ENDPOINTS_CONFIG,
            doc.generation,
            lambda: build_endpoints_config(merged),
            self.config_ttl_s,
        )

    async def models_config(self) -> Dict[str, Any]:
        doc = await self.current_document()
        merged = await self.merged_config(doc)
        return await self.cache.get_or_compute(
            CacheKeys.MODELS_CONFIG,
            doc.generation,
            lambda: build_models_config(merged),
            self.config_ttl_s,
        )

    async def effective(self) -> Dict[str, Any]:
        doc = await self.current_document()
        return {"generation": doc.generation, "keys": self._resolver(doc).effective()}

    async def resolve(self, key: str) -> Any:
        doc = await self.current_document()
        return self._resolver(doc).resolve(key)


__all__ = ["AdminConfigService", "WriteResult"]
