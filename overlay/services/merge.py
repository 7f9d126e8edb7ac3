"""Deep-merge of the override tree onto the static base configuration.

The merged artifact is a derived view: it is regenerated whole on every
accepted write and at cold start, and is always reproducible from the base
file plus the override document.
"""

from __future__ import annotations

import copy
import logging
import os
import tempfile
import threading
import time
from typing import Any, Dict, Mapping, Optional

import yaml

from overlay.errors import ArtifactWriteError, OverlayError
from overlay.metrics import MERGE_SECONDS, best_effort
from overlay.services.override_store import OverrideStore
from overlay.telemetry.logging import bind

log = bind(logging.getLogger(__name__), component="merge")


def deep_merge(base: Any, override: Any) -> Any:
    """Merge ``override`` onto ``base`` producing a new structure.

    Mappings merge key by key; lists and scalars in ``override`` replace the
    base value wholesale; ``None`` in ``override`` leaves the base untouched.
    """
    if override is None:
        return copy.deepcopy(base)
    if isinstance(override, Mapping):
        out: Dict[str, Any] = (
            {k: copy.deepcopy(v) for k, v in base.items()} if isinstance(base, Mapping) else {}
        )
        for key, value in override.items():
            if value is None:
                continue
            out[key] = deep_merge(out.get(key), value)
        return out
    if isinstance(override, list):
        return copy.deepcopy(override)
    return override


def load_yaml(path: str) -> Dict[str, Any]:
    """Missing file -> ``{}``; a non-mapping document -> ``{}``."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as exc:
        raise OverlayError(f"base configuration {path} is not valid YAML: {exc}") from exc
    return data if isinstance(data, dict) else {}


def write_yaml_atomic(path: str, data: Mapping[str, Any]) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=".overlay.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as fh:
            yaml.safe_dump(dict(data), fh, sort_keys=False, width=120, allow_unicode=True)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


class MergeEngine:
    def __init__(
        self,
        base_path: str,
        merged_path: str,
        overlay_path: Optional[str] = None,
        store: Optional[OverrideStore] = None,
    ) -> None:
        self.base_path = base_path
        self.merged_path = merged_path
        self.overlay_path = overlay_path
        self._store = store
        self._merged: Optional[Dict[str, Any]] = None
        self._dirty = True
        self._mu = threading.Lock()

    @property
    def dirty(self) -> bool:
        """True until an artifact generation has been fully written."""
        return self._dirty

    def mark_dirty(self) -> None:
        self._dirty = True

    def load_base(self) -> Dict[str, Any]:
        return load_yaml(self.base_path)

    def merge(self, overrides: Mapping[str, Any]) -> Dict[str, Any]:
        merged = deep_merge(self.load_base(), dict(overrides or {}))
        return merged if isinstance(merged, dict) else {}

    def persist(self, merged: Mapping[str, Any], output_path: str) -> None:
        try:
            write_yaml_atomic(output_path, merged)
        except OSError as exc:
            raise ArtifactWriteError(f"could not write {output_path}: {exc}") from exc

    def generate(self, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Regenerate the merged artifact.

        With ``overrides`` the caller's tree is used as-is (the write path passes
        the tree it just persisted); without, the current document is loaded
        from the store (cold start).
        """
        if overrides is None:
            if self._store is None:
                raise OverlayError("merge engine has no override store to load from")
            overrides = self._store.get_document().overrides

        started = time.perf_counter()
        with self._mu:
            merged = self.merge(overrides)
            self._merged = merged
            try:
                self.persist(merged, self.merged_path)
                if self.overlay_path:
                    self.persist(dict(overrides), self.overlay_path)
            except ArtifactWriteError:
                self._dirty = True
                log.error("merged config write failed", extra={"path": self.merged_path})
                raise
            self._dirty = False
        elapsed = time.perf_counter() - started
        best_effort("observe merge", lambda: MERGE_SECONDS.observe(elapsed))
        log.info("merged config written", extra={"path": self.merged_path})
        return copy.deepcopy(merged)

    def ensure_fresh(self) -> Dict[str, Any]:
        """Regenerate from the store if a previous write failed or nothing was generated yet."""
        if self._dirty or self._merged is None or not os.path.exists(self.merged_path):
            return self.generate()
        return copy.deepcopy(self._merged)

    def current(self) -> Dict[str, Any]:
        """Last merged object in memory, regenerating when stale."""
        return self.ensure_fresh()


__all__ = ["MergeEngine", "deep_merge", "load_yaml", "write_yaml_atomic"]
