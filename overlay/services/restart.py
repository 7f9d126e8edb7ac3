"""Restart marker files watched by an external process supervisor."""

from __future__ import annotations

import logging
import os
import tempfile
import time
from typing import Callable, Iterable, List

from overlay.errors import ArtifactWriteError
from overlay.metrics import RESTART_MARKERS, best_effort

log = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _write_atomic(path: str, payload: str) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".restart.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


class RestartSignal:
    """Touching only records intent; nothing here waits for a restart."""

    def __init__(self, paths: Iterable[str], clock: Callable[[], int] = _now_ms) -> None:
        self.paths: List[str] = [p for p in paths if p]
        self._clock = clock

    def touch(self) -> List[str]:
        """Write the current timestamp to every marker. Returns the paths written."""
        stamp = str(self._clock())
        written: List[str] = []
        for path in self.paths:
            try:
                _write_atomic(path, stamp)
            except OSError as exc:
                log.error("restart marker write failed: %s", exc, extra={"path": path})
                continue
            written.append(path)
            best_effort("inc restart", RESTART_MARKERS.inc)
        if self.paths and not written:
            raise ArtifactWriteError("no restart marker could be written")
        log.info("restart markers touched", extra={"paths": written, "stamp": stamp})
        return written


__all__ = ["RestartSignal"]
