"""Prometheus metrics for the override engine."""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Tuple

from prometheus_client import Counter, Histogram

_log = logging.getLogger(__name__)


def _label_tuple(labels: Iterable[str] | None) -> Tuple[str, ...]:
    return tuple(labels) if labels else ()


def metric_counter(
    name: str,
    documentation: str,
    labels: Iterable[str] | None = None,
) -> Counter:
    return Counter(name, documentation, _label_tuple(labels))


def metric_histogram(
    name: str,
    documentation: str,
    labels: Iterable[str] | None = None,
) -> Histogram:
    return Histogram(name, documentation, _label_tuple(labels))


CONFIG_WRITES = metric_counter(
    "overlay_config_writes_total",
    "Admin override operations by outcome",
    ["op", "outcome"],
)
CACHE_EVENTS = metric_counter(
    "overlay_cache_events_total",
    "Config cache lookups, invalidations and backend errors",
    ["key", "event"],
)
MERGE_SECONDS = metric_histogram(
    "overlay_merge_seconds",
    "Time spent regenerating the merged configuration artifact",
)
RESTART_MARKERS = metric_counter(
    "overlay_restart_markers_total",
    "Restart marker files written",
)


def best_effort(msg: str, fn: Callable[[], Any]) -> None:
    """Metrics must never fail a request path."""
    try:
        fn()
    except Exception as exc:  # pragma: no cover
        _log.debug("%s: %s", msg, exc)


def inc_write(op: str, outcome: str) -> None:
    best_effort("inc write", lambda: CONFIG_WRITES.labels(op=op, outcome=outcome).inc())


def inc_cache(key: str, event: str) -> None:
    best_effort("inc cache", lambda: CACHE_EVENTS.labels(key=key, event=event).inc())


__all__ = [
    "CONFIG_WRITES",
    "CACHE_EVENTS",
    "MERGE_SECONDS",
    "RESTART_MARKERS",
    "inc_write",
    "inc_cache",
    "best_effort",
]
