"""JSON line logging for the overlay service.

Override values routinely carry provider credentials (``modelProviders.*``),
so anything logged through ``extra`` is passed through ``redact`` first.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import IO, Any, Dict, Mapping, MutableMapping, Optional, Tuple

from overlay.telemetry.request_id import get_actor, get_request_id

_SECRET_KEY = re.compile(r"(api[_-]?key|secret|token|password|private[_-]?key)", re.IGNORECASE)
_REDACTED = "[redacted]"

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}


def redact(value: Any) -> Any:
    """JSON-safe copy of ``value`` with credential-looking fields masked."""
    if isinstance(value, Mapping):
        return {
            str(k): _REDACTED if _SECRET_KEY.search(str(k)) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set)):
        return [redact(v) for v in value]
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, message, correlation, extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": redact(datetime.fromtimestamp(record.created, tz=timezone.utc)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        rid = get_request_id()
        if rid:
            payload["request_id"] = rid
        actor = get_actor()
        if actor:
            payload["actor"] = actor

        extra = {
            k: v
            for k, v in record.__dict__.items()
            if k not in _RECORD_ATTRS and not k.startswith("_")
        }
        payload.update(redact(extra))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


_configured = False


def configure_root_logging(level: int | str = "INFO", stream: Optional[IO[str]] = None) -> None:
    """Install the JSON handler on the root logger once per process."""
    global _configured
    if _configured:
        return

    root = logging.getLogger()
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    _configured = True


class ContextAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Adds bound context to every record; per-call ``extra`` wins on conflicts."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        merged: Dict[str, Any] = dict(self.extra or {})
        call_extra = kwargs.get("extra")
        if isinstance(call_extra, Mapping):
            merged.update(call_extra)
        kwargs["extra"] = merged
        return msg, kwargs


def bind(logger: Optional[logging.Logger] = None, **context: Any) -> ContextAdapter:
    """``bind(logging.getLogger(__name__), component="merge")``"""
    return ContextAdapter(logger or logging.getLogger(), dict(context))


__all__ = ["ContextAdapter", "JsonFormatter", "bind", "configure_root_logging", "redact"]
