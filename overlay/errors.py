"""Error taxonomy for the override engine.

Each error carries the HTTP status it maps to so the route layer does not need
to know which component raised it.
"""

from __future__ import annotations


class OverlayError(Exception):
    status_code: int = 500
    code: str = "internal_error"


class ConfigValidationError(OverlayError):
    """Client supplied a key or value the key policy does not accept."""

    status_code = 400
    code = "bad_request"


class KeyNotAllowed(ConfigValidationError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Key '{key}' not allowed")
        self.key = key


class InvalidValue(ConfigValidationError):
    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Invalid value for '{key}': {reason}")
        self.key = key
        self.reason = reason


class StorageUnavailable(OverlayError):
    """Override storage could not be reached or refused the write."""

    status_code = 503
    code = "storage_unavailable"


class ArtifactWriteError(OverlayError):
    """A generated file (merged config, overlay, restart marker) could not be written."""

    status_code = 500
    code = "artifact_write_failed"


__all__ = [
    "OverlayError",
    "ConfigValidationError",
    "KeyNotAllowed",
    "InvalidValue",
    "StorageUnavailable",
    "ArtifactWriteError",
]
