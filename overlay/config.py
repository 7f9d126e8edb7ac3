# overlay/config.py
from __future__ import annotations

import os
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # --- Identity ---
    APP_NAME: str = Field(default="Admin Config Overlay")
    ENV: str = Field(default=os.environ.get("ENV", "dev"))

    # --- Logging ---
    LOG_JSON: bool = Field(default=True)
    LOG_LEVEL: str = Field(default="INFO")

    # --- Admin auth ---
    ADMIN_TOKEN: Optional[str] = None

    # --- Files ---
    BASE_CONFIG_PATH: str = Field(default="librechat.yaml")
    MERGED_CONFIG_PATH: str = Field(default="librechat.merged.yaml")
    ADMIN_OVERLAY_PATH: str = Field(default="admin-overrides.yaml")
    # comma-separated; each path is touched on apply
    RESTART_MARKER_PATHS: str = Field(default="restart.flag")
    RESTART_ON_WRITE: bool = Field(default=False)

    # --- Override storage ---
    OVERRIDES_BACKEND: Literal["sql", "memory"] = Field(default="sql")
    OVERRIDES_DSN: str = Field(default="sqlite:///./data/admin_config.db")
    STORE_CONNECT_TIMEOUT_S: float = Field(default=10.0, gt=0)
    OVERRIDES_PRUNE_STALE: bool = Field(default=True)

    # --- Cache ---
    CACHE_BACKEND: Literal["memory", "redis"] = Field(default="memory")
    REDIS_URL: Optional[str] = None  # e.g. redis://localhost:6379/0
    CACHE_NAMESPACE: str = Field(default="overlay")
    ADMIN_CONFIG_TTL_S: int = Field(default=300, ge=0)
    CONFIG_CACHE_TTL_S: int = Field(default=3600, ge=0)
    CACHE_GRACE_MS: int = Field(default=50, ge=0)

    # --- Audit ---
    AUDIT_LOG_PATH: Optional[str] = None

    model_config = {
        "extra": "ignore",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @property
    def restart_marker_paths(self) -> List[str]:
        return [p.strip() for p in self.RESTART_MARKER_PATHS.split(",") if p.strip()]


def get_settings() -> Settings:
    return Settings()


def admin_token() -> str | None:
    """Read per call so a rotated token applies without a restart."""
    token = get_settings().ADMIN_TOKEN or ""
    return token.strip() or None
