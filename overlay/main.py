# overlay/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from overlay.config import Settings, get_settings
from overlay.routes.admin_config import public_router, router as admin_config_router
from overlay.runtime import build_service, cold_start
from overlay.services.config_service import AdminConfigService
from overlay.telemetry.errors import register_error_handlers
from overlay.telemetry.logging import configure_root_logging
from overlay.telemetry.request_id import RequestIDMiddleware

log = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "admin-config", "description": "Administrator overrides (bearer token)"},
    {"name": "config", "description": "Client-facing effective configuration"},
]


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[AdminConfigService] = None,
) -> FastAPI:
    settings = settings or get_settings()
    if settings.LOG_JSON:
        configure_root_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "admin_config", None) is None:
            app.state.admin_config = build_service(settings)
        svc: AdminConfigService = app.state.admin_config
        if not cold_start(svc, settings.OVERRIDES_PRUNE_STALE):
            log.warning("started with a stale merged config; next request will regenerate")
        try:
            yield
        finally:
            await svc.cache.close()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Administrator overrides layered over a static base configuration.",
        version="1.0.0",
        lifespan=lifespan,
        openapi_tags=OPENAPI_TAGS,
    )
    if service is not None:
        app.state.admin_config = service

    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)
    app.include_router(admin_config_router)
    app.include_router(public_router)
    return app


build_app = create_app
app = create_app()
