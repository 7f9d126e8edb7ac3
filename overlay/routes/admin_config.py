from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from overlay.config import admin_token
from overlay.services.config_service import AdminConfigService
from overlay.telemetry.request_id import get_actor

router = APIRouter(prefix="/admin", tags=["admin-config"])
public_router = APIRouter(tags=["config"])


def _require_admin(request: Request) -> None:
    token = admin_token()
    auth = request.headers.get("Authorization")
    if not token or not auth or not auth.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    provided = auth.split(" ", 1)[1]
    if provided != token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _service(request: Request) -> AdminConfigService:
    return request.app.state.admin_config


# ---- Admin -------------------------------------------------------------------


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"plugin": "admin-config", "status": "ok"}


@router.get("/config")
async def get_config(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    return {"overrides": await _service(request).get_overrides()}


@router.post("/config")
async def set_config(request: Request, payload: Dict[str, Any]) -> Dict[str, Any]:
    _require_admin(request)
    result = await _service(request).set_value(
        payload.get("key"), payload.get("value"), get_actor()
    )
    return {
        "overrides": result.document.overrides,
        "restartRequired": result.restart_required,
        "generation": result.document.generation,
    }


@router.delete("/config")
async def reset_config(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    doc = await _service(request).reset_all(get_actor())
    return {"success": True, "overrides": doc.overrides, "generation": doc.generation}


@router.post("/config/apply")
async def apply_config(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    out = await _service(request).apply(get_actor())
    return {"message": "Restart flag written", **out}


@router.get("/config/effective")
async def effective_config(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    return await _service(request).effective()


# ---- Public ------------------------------------------------------------------


@public_router.get("/config")
async def startup_config(request: Request) -> Dict[str, Any]:
    return await _service(request).startup_config()


@public_router.get("/config/endpoints")
async def endpoints_config(request: Request) -> Dict[str, Any]:
    return await _service(request).endpoints_config()


@public_router.get("/config/models")
async def models_config(request: Request) -> Dict[str, Any]:
    return await _service(request).models_config()


@public_router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
