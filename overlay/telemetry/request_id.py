from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_ACTOR: ContextVar[Optional[str]] = ContextVar("actor", default=None)

REQUEST_ID_HEADER = "X-Request-ID"
ACTOR_HEADER = "X-User-Id"


def get_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


def get_actor() -> Optional[str]:
    """Acting administrator for the current request, from ``X-User-Id``."""
    return _ACTOR.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Correlates every request:
    - reuse a non-blank inbound X-Request-ID, otherwise mint a UUID4;
    - bind it (and the X-User-Id actor) to context vars for log lines;
    - echo the id back on the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or str(uuid.uuid4())
        actor = (request.headers.get(ACTOR_HEADER) or "").strip() or None

        rid_token = _REQUEST_ID.set(rid)
        actor_token = _ACTOR.set(actor)
        try:
            request.state.request_id = rid
            response: Response = await call_next(request)
        finally:
            _ACTOR.reset(actor_token)
            _REQUEST_ID.reset(rid_token)

        response.headers.setdefault(REQUEST_ID_HEADER, rid)
        return response
