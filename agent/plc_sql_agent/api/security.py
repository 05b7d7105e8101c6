from __future__ import annotations

import hmac
import logging
import os
import secrets
from typing import Callable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


log = logging.getLogger(__name__)

OPEN_PATHS = ("/auth/handshake", "/health", "/version")


def get_or_create_token() -> str:
    tok = os.environ.get("AGENT_TOKEN")
    if not tok:
        tok = secrets.token_urlsafe(24)
        os.environ["AGENT_TOKEN"] = tok
    return tok


def _provided_token(request: Request) -> Optional[str]:
    hdr = request.headers.get("x-agent-token") or request.headers.get("authorization")
    if not hdr:
        return None
    if hdr.lower().startswith("bearer "):
        return hdr.split(" ", 1)[1]
    return hdr


def auth_middleware() -> Callable:
    token = get_or_create_token()

    async def middleware(request: Request, call_next):
        # Loopback clients discover the token through the handshake
        if (request.url.path or "") in OPEN_PATHS:
            return await call_next(request)
        provided = _provided_token(request)
        if provided is None or not hmac.compare_digest(provided, token):
            log.debug("Auth failed path=%s", request.url.path)
            resp = JSONResponse(status_code=401, content={
                "success": False,
                "error": "PERMISSION_DENIED",
                "message": "Missing or invalid token",
            })
            resp.headers["WWW-Authenticate"] = "Bearer realm=plc-sql-agent"
            return resp
        return await call_next(request)

    return middleware
