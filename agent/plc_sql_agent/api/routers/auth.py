from __future__ import annotations

import os
from fastapi import APIRouter

from ..security import get_or_create_token


router = APIRouter(prefix="/auth")


@router.get("/handshake")
def handshake():
    """Return the per-run token and port for a local UI.

    Unauthenticated on purpose; the middleware lets this path through.
    """
    tok = get_or_create_token()
    port = int(os.environ.get("AGENT_PORT", "0")) or None
    return {"success": True, "token": tok, "port": port}
