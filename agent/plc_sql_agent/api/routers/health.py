from fastapi import APIRouter, Depends
import os
import sys
import platform
from threading import Timer

from ...version import VERSION
from ..deps import get_runtime


router = APIRouter()


@router.get("/health")
def get_health():
    return {"status": "ok", "agent": "plc-sql-agent", "version": VERSION}


@router.get("/version")
def get_version():
    import apscheduler as _aps
    import fastapi as _fastapi
    import sqlalchemy as _sqlalchemy
    return {
        "appVersion": VERSION,
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "fastapi": getattr(_fastapi, "__version__", "unknown"),
        "sqlalchemy": getattr(_sqlalchemy, "__version__", "unknown"),
        "apscheduler": getattr(_aps, "__version__", "unknown"),
        "port": int(os.environ.get("AGENT_PORT", "0")) or None,
    }


@router.post("/shutdown")
def shutdown(runtime=Depends(get_runtime)):
    runtime.shutdown()
    # Delay exit slightly to let response flush
    Timer(0.2, lambda: os._exit(0)).start()
    return {"ok": True, "message": "shutting_down"}
