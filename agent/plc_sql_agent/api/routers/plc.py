from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from ...errors import CommunicationError, InvalidAddressError
from ..deps import get_runtime


router = APIRouter(prefix="/plc")


def _int_field(payload: Dict[str, Any], key: str) -> int:
    try:
        return int(payload.get(key))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{key.upper()}_INVALID")


@router.get("")
def get_plc(runtime=Depends(get_runtime)) -> Dict[str, Any]:
    host, port = runtime.client.target
    poller = runtime.poller
    return {
        "host": host,
        "port": port,
        "connected": poller.connected,
        "polling": poller.running,
        "status": poller.status_message,
        "loggers": len(poller.loggers()),
    }


@router.post("/connect")
def connect(payload: Optional[Dict[str, Any]] = Body(None), runtime=Depends(get_runtime)) -> Dict[str, Any]:
    payload = payload or {}
    host = (payload.get("host") or "").strip() or None
    port = _int_field(payload, "port") if payload.get("port") is not None else None
    ok = runtime.poller.connect(host, port)
    if not ok:
        raise HTTPException(status_code=502, detail=runtime.poller.status_message)
    return {"success": True, "message": runtime.poller.status_message}


@router.post("/disconnect")
def disconnect(runtime=Depends(get_runtime)) -> Dict[str, Any]:
    runtime.poller.disconnect()
    return {"success": True}


@router.post("/write")
def write_word(payload: Dict[str, Any], runtime=Depends(get_runtime)) -> Dict[str, Any]:
    address = (payload.get("address") or "").strip()
    value = _int_field(payload, "value")
    if not 0 <= value <= 0xFFFF:
        raise HTTPException(status_code=400, detail="VALUE_OUT_OF_RANGE")
    try:
        runtime.poller.write_word(address, value)
    except InvalidAddressError as e:
        raise HTTPException(status_code=400, detail=f"ADDRESS_INVALID: {e.reason}")
    except CommunicationError as e:
        raise HTTPException(status_code=502, detail=f"PLC_WRITE_FAILED: {e.message}")
    return {"success": True, "message": f"Value {value} written to {address}"}


@router.post("/pc-status")
def pc_status(payload: Dict[str, Any], runtime=Depends(get_runtime)) -> Dict[str, Any]:
    online = bool(payload.get("online", True))
    try:
        runtime.client.write_pc_status(online)
    except CommunicationError as e:
        raise HTTPException(status_code=502, detail=f"PLC_WRITE_FAILED: {e.message}")
    return {"success": True, "online": online}
