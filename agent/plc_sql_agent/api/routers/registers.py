from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps import get_runtime


router = APIRouter(prefix="/registers")


def _parse_range(r: Optional[str]) -> int:
    if not r:
        return 300
    s = str(r).strip().lower()
    try:
        if s.endswith("s"):
            return max(1, int(s[:-1]))
        if s.endswith("m"):
            return max(1, int(float(s[:-1]) * 60))
        return max(1, int(s))
    except ValueError:
        return 300


@router.get("")
def list_registers(runtime=Depends(get_runtime)) -> Dict[str, Any]:
    return {"items": runtime.poller.rows()}


@router.get("/values")
def register_values(runtime=Depends(get_runtime)) -> Dict[str, Any]:
    return {"values": runtime.poller.snapshot()}


@router.get("/metrics/summary")
def metrics_summary(runtime=Depends(get_runtime)) -> Dict[str, Any]:
    items = [{"name": name, **s} for name, s in runtime.metrics.summary().items()]
    return {"ok": True, "data": items}


@router.get("/{field_name}")
def get_register(field_name: str, runtime=Depends(get_runtime)) -> Dict[str, Any]:
    row = next((r for r in runtime.poller.rows() if r["fieldName"] == field_name), None)
    if row is None:
        raise HTTPException(status_code=404, detail="REGISTER_NOT_FOUND")
    lg = runtime.poller.loggers().get(field_name)
    if lg is not None:
        row["logger"] = {
            "state": lg.state.value,
            "lastLoggedValue": lg.last_logged_value,
            "lastLoggedAt": lg.last_logged_at.isoformat() if lg.last_logged_at else None,
        }
    return {"item": row}


@router.get("/{field_name}/metrics")
def register_metrics(field_name: str, range: Optional[str] = Query(None), runtime=Depends(get_runtime)) -> Dict[str, Any]:
    if runtime.poller.config.get(field_name) is None:
        raise HTTPException(status_code=404, detail="REGISTER_NOT_FOUND")
    rm = runtime.metrics.get(field_name)
    window_secs = _parse_range(range)
    return {
        "ok": True,
        "data": {
            "timeseries": rm.timeseries(window_secs),
            "summary": rm.summary_last_secs(min(window_secs, 60)),
            "errors": rm.error_list(),
        },
    }
