from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from ...conditions import validate_condition
from ...config import dump_config
from ...errors import ConfigError
from ...queries import PLACEHOLDER_HELP, template_catalog
from ..deps import get_runtime


router = APIRouter(prefix="/config")


@router.get("")
def get_config(runtime=Depends(get_runtime)) -> Dict[str, Any]:
    return {"path": str(runtime.config_path), "config": dump_config(runtime.poller.config)}


@router.post("/reload")
def reload_config(runtime=Depends(get_runtime)) -> Dict[str, Any]:
    try:
        config = runtime.reload_config()
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"success": True, "registers": len(config.registers)}


@router.get("/templates")
def templates(table: str = Query("TableName")) -> Dict[str, Any]:
    try:
        catalog = template_catalog(table)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"items": [{"name": k, "query": v} for k, v in catalog.items()], "help": PLACEHOLDER_HELP}


@router.post("/validate-condition")
def check_condition(payload: Dict[str, Any]) -> Dict[str, Any]:
    problems = validate_condition(str(payload.get("condition") or ""))
    return {"valid": not problems, "problems": problems}
