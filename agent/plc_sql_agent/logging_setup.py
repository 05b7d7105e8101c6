from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def log_dir() -> Path:
    base = os.environ.get("ProgramData") or os.getcwd()
    return Path(base) / "PLCLogger" / "agent" / "logs"


def configure_logging(level: Optional[str] = None, to_file: bool = True) -> None:
    """Console logging plus a rotating file under ProgramData (or cwd)."""
    lvl_name = (level or os.environ.get("AGENT_LOG_LEVEL", "INFO")).upper()
    lvl = getattr(logging, lvl_name, logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=lvl, format=LOG_FORMAT)
    if not to_file:
        return
    if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        return
    try:
        d = log_dir()
        d.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(d / "agent.log", maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        fh.setLevel(lvl)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(fh)
    except OSError as e:
        logging.getLogger(__name__).warning("File logging setup warning: %s", e)
