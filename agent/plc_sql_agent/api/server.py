from __future__ import annotations

import logging
import os
from typing import Optional

import uvicorn

from ..runtime import Runtime
from .app import create_app


log = logging.getLogger(__name__)


def run(host: str = "127.0.0.1", port: int = 5175, runtime: Optional[Runtime] = None) -> None:
    app = create_app(runtime)
    log.info("Starting uvicorn server at http://%s:%s", host, port)
    try:
        uvicorn.run(app, host=host, port=port, log_level=os.environ.get("UVICORN_LOG", "info"))
    finally:
        app.state.runtime.shutdown()
