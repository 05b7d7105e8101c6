from __future__ import annotations

import logging
import os
import platform
import sys
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..logging_setup import configure_logging
from ..runtime import Runtime
from ..version import VERSION
from .routers import auth as auth_router
from .routers import config as config_router
from .routers import health, plc, registers
from .security import auth_middleware, get_or_create_token


log = logging.getLogger(__name__)


def create_app(runtime: Optional[Runtime] = None, start: bool = True) -> FastAPI:
    configure_logging()
    app = FastAPI(title="PLC SQL Agent", version=VERSION)
    # Register token auth middleware
    app.middleware("http")(auth_middleware())
    log.info("Agent %s on python %s (%s)", VERSION, sys.version.split()[0], platform.platform())

    # Allow local dev + packaged app (Tauri schemes send non-http origins)
    allow_origins = [
        os.environ.get("CORS_ORIGIN", "http://127.0.0.1:5173"),
        "http://localhost:5173",
        "http://127.0.0.1:5175",
        "http://localhost:5175",
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_origin_regex=r"^(app|tauri)://.*$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(health.router)
    app.include_router(auth_router.router)
    app.include_router(plc.router)
    app.include_router(registers.router)
    app.include_router(config_router.router)
    get_or_create_token()

    app.state.runtime = runtime or Runtime.from_env()
    if start:
        app.state.runtime.start()
    return app
