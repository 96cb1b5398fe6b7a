# cornerstone_core/main.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load environment before settings are read
load_dotenv()

from .utils.config import settings
from .utils.logger import (
    setup_logger,
    register_lifecycle_start,
    register_lifecycle_shutdown,
)
from .api import api_router
from .api.logs import install_log_interceptor
from .core.runtime import CornerstoneRuntime
from .core.context import context

logger = setup_logger("cornerstone_core", level=settings.LOG_LEVEL)
lifecycle_logger = setup_logger("cornerstone_core.lifecycle", with_console=False)
# setup_logger stops propagation, so the history buffer hooks in directly
install_log_interceptor(logger)
COPYRIGHT_NOTICE = "Copyright (c) 2026 Monolink Systems"
LICENSE_NOTICE = "Cornerstone Core • Licensed under AGPLv3"


def create_app(runtime: CornerstoneRuntime = None) -> FastAPI:
    runtime = runtime or CornerstoneRuntime()
    context.runtime = runtime
    context.event_bus = runtime.event_bus
    context.dispatcher = runtime.dispatcher
    context.logger = logger

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url=None if os.getenv("ENV") == "production" else "/docs",
        redoc_url=None,
    )
    app.state.runtime = runtime

    raw_origins = os.getenv("CORNERSTONE_CORS_ORIGINS", "http://127.0.0.1:5000,http://localhost:5000")
    allow_origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"Request: {request.method} {request.url.path}")
        response = await call_next(request)
        logger.info(f"Response: {response.status_code} {request.url.path}")
        return response

    app.include_router(api_router)

    @app.on_event("startup")
    async def on_startup():
        lifecycle = register_lifecycle_start("cornerstone_core")
        lifecycle_line = (
            f"[LIFECYCLE] {lifecycle.get('event', 'startup').upper()} | starts={lifecycle.get('starts', 1)} "
            f"| pid={lifecycle.get('pid')} | at={lifecycle.get('at_utc')}"
        )
        logger.info(lifecycle_line)
        lifecycle_logger.info(lifecycle_line)
        logger.info("Cornerstone Core startup: initializing runtime")
        logger.info(COPYRIGHT_NOTICE)
        logger.info(LICENSE_NOTICE)

        await runtime.init()
        await runtime.start()

    @app.on_event("shutdown")
    async def on_shutdown():
        lifecycle = register_lifecycle_shutdown("cornerstone_core")
        lifecycle_line = f"[LIFECYCLE] SHUTDOWN | pid={lifecycle.get('pid')} | at={lifecycle.get('at_utc')}"
        logger.info(lifecycle_line)
        lifecycle_logger.info(lifecycle_line)
        logger.info("Cornerstone Core shutdown: stopping runtime")
        await runtime.shutdown()

    return app


app = create_app()
