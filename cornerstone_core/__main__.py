# cornerstone_core/__main__.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)

import os

import uvicorn

from .utils.config import settings


def main():
    host = os.getenv("CORNERSTONE_CORE_HOST", settings.SERVER_HOST)
    port = int(os.getenv("CORNERSTONE_CORE_PORT", str(settings.SERVER_PORT)))
    reload_enabled = os.getenv("CORNERSTONE_CORE_RELOAD", "false").lower() == "true"
    workers = int(os.getenv("CORNERSTONE_CORE_WORKERS", "1"))
    if reload_enabled and workers > 1:
        # Uvicorn does not allow reload with multiple workers.
        workers = 1
    uvicorn.run(
        "cornerstone_core.main:app",
        host=host,
        port=port,
        reload=reload_enabled,
        workers=max(1, workers),
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
