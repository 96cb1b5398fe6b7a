# cornerstone_core/api/deps.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
from fastapi import HTTPException, Request

from ..core.context import context
from ..core.plugin_api import PluginError


def get_runtime(request: Request):
    runtime = getattr(request.app.state, "runtime", None) or context.runtime
    if runtime is None:
        raise HTTPException(status_code=503, detail="Runtime is unavailable")
    return runtime


def to_http_error(exc: PluginError) -> HTTPException:
    return HTTPException(status_code=getattr(exc, "status_code", 400), detail=str(exc))
