# cornerstone_core/api/settings.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request

from ..models.plugin import PluginRuntimeDefaults
from .deps import get_runtime
from .security import require_session

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("/plugin-runtime", response_model=PluginRuntimeDefaults)
async def get_plugin_runtime(request: Request, _user: str = Depends(require_session)):
    runtime = get_runtime(request)
    timeout, work_dir = await asyncio.to_thread(runtime.settings_service.get_plugin_runtime_defaults)
    return PluginRuntimeDefaults(timeout=timeout, work_dir=work_dir)


@router.put("/plugin-runtime", response_model=PluginRuntimeDefaults)
async def update_plugin_runtime(payload: PluginRuntimeDefaults, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        timeout, work_dir = await asyncio.to_thread(
            runtime.settings_service.update_plugin_runtime_defaults, payload.timeout, payload.work_dir, user_id
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return PluginRuntimeDefaults(timeout=timeout, work_dir=work_dir)
