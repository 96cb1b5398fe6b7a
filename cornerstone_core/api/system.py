# cornerstone_core/api/system.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import asyncio

from fastapi import APIRouter, Request

from ..core.system_info import get_system_info
from .deps import get_runtime

router = APIRouter(prefix="/system", tags=["System"])


@router.get("/status")
async def system_status(request: Request):
    runtime = get_runtime(request)
    _, work_dir = await asyncio.to_thread(runtime.settings_service.get_plugin_runtime_defaults)
    return {
        "status": "ok",
        "system": get_system_info(work_dir),
        "dispatcher": runtime.dispatcher.stats(),
    }
