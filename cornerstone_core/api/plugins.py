# cornerstone_core/api/plugins.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from ..core.plugin_api import PluginError
from ..models.plugin import (
    BindingDetail,
    BindRequest,
    ExecutePluginRequest,
    Execution,
    Plugin,
    PluginCreate,
    PluginUpdate,
    UnbindRequest,
)
from .deps import get_runtime, to_http_error
from .security import require_session

router = APIRouter(prefix="/plugins", tags=["Plugins"])


@router.post("", response_model=Plugin, status_code=201)
async def create_plugin(payload: PluginCreate, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        return await asyncio.to_thread(runtime.plugins.create_plugin, payload, user_id)
    except PluginError as exc:
        raise to_http_error(exc)


@router.get("", response_model=List[Plugin])
async def list_plugins(request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    return await asyncio.to_thread(runtime.plugins.list_plugins, user_id)


@router.get("/{plugin_id}", response_model=Plugin)
async def get_plugin(plugin_id: str, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        return await asyncio.to_thread(runtime.plugins.get_owned_plugin, plugin_id, user_id)
    except PluginError as exc:
        raise to_http_error(exc)


@router.put("/{plugin_id}", response_model=Plugin)
async def update_plugin(plugin_id: str, payload: PluginUpdate, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        return await asyncio.to_thread(runtime.plugins.update_plugin, plugin_id, user_id, payload)
    except PluginError as exc:
        raise to_http_error(exc)


@router.delete("/{plugin_id}")
async def delete_plugin(plugin_id: str, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        await asyncio.to_thread(runtime.plugins.delete_plugin, plugin_id, user_id)
    except PluginError as exc:
        raise to_http_error(exc)
    return {"status": "deleted", "plugin_id": plugin_id}


@router.post("/{plugin_id}/bind", status_code=201)
async def bind_plugin(plugin_id: str, payload: BindRequest, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        plugin = await asyncio.to_thread(runtime.plugins.get_owned_plugin, plugin_id, user_id)
        binding_id = await asyncio.to_thread(runtime.bindings.bind, plugin.id, payload.table_id, payload.trigger)
    except PluginError as exc:
        raise to_http_error(exc)
    return {"status": "bound", "binding_id": binding_id, "table_id": payload.table_id, "trigger": payload.trigger}


@router.delete("/{plugin_id}/unbind")
async def unbind_plugin(plugin_id: str, payload: UnbindRequest, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        plugin = await asyncio.to_thread(runtime.plugins.get_owned_plugin, plugin_id, user_id)
        removed = await asyncio.to_thread(runtime.bindings.unbind, plugin.id, payload.table_id)
    except PluginError as exc:
        raise to_http_error(exc)
    return {"status": "unbound", "removed": removed}


@router.get("/{plugin_id}/bindings", response_model=List[BindingDetail])
async def list_bindings(plugin_id: str, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        plugin = await asyncio.to_thread(runtime.plugins.get_owned_plugin, plugin_id, user_id)
    except PluginError as exc:
        raise to_http_error(exc)
    return await asyncio.to_thread(runtime.bindings.list_bindings, plugin.id)


@router.post("/{plugin_id}/execute", response_model=Execution)
async def execute_plugin(plugin_id: str, payload: ExecutePluginRequest, request: Request, user_id: str = Depends(require_session)):
    # failed and timed-out runs are still a 200: the outcome is in the execution record
    runtime = get_runtime(request)
    try:
        return await runtime.dispatcher.execute_manual(plugin_id, user_id, payload)
    except PluginError as exc:
        raise to_http_error(exc)


@router.get("/{plugin_id}/executions", response_model=List[Execution])
async def list_executions(
    plugin_id: str,
    request: Request,
    limit: Optional[int] = Query(default=None),
    user_id: str = Depends(require_session),
):
    runtime = get_runtime(request)
    try:
        return await asyncio.to_thread(runtime.ledger.list_executions, plugin_id, user_id, limit)
    except PluginError as exc:
        raise to_http_error(exc)
