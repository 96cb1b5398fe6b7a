# cornerstone_core/api/records.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import asyncio

from fastapi import APIRouter, Depends, Request

from ..core.plugin_api import PluginError
from ..models.catalog import DatabaseCreate, Record, RecordWrite, TableCreate
from .deps import get_runtime, to_http_error
from .security import require_session

router = APIRouter(tags=["Records"])


@router.post("/databases", status_code=201)
async def create_database(payload: DatabaseCreate, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    return await asyncio.to_thread(runtime.catalog.create_database, payload.name, user_id, payload.description)


@router.post("/databases/{database_id}/tables", status_code=201)
async def create_table(database_id: str, payload: TableCreate, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        return await asyncio.to_thread(
            runtime.catalog.create_table, database_id, payload.name, user_id, payload.description
        )
    except PluginError as exc:
        raise to_http_error(exc)


@router.post("/tables/{table_id}/records", response_model=Record, status_code=201)
async def create_record(table_id: str, payload: RecordWrite, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        return await runtime.records.create_record(table_id, payload.data, user_id)
    except PluginError as exc:
        raise to_http_error(exc)


@router.put("/records/{record_id}", response_model=Record)
async def update_record(record_id: str, payload: RecordWrite, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        return await runtime.records.update_record(record_id, payload.data, user_id)
    except PluginError as exc:
        raise to_http_error(exc)


@router.delete("/records/{record_id}")
async def delete_record(record_id: str, request: Request, user_id: str = Depends(require_session)):
    runtime = get_runtime(request)
    try:
        await runtime.records.delete_record(record_id, user_id)
    except PluginError as exc:
        raise to_http_error(exc)
    return {"status": "deleted", "record_id": record_id}
