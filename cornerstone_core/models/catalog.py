# cornerstone_core/models/catalog.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
from datetime import datetime
from typing import Any, Dict

from pydantic import BaseModel, Field


class DatabaseCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""


class TableCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""


class RecordWrite(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class Record(BaseModel):
    id: str
    table_id: str
    data: Dict[str, Any]
    version: int
    created_by: str
    updated_by: str
    created_at: datetime
    updated_at: datetime
