# cornerstone_core/models/plugin.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

Language = Literal["go", "python", "bash"]
Trigger = Literal["create", "update", "delete", "manual"]
ExecutionStatus = Literal["running", "success", "failed", "timeout"]


class PluginCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    description: str = Field(default="", max_length=500)
    language: Language
    entry_file: str = Field(min_length=1, max_length=255)
    # 0 means "use the runtime default"
    timeout: int = Field(default=0, ge=0, le=300)
    config: str = ""
    config_values: str = ""


class PluginUpdate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    description: str = Field(default="", max_length=500)
    timeout: int = Field(default=0, ge=0, le=300)
    config: str = ""
    config_values: str = ""


class Plugin(BaseModel):
    id: str
    name: str
    description: str = ""
    language: str
    entry_file: str
    timeout: int = 0
    config: str = ""
    config_values: str = ""
    created_by: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BindRequest(BaseModel):
    table_id: str = Field(min_length=1)
    trigger: Trigger


class UnbindRequest(BaseModel):
    table_id: str = Field(min_length=1)


class BindingDetail(BaseModel):
    id: str
    table_id: str
    table_name: str
    database_id: str
    database_name: str
    trigger: str
    created_at: datetime


class ExecutePluginRequest(BaseModel):
    table_id: str = Field(min_length=1)
    record_id: str = ""
    trigger: Trigger
    payload: Dict[str, Any] = Field(default_factory=dict)


class Execution(BaseModel):
    id: str
    plugin_id: str
    table_id: str
    record_id: Optional[str] = None
    trigger: str
    status: ExecutionStatus
    output: str = ""
    error: str = ""
    duration_ms: int = 0
    started_at: datetime
    finished_at: Optional[datetime] = None
    created_by: str

    @property
    def is_terminal(self) -> bool:
        return self.status != "running"


class PluginRuntimeDefaults(BaseModel):
    timeout: int = Field(ge=1, le=600)
    work_dir: str = Field(min_length=1, max_length=1000)
