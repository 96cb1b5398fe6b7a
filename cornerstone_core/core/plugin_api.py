# cornerstone_core/core/plugin_api.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

TRIGGER_CREATE = "create"
TRIGGER_UPDATE = "update"
TRIGGER_DELETE = "delete"
TRIGGER_MANUAL = "manual"

ALLOWED_TRIGGERS = (TRIGGER_CREATE, TRIGGER_UPDATE, TRIGGER_DELETE, TRIGGER_MANUAL)
LIFECYCLE_TRIGGERS = (TRIGGER_CREATE, TRIGGER_UPDATE, TRIGGER_DELETE)

EXECUTION_STATUS_RUNNING = "running"
EXECUTION_STATUS_SUCCESS = "success"
EXECUTION_STATUS_FAILED = "failed"
EXECUTION_STATUS_TIMEOUT = "timeout"

TERMINAL_STATUSES = (EXECUTION_STATUS_SUCCESS, EXECUTION_STATUS_FAILED, EXECUTION_STATUS_TIMEOUT)

MAX_CAPTURE_CHARS = 8192
TRUNCATION_MARKER = "...(truncated)"
TIMEOUT_MESSAGE = "plugin execution timed out"


class PluginError(RuntimeError):
    status_code = 400


class PluginValidationError(PluginError):
    pass


class PluginConfigError(PluginError):
    pass


class PluginNotFoundError(PluginError):
    status_code = 404


class TableNotFoundError(PluginError):
    status_code = 404


class RecordNotFoundError(PluginError):
    status_code = 404


class BindingNotFoundError(PluginError):
    status_code = 404


class BindingExistsError(PluginError):
    status_code = 409


class PluginExistsError(PluginError):
    status_code = 409


class PluginPersistenceError(PluginError):
    status_code = 500


def validate_trigger(trigger: str) -> str:
    clean = str(trigger or "").strip().lower()
    if clean not in ALLOWED_TRIGGERS:
        raise PluginValidationError(f"Unsupported trigger: {trigger!r}")
    return clean


@dataclass
class MutationEvent:
    """Fired post-commit by the record mutation path."""

    table_id: str
    record_id: Optional[str]
    trigger: str
    actor_id: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_name(self) -> str:
        return f"record.{self.trigger}"
