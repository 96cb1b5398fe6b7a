# cornerstone_core/services/execution_ledger.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import logging
import sqlite3
from datetime import datetime
from typing import List, Optional

from ..core.plugin_api import (
    EXECUTION_STATUS_RUNNING,
    TERMINAL_STATUSES,
    PluginNotFoundError,
    PluginPersistenceError,
)
from ..db import generate_id, get_connection, to_iso, utc_now
from ..models.plugin import Execution

logger = logging.getLogger("cornerstone_core.executions")

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200

_EXECUTION_COLUMNS = (
    'id, plugin_id, table_id, record_id, trigger_kind AS "trigger", status, output, error, '
    "duration_ms, started_at, finished_at, created_by"
)


def clamp_limit(limit: Optional[int]) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_LIST_LIMIT
    if value <= 0 or value > MAX_LIST_LIMIT:
        return DEFAULT_LIST_LIMIT
    return value


class ExecutionLedger:
    """Audit rows for plugin executions.

    Each row is written twice by the attempt that owns it: inserted as
    ``running`` right before the spawn, then moved once to a terminal status.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def start(
        self,
        plugin_id: str,
        table_id: str,
        record_id: Optional[str],
        trigger: str,
        actor_id: str,
        started_at: Optional[datetime] = None,
    ) -> Execution:
        execution = Execution(
            id=generate_id("pex"),
            plugin_id=plugin_id,
            table_id=table_id,
            record_id=record_id or None,
            trigger=trigger,
            status=EXECUTION_STATUS_RUNNING,
            started_at=started_at or utc_now(),
            created_by=actor_id,
        )
        try:
            with get_connection(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO plugin_executions
                        (id, plugin_id, table_id, record_id, trigger_kind, status, started_at, created_by)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        execution.id,
                        execution.plugin_id,
                        execution.table_id,
                        execution.record_id,
                        execution.trigger,
                        execution.status,
                        to_iso(execution.started_at),
                        execution.created_by,
                    ),
                )
        except (sqlite3.Error, OSError) as exc:
            raise PluginPersistenceError(f"Failed to create execution record: {exc}")
        return execution

    def finish(
        self,
        execution: Execution,
        status: str,
        output: str,
        error: str,
        duration_ms: int,
        finished_at: datetime,
    ) -> Execution:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal execution status: {status}")
        if execution.is_terminal:
            raise PluginPersistenceError(f"Execution {execution.id} is already finished")

        try:
            with get_connection(self.db_path) as conn:
                cursor = conn.execute(
                    """
                    UPDATE plugin_executions
                    SET status = ?, output = ?, error = ?, duration_ms = ?, finished_at = ?
                    WHERE id = ? AND status = ?
                    """,
                    (
                        status,
                        output,
                        error,
                        max(0, int(duration_ms)),
                        to_iso(finished_at),
                        execution.id,
                        EXECUTION_STATUS_RUNNING,
                    ),
                )
        except (sqlite3.Error, OSError) as exc:
            raise PluginPersistenceError(f"Failed to update execution record: {exc}")
        if cursor.rowcount == 0:
            raise PluginPersistenceError(f"Execution {execution.id} is missing or already finished")

        return execution.model_copy(
            update={
                "status": status,
                "output": output,
                "error": error,
                "duration_ms": max(0, int(duration_ms)),
                "finished_at": finished_at,
            }
        )

    def get(self, execution_id: str) -> Optional[Execution]:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_EXECUTION_COLUMNS} FROM plugin_executions WHERE id = ? LIMIT 1",
                (execution_id,),
            ).fetchone()
        return Execution(**dict(row)) if row else None

    def list_executions(self, plugin_id: str, caller_id: str, limit: Optional[int] = None) -> List[Execution]:
        safe_limit = clamp_limit(limit)
        with get_connection(self.db_path) as conn:
            owned = conn.execute(
                "SELECT 1 FROM plugins WHERE id = ? AND created_by = ? LIMIT 1",
                (plugin_id, caller_id),
            ).fetchone()
            if not owned:
                raise PluginNotFoundError("Plugin not found or not owned by caller")
            rows = conn.execute(
                f"""
                SELECT {_EXECUTION_COLUMNS} FROM plugin_executions
                WHERE plugin_id = ?
                ORDER BY started_at DESC, rowid DESC
                LIMIT ?
                """,
                (plugin_id, safe_limit),
            ).fetchall()
        return [Execution(**dict(r)) for r in rows]

    def count_for_plugin(self, plugin_id: str) -> int:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM plugin_executions WHERE plugin_id = ?",
                (plugin_id,),
            ).fetchone()
        return int(row["n"])
