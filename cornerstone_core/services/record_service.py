# cornerstone_core/services/record_service.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from ..core.plugin_api import (
    TRIGGER_CREATE,
    TRIGGER_DELETE,
    TRIGGER_UPDATE,
    MutationEvent,
    RecordNotFoundError,
    TableNotFoundError,
)
from ..db import generate_id, get_connection, to_iso, utc_now
from ..models.catalog import Record

logger = logging.getLogger("cornerstone_core.records")

_RECORD_COLUMNS = "id, table_id, data, version, created_by, updated_by, created_at, updated_at"
_OWNED_RECORD_COLUMNS = "r.id, r.table_id, r.data, r.version, r.created_by, r.updated_by, r.created_at, r.updated_at"


def _row_to_record(row) -> Record:
    item = dict(row)
    try:
        item["data"] = json.loads(item.get("data") or "{}")
    except ValueError:
        item["data"] = {}
    return Record(**item)


class RecordService:
    """Record writes on owned tables.

    Every committed write publishes a ``record.<trigger>`` event; listeners
    (the plugin dispatcher) cannot fail the write.
    """

    def __init__(self, db_path: str, event_bus=None):
        self.db_path = db_path
        self.event_bus = event_bus

    def _check_table(self, conn, table_id: str, actor_id: str):
        row = conn.execute(
            """
            SELECT 1 FROM tables t
            JOIN databases d ON d.id = t.database_id
            WHERE t.id = ? AND d.owner_id = ?
            LIMIT 1
            """,
            (table_id, actor_id),
        ).fetchone()
        if not row:
            raise TableNotFoundError("Table not found")

    def _load_record(self, conn, record_id: str, actor_id: str):
        row = conn.execute(
            f"""
            SELECT {_OWNED_RECORD_COLUMNS}
            FROM records r
            JOIN tables t ON t.id = r.table_id
            JOIN databases d ON d.id = t.database_id
            WHERE r.id = ? AND d.owner_id = ?
            LIMIT 1
            """,
            (record_id, actor_id),
        ).fetchone()
        if not row:
            raise RecordNotFoundError("Record not found")
        return row

    def _insert(self, table_id: str, data: Dict[str, Any], actor_id: str) -> Record:
        now = to_iso(utc_now())
        record_id = generate_id("rec")
        with get_connection(self.db_path) as conn:
            self._check_table(conn, table_id, actor_id)
            conn.execute(
                f"INSERT INTO records ({_RECORD_COLUMNS}) VALUES (?, ?, ?, 1, ?, ?, ?, ?)",
                (record_id, table_id, json.dumps(data, default=str), actor_id, actor_id, now, now),
            )
            row = conn.execute(f"SELECT {_RECORD_COLUMNS} FROM records WHERE id = ?", (record_id,)).fetchone()
        return _row_to_record(row)

    def _update(self, record_id: str, data: Dict[str, Any], actor_id: str) -> Record:
        with get_connection(self.db_path) as conn:
            self._load_record(conn, record_id, actor_id)
            conn.execute(
                "UPDATE records SET data = ?, version = version + 1, updated_by = ?, updated_at = ? WHERE id = ?",
                (json.dumps(data, default=str), actor_id, to_iso(utc_now()), record_id),
            )
            row = conn.execute(f"SELECT {_RECORD_COLUMNS} FROM records WHERE id = ?", (record_id,)).fetchone()
        return _row_to_record(row)

    def _delete(self, record_id: str, actor_id: str) -> Record:
        with get_connection(self.db_path) as conn:
            row = self._load_record(conn, record_id, actor_id)
            conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
        return _row_to_record(row)

    async def create_record(self, table_id: str, data: Dict[str, Any], actor_id: str) -> Record:
        record = await asyncio.to_thread(self._insert, table_id, data or {}, actor_id)
        await self._publish(record.table_id, record.id, TRIGGER_CREATE, actor_id, {"record_id": record.id, "data": record.data, "user_id": actor_id})
        return record

    async def update_record(self, record_id: str, data: Dict[str, Any], actor_id: str) -> Record:
        record = await asyncio.to_thread(self._update, record_id, data or {}, actor_id)
        await self._publish(record.table_id, record.id, TRIGGER_UPDATE, actor_id, {"record_id": record.id, "data": record.data, "user_id": actor_id})
        return record

    async def delete_record(self, record_id: str, actor_id: str) -> Record:
        record = await asyncio.to_thread(self._delete, record_id, actor_id)
        payload: Dict[str, Any] = {"record_id": record.id, "user_id": actor_id}
        if record.data:
            payload["data"] = record.data
        await self._publish(record.table_id, record.id, TRIGGER_DELETE, actor_id, payload)
        return record

    async def _publish(self, table_id: str, record_id: Optional[str], trigger: str, actor_id: str, payload: Dict[str, Any]):
        logger.info("Record %s in table %s: %s by %s", record_id, table_id, trigger, actor_id)
        if self.event_bus is None:
            return
        event = MutationEvent(table_id=table_id, record_id=record_id, trigger=trigger, actor_id=actor_id, payload=payload)
        await self.event_bus.emit(event.event_name, event)
