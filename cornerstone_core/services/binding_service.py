# cornerstone_core/services/binding_service.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import logging
from typing import List

from ..core.plugin_api import (
    BindingExistsError,
    BindingNotFoundError,
    PluginNotFoundError,
    TableNotFoundError,
    validate_trigger,
)
from ..db import generate_id, get_connection, to_iso, utc_now
from ..models.plugin import BindingDetail

logger = logging.getLogger("cornerstone_core.bindings")


class BindingRegistry:
    """(plugin, table, trigger) triples.

    The triple is unique at the storage level; concurrent binds of the same
    triple rely on ``INSERT OR IGNORE`` rather than an application lock.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def bind(self, plugin_id: str, table_id: str, trigger: str) -> str:
        clean_trigger = validate_trigger(trigger)
        binding_id = generate_id("pbd")
        with get_connection(self.db_path) as conn:
            if not conn.execute("SELECT 1 FROM plugins WHERE id = ? LIMIT 1", (plugin_id,)).fetchone():
                raise PluginNotFoundError("Plugin not found")
            if not conn.execute("SELECT 1 FROM tables WHERE id = ? LIMIT 1", (table_id,)).fetchone():
                raise TableNotFoundError("Table not found")

            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO plugin_bindings (id, plugin_id, table_id, trigger_kind, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (binding_id, plugin_id, table_id, clean_trigger, to_iso(utc_now())),
            )
        if cursor.rowcount == 0:
            raise BindingExistsError("Plugin is already bound to this table and trigger")
        logger.info("Plugin %s bound to table %s on %s", plugin_id, table_id, clean_trigger)
        return binding_id

    def unbind(self, plugin_id: str, table_id: str) -> int:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM plugin_bindings WHERE plugin_id = ? AND table_id = ?",
                (plugin_id, table_id),
            )
        if cursor.rowcount == 0:
            raise BindingNotFoundError("Binding not found")
        logger.info("Plugin %s unbound from table %s (%d rows)", plugin_id, table_id, cursor.rowcount)
        return cursor.rowcount

    def list_bindings(self, plugin_id: str) -> List[BindingDetail]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT
                    pb.id,
                    pb.table_id,
                    t.name AS table_name,
                    t.database_id,
                    d.name AS database_name,
                    pb.trigger_kind AS "trigger",
                    pb.created_at
                FROM plugin_bindings pb
                JOIN tables t ON t.id = pb.table_id
                JOIN databases d ON d.id = t.database_id
                WHERE pb.plugin_id = ?
                ORDER BY pb.created_at DESC, pb.rowid DESC
                """,
                (plugin_id,),
            ).fetchall()
        return [BindingDetail(**dict(r)) for r in rows]

    def lookup(self, table_id: str, trigger: str) -> List[str]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT plugin_id FROM plugin_bindings WHERE table_id = ? AND trigger_kind = ? ORDER BY rowid ASC",
                (table_id, trigger),
            ).fetchall()
        return [r["plugin_id"] for r in rows]

    def exists(self, plugin_id: str, table_id: str, trigger: str) -> bool:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT 1 FROM plugin_bindings WHERE plugin_id = ? AND table_id = ? AND trigger_kind = ? LIMIT 1",
                (plugin_id, table_id, trigger),
            ).fetchone()
        return row is not None

    def count(self, plugin_id: str) -> int:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM plugin_bindings WHERE plugin_id = ?",
                (plugin_id,),
            ).fetchone()
        return int(row["n"])
