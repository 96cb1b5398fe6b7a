# cornerstone_core/services/plugin_service.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import logging
import sqlite3
from typing import List

from ..core.plugin_api import PluginExistsError, PluginNotFoundError
from ..db import generate_id, get_connection, to_iso, utc_now
from ..models.plugin import Plugin, PluginCreate, PluginUpdate

logger = logging.getLogger("cornerstone_core.plugins")

_PLUGIN_COLUMNS = (
    "id, name, description, language, entry_file, timeout, config, config_values, "
    "created_by, created_at, updated_at"
)


class PluginService:
    """Plugin definitions, owned exclusively by their creator."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def create_plugin(self, data: PluginCreate, owner_id: str) -> Plugin:
        now = to_iso(utc_now())
        plugin = Plugin(
            id=generate_id("plg"),
            name=data.name.strip(),
            description=data.description,
            language=data.language,
            entry_file=data.entry_file.strip(),
            timeout=data.timeout,
            config=data.config,
            config_values=data.config_values,
            created_by=owner_id,
            created_at=now,
            updated_at=now,
        )
        try:
            with get_connection(self.db_path) as conn:
                conn.execute(
                    f"INSERT INTO plugins ({_PLUGIN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        plugin.id,
                        plugin.name,
                        plugin.description,
                        plugin.language,
                        plugin.entry_file,
                        plugin.timeout,
                        plugin.config,
                        plugin.config_values,
                        owner_id,
                        now,
                        now,
                    ),
                )
        except sqlite3.IntegrityError:
            raise PluginExistsError(f"Plugin named '{plugin.name}' already exists")
        logger.info("Plugin created: %s (%s, %s) by %s", plugin.name, plugin.id, plugin.language, owner_id)
        return plugin

    def list_plugins(self, owner_id: str) -> List[Plugin]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT {_PLUGIN_COLUMNS} FROM plugins WHERE created_by = ? ORDER BY created_at DESC, rowid DESC",
                (owner_id,),
            ).fetchall()
        return [Plugin(**dict(r)) for r in rows]

    def get_plugin(self, plugin_id: str) -> Plugin:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_PLUGIN_COLUMNS} FROM plugins WHERE id = ? LIMIT 1",
                (plugin_id,),
            ).fetchone()
        if not row:
            raise PluginNotFoundError("Plugin not found")
        return Plugin(**dict(row))

    def get_owned_plugin(self, plugin_id: str, owner_id: str) -> Plugin:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_PLUGIN_COLUMNS} FROM plugins WHERE id = ? AND created_by = ? LIMIT 1",
                (plugin_id, owner_id),
            ).fetchone()
        if not row:
            raise PluginNotFoundError("Plugin not found or not owned by caller")
        return Plugin(**dict(row))

    def update_plugin(self, plugin_id: str, owner_id: str, data: PluginUpdate) -> Plugin:
        current = self.get_owned_plugin(plugin_id, owner_id)
        now = to_iso(utc_now())
        try:
            with get_connection(self.db_path) as conn:
                conn.execute(
                    """
                    UPDATE plugins
                    SET name = ?, description = ?, timeout = ?, config = ?, config_values = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (data.name.strip(), data.description, data.timeout, data.config, data.config_values, now, current.id),
                )
        except sqlite3.IntegrityError:
            raise PluginExistsError(f"Plugin named '{data.name.strip()}' already exists")
        logger.info("Plugin updated: %s by %s", plugin_id, owner_id)
        return self.get_plugin(plugin_id)

    def delete_plugin(self, plugin_id: str, owner_id: str):
        # bindings and executions go with it through ON DELETE CASCADE
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM plugins WHERE id = ? AND created_by = ?",
                (plugin_id, owner_id),
            )
        if cursor.rowcount == 0:
            raise PluginNotFoundError("Plugin not found or not owned by caller")
        logger.info("Plugin deleted: %s by %s", plugin_id, owner_id)
