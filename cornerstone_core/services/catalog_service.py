# cornerstone_core/services/catalog_service.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import logging

from ..core.plugin_api import PluginError, TableNotFoundError
from ..db import generate_id, get_connection, to_iso, utc_now

logger = logging.getLogger("cornerstone_core.catalog")


class DatabaseNotFoundError(PluginError):
    status_code = 404


class CatalogService:
    """Databases and tables owned by users; only what plugin bindings need."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def create_database(self, name: str, owner_id: str, description: str = "") -> dict:
        item = {
            "id": generate_id("db"),
            "name": str(name).strip(),
            "description": description or "",
            "owner_id": owner_id,
            "created_at": to_iso(utc_now()),
        }
        with get_connection(self.db_path) as conn:
            conn.execute(
                "INSERT INTO databases (id, name, description, owner_id, created_at) VALUES (?, ?, ?, ?, ?)",
                (item["id"], item["name"], item["description"], item["owner_id"], item["created_at"]),
            )
        logger.info("Database created: %s (%s) by %s", item["name"], item["id"], owner_id)
        return item

    def create_table(self, database_id: str, name: str, owner_id: str, description: str = "") -> dict:
        item = {
            "id": generate_id("tbl"),
            "database_id": database_id,
            "name": str(name).strip(),
            "description": description or "",
            "created_at": to_iso(utc_now()),
        }
        with get_connection(self.db_path) as conn:
            owner = conn.execute(
                "SELECT 1 FROM databases WHERE id = ? AND owner_id = ? LIMIT 1",
                (database_id, owner_id),
            ).fetchone()
            if not owner:
                raise DatabaseNotFoundError("Database not found")
            conn.execute(
                "INSERT INTO tables (id, database_id, name, description, created_at) VALUES (?, ?, ?, ?, ?)",
                (item["id"], database_id, item["name"], item["description"], item["created_at"]),
            )
        logger.info("Table created: %s (%s) in %s", item["name"], item["id"], database_id)
        return item

    def delete_table(self, table_id: str):
        with get_connection(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM tables WHERE id = ?", (table_id,))
        if cursor.rowcount == 0:
            raise TableNotFoundError("Table not found")
