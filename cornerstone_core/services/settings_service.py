# cornerstone_core/services/settings_service.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import logging
import sqlite3
from typing import Optional, Tuple

from ..db import get_connection, to_iso, utc_now
from ..utils.config import DEFAULT_PLUGIN_TIMEOUT, DEFAULT_PLUGIN_WORK_DIR

logger = logging.getLogger("cornerstone_core.settings")


class SettingsService:
    """Plugin runtime defaults backed by the singleton ``app_settings`` row.

    Reads never fail: when the store is unavailable the hard-coded defaults
    are returned so execution can still proceed.
    """

    def __init__(self, db_path: str, default_timeout: int = DEFAULT_PLUGIN_TIMEOUT, default_work_dir: str = DEFAULT_PLUGIN_WORK_DIR):
        self.db_path = db_path
        self.default_timeout = default_timeout if int(default_timeout or 0) > 0 else DEFAULT_PLUGIN_TIMEOUT
        self.default_work_dir = str(default_work_dir or "").strip() or DEFAULT_PLUGIN_WORK_DIR

    def _ensure_row(self, conn):
        row = conn.execute(
            "SELECT plugin_timeout, plugin_work_dir, updated_by, updated_at FROM app_settings WHERE id = 1"
        ).fetchone()
        if row:
            return row
        conn.execute(
            "INSERT OR IGNORE INTO app_settings (id, plugin_timeout, plugin_work_dir, updated_by, updated_at) VALUES (1, ?, ?, ?, ?)",
            (self.default_timeout, self.default_work_dir, "system", to_iso(utc_now())),
        )
        return conn.execute(
            "SELECT plugin_timeout, plugin_work_dir, updated_by, updated_at FROM app_settings WHERE id = 1"
        ).fetchone()

    def get_plugin_runtime_defaults(self) -> Tuple[int, str]:
        try:
            with get_connection(self.db_path) as conn:
                row = self._ensure_row(conn)
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Plugin runtime settings unavailable, using built-in defaults: %s", exc)
            return DEFAULT_PLUGIN_TIMEOUT, DEFAULT_PLUGIN_WORK_DIR

        timeout = int(row["plugin_timeout"] or 0)
        if timeout <= 0:
            timeout = DEFAULT_PLUGIN_TIMEOUT
        work_dir = str(row["plugin_work_dir"] or "").strip() or DEFAULT_PLUGIN_WORK_DIR
        return timeout, work_dir

    def update_plugin_runtime_defaults(self, timeout: int, work_dir: str, actor_id: Optional[str] = None) -> Tuple[int, str]:
        clean_timeout = int(timeout)
        if clean_timeout < 1 or clean_timeout > 600:
            raise ValueError("plugin timeout must be between 1 and 600 seconds")
        clean_dir = str(work_dir or "").strip()
        if not clean_dir:
            raise ValueError("plugin work directory is required")

        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO app_settings (id, plugin_timeout, plugin_work_dir, updated_by, updated_at)
                VALUES (1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    plugin_timeout=excluded.plugin_timeout,
                    plugin_work_dir=excluded.plugin_work_dir,
                    updated_by=excluded.updated_by,
                    updated_at=excluded.updated_at
                """,
                (clean_timeout, clean_dir, actor_id or "system", to_iso(utc_now())),
            )
        logger.info("Plugin runtime defaults updated by %s: timeout=%ss work_dir=%s", actor_id or "system", clean_timeout, clean_dir)
        return clean_timeout, clean_dir
