# cornerstone_core/db.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
"""SQLite helpers for Cornerstone Core."""

from __future__ import annotations

import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

SCHEMA = """
CREATE TABLE IF NOT EXISTS databases (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    owner_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS tables (
    id TEXT PRIMARY KEY,
    database_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    created_at TEXT NOT NULL,
    FOREIGN KEY(database_id) REFERENCES databases(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    table_id TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    version INTEGER NOT NULL DEFAULT 1,
    created_by TEXT NOT NULL,
    updated_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(table_id) REFERENCES tables(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS plugins (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    language TEXT NOT NULL,
    entry_file TEXT NOT NULL,
    timeout INTEGER NOT NULL DEFAULT 0,
    config TEXT DEFAULT '',
    config_values TEXT DEFAULT '',
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(name, created_by)
);
CREATE TABLE IF NOT EXISTS plugin_bindings (
    id TEXT PRIMARY KEY,
    plugin_id TEXT NOT NULL,
    table_id TEXT NOT NULL,
    trigger_kind TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE(plugin_id, table_id, trigger_kind),
    FOREIGN KEY(plugin_id) REFERENCES plugins(id) ON DELETE CASCADE,
    FOREIGN KEY(table_id) REFERENCES tables(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS plugin_executions (
    id TEXT PRIMARY KEY,
    plugin_id TEXT NOT NULL,
    table_id TEXT NOT NULL,
    record_id TEXT,
    trigger_kind TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('running', 'success', 'failed', 'timeout')),
    output TEXT NOT NULL DEFAULT '',
    error TEXT NOT NULL DEFAULT '',
    duration_ms INTEGER NOT NULL DEFAULT 0,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    created_by TEXT NOT NULL,
    FOREIGN KEY(plugin_id) REFERENCES plugins(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS app_settings (
    id INTEGER PRIMARY KEY CHECK(id = 1),
    plugin_timeout INTEGER NOT NULL,
    plugin_work_dir TEXT NOT NULL,
    updated_by TEXT,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_plugin_bindings_plugin_table ON plugin_bindings(plugin_id, table_id);
CREATE INDEX IF NOT EXISTS idx_plugin_bindings_table_trigger ON plugin_bindings(table_id, trigger_kind);
CREATE INDEX IF NOT EXISTS idx_plugin_executions_plugin_started ON plugin_executions(plugin_id, started_at DESC);
CREATE INDEX IF NOT EXISTS idx_plugin_executions_table_trigger ON plugin_executions(table_id, trigger_kind);
"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def generate_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(8)}"


@contextmanager
def get_connection(db_path: str) -> Iterator[sqlite3.Connection]:
    target = Path(str(db_path)).resolve()
    target.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(target), timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_schema(db_path: str):
    with get_connection(db_path) as conn:
        conn.executescript(SCHEMA)


__all__ = [
    "SCHEMA",
    "generate_id",
    "get_connection",
    "init_schema",
    "to_iso",
    "utc_now",
]
