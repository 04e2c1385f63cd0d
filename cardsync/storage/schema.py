"""Database schema for the cardsync SQLite record store.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Database initialization (init_db)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2  # v2: updated_at and dirty columns on records

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    primary_text TEXT NOT NULL DEFAULT '',
    secondary_text TEXT,
    generated_text TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER,
    mastery_level INTEGER NOT NULL DEFAULT -1,
    deleted INTEGER NOT NULL DEFAULT 0,
    deleted_at INTEGER,
    purge_after INTEGER,
    sync_version INTEGER NOT NULL DEFAULT 1,
    dirty INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_records_category ON records(category);
CREATE INDEX IF NOT EXISTS idx_records_dirty ON records(dirty);

-- Durable key-value entries (tombstone ledger, sync cursor)
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);
"""

RECORD_COLUMNS = (
    "id",
    "category",
    "primary_text",
    "secondary_text",
    "generated_text",
    "created_at",
    "updated_at",
    "mastery_level",
    "deleted",
    "deleted_at",
    "purge_after",
    "sync_version",
    "dirty",
)


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Add columns introduced after v1 to an existing records table."""
    table = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='records'"
    ).fetchone()
    if table is None:
        return
    columns = {row[1] for row in conn.execute("PRAGMA table_info(records)").fetchall()}
    if "updated_at" not in columns:
        logger.info("Migrating records table: adding updated_at")
        conn.execute("ALTER TABLE records ADD COLUMN updated_at INTEGER")
        conn.execute("UPDATE records SET updated_at = created_at")
    if "dirty" not in columns:
        logger.info("Migrating records table: adding dirty")
        conn.execute("ALTER TABLE records ADD COLUMN dirty INTEGER NOT NULL DEFAULT 0")


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize the database schema. Safe to call on every start."""
    migrate_schema(conn)
    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] < SCHEMA_VERSION:
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
    conn.commit()
