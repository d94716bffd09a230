"""SQLite database schema and initialization."""

from __future__ import annotations

import aiosqlite

SCHEMA = """
CREATE TABLE IF NOT EXISTS batches (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_mode TEXT NOT NULL,
    country_code TEXT NOT NULL,
    network_code TEXT NOT NULL,
    base_identifier TEXT NOT NULL,
    session_count INTEGER NOT NULL,
    ues_per_session INTEGER DEFAULT 1,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    status TEXT DEFAULT 'running',
    sessions_run INTEGER DEFAULT 0,
    sessions_failed INTEGER DEFAULT 0,
    identifiers_consumed INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_id INTEGER NOT NULL REFERENCES batches(id),
    session_index INTEGER NOT NULL,
    identifier TEXT NOT NULL,
    ue_count INTEGER DEFAULT 1,
    success INTEGER DEFAULT 0,
    exit_code INTEGER,
    timed_out INTEGER DEFAULT 0,
    failure TEXT,
    error TEXT DEFAULT '',
    duration REAL DEFAULT 0,
    started_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_batches_started ON batches(started_at);
CREATE INDEX IF NOT EXISTS idx_sessions_batch ON sessions(batch_id);
"""


async def initialize_db(db: aiosqlite.Connection):
    """Create tables and indexes if they don't exist."""
    await db.executescript(SCHEMA)
    await db.commit()
