"""Forward-only migration runner for the docembed database schema."""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id              TEXT PRIMARY KEY,
    project_id      TEXT NOT NULL,
    type            TEXT NOT NULL DEFAULT 'files',
    data            TEXT NOT NULL DEFAULT '{}',
    inserted_at     DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS files (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id           TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    project_id          TEXT NOT NULL,
    path                TEXT NOT NULL,
    checksum            TEXT NOT NULL,
    meta                TEXT NOT NULL DEFAULT '{}',
    raw_content         TEXT NOT NULL DEFAULT '',
    token_count         INTEGER NOT NULL DEFAULT 0,
    internal_metadata   TEXT NOT NULL DEFAULT '{}',
    updated_at          DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (source_id, path)
);

CREATE INDEX IF NOT EXISTS idx_files_project ON files(project_id);

CREATE TABLE IF NOT EXISTS file_sections (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id         INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
    content         TEXT NOT NULL,
    meta            TEXT,
    embedding       BLOB NOT NULL,
    token_count     INTEGER NOT NULL DEFAULT 0,
    cf_project_id   TEXT NOT NULL,
    cf_file_meta    TEXT NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_file_sections_file ON file_sections(file_id);
CREATE INDEX IF NOT EXISTS idx_file_sections_project ON file_sections(cf_project_id);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
