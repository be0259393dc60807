"""
Local cache schema.

Each entry in ``_MIGRATIONS`` moves the cache database up one version and
runs in its own transaction, so an interrupted upgrade resumes from the
last version that committed.
"""

from __future__ import annotations

import sqlite3

from vital.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema", "schema_version"]

_MIGRATIONS: dict[int, tuple[str, ...]] = {
    # 1: string-keyed JSON blobs (profile snapshot, pending registration).
    1: (
        """
        CREATE TABLE IF NOT EXISTS cache_entries (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            sealed INTEGER NOT NULL DEFAULT 0 CHECK (sealed IN (0, 1)),
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """,
    ),
}

CURRENT_SCHEMA_VERSION: int = max(_MIGRATIONS)


def schema_version(conn: sqlite3.Connection) -> int:
    """Version recorded in the cache database; ``0`` when never initialised."""
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_version ("
        " id INTEGER PRIMARY KEY CHECK (id = 1),"
        " version INTEGER NOT NULL,"
        " applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
    )
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return int(row[0]) if row else 0


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> int:
    """Bring the cache database up to :data:`CURRENT_SCHEMA_VERSION`.

    Idempotent; called on every startup.  Returns the resulting version.
    """
    version = schema_version(conn)
    conn.commit()

    for target in sorted(v for v in _MIGRATIONS if v > version):
        try:
            for statement in _MIGRATIONS[target]:
                conn.execute(statement)
            conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?) "
                "ON CONFLICT(id) DO UPDATE SET version = excluded.version, "
                "applied_at = CURRENT_TIMESTAMP",
                (target,),
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            logger.error("Cache migration to v%d failed; staying at v%d.", target, version)
            raise
        logger.info("Cache schema migrated to v%d.", target)
        version = target

    return version
