"""
Connections used by the gatekeeper.

The Supabase client is the source of truth for identity and the
``profiles`` table.  It is optional: without credentials the app runs
offline and any attempt to reach Supabase raises ``RuntimeError``, which
the repositories report as a store failure.

The SQLite file only backs the advisory key/value cache, so losing it
costs a refetch and never loses data.  Queries live in the services;
this module just opens, hands out and closes connections.
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Optional, Union

from supabase import Client as SupabaseClient
from supabase import create_client

from vital.logger import StructuredLogger

MEMORY_DB = ":memory:"


def connect_supabase(url: str, key: str, logger: StructuredLogger) -> Optional[SupabaseClient]:
    """Build the Supabase client, or return ``None`` to run offline."""
    if not (url and key):
        logger.warning("No Supabase credentials; profile store is offline.")
        return None
    try:
        client = create_client(url, key)
    except (ValueError, TypeError) as exc:
        logger.warning("Rejected Supabase credentials (%s); profile store is offline.", exc)
        return None
    except Exception as exc:
        logger.error("Supabase client failed to start: %s", exc, exc_info=True)
        return None
    logger.info("Supabase client ready.")
    return client


def open_cache_db(path: Union[Path, str], logger: StructuredLogger) -> sqlite3.Connection:
    """Open the cache database, creating its directory when needed.

    The connection is shared across worker threads; writers must hold
    ``DatabaseManager.write_lock``.
    """
    target = str(path)
    try:
        if target != MEMORY_DB:
            Path(target).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(target, check_same_thread=False)
    except (PermissionError, sqlite3.OperationalError) as exc:
        logger.error("Local cache at %s is not writable: %s", target, exc)
        raise PermissionError(f"Cannot open the local cache at '{target}'.") from exc

    conn.row_factory = sqlite3.Row
    if target != MEMORY_DB:
        conn.execute("PRAGMA journal_mode=WAL;")
    logger.info("Local cache opened at %s", target)
    return conn


class DatabaseManager:
    """Holds the Supabase client (maybe absent) and the cache connection."""

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
    ) -> None:
        self._logger = logger
        self._write_lock = threading.RLock()
        self._closed = False
        self._supabase = connect_supabase(supabase_url, supabase_key, logger)
        self._sqlite = open_cache_db(sqlite_path, logger)

    @property
    def supabase(self) -> SupabaseClient:
        if self._supabase is None:
            raise RuntimeError("Supabase client is not initialised (offline mode).")
        return self._supabase

    @property
    def is_online(self) -> bool:
        return self._supabase is not None

    @property
    def sqlite(self) -> sqlite3.Connection:
        return self._sqlite

    @property
    def write_lock(self) -> threading.RLock:
        """Hold around every cache write and its commit."""
        return self._write_lock

    def close(self) -> None:
        """Close the cache connection.  Repeated calls do nothing."""
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
            self._sqlite.close()
        self._logger.info("Local cache closed.")
