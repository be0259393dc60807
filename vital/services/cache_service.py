"""
Persistent Cache Service.

String-keyed JSON blob storage backed by the local ``cache_entries``
table.  The cache is advisory: every failure to read a value (missing
row, SQLite error, undecryptable or unparseable payload) is logged and
reported as a miss, never raised.

The cache has no knowledge of profiles.  Consumers tag what they store
with the owning user id and validate it on read.

This is a documented exception to the Repository pattern because cache
entries are infrastructure state, not domain data.
"""

from __future__ import annotations

import json
from typing import Optional, Union

from vital.database import DatabaseManager
from vital.logger import StructuredLogger
from vital.services.cache_cipher import CacheCipher

JsonValue = Union[str, int, float, bool, None, list["JsonValue"], dict[str, "JsonValue"]]


class PersistentCacheService:
    """Corruption-tolerant key/value cache.

    Parameters
    ----------
    db:
        ``DatabaseManager`` with an initialised SQLite schema.
    logger:
        Structured logger instance.
    cipher:
        Optional ``CacheCipher``.  When given, new values are sealed;
        plain values written before encryption was enabled still read.
    """

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        cipher: Optional[CacheCipher] = None,
    ) -> None:
        self._db = db
        self._logger = logger
        self._cipher = cipher

    def get(self, key: str) -> Optional[JsonValue]:
        """Return the decoded blob stored under *key*, or ``None`` on a miss."""
        try:
            row = self._db.sqlite.execute(
                "SELECT value, sealed FROM cache_entries WHERE key = ?",
                (key,),
            ).fetchone()
        except Exception as exc:
            self._logger.warning("Failed to read cache[%s]: %s", key, exc)
            return None

        if row is None:
            return None

        raw: str = row["value"]
        if row["sealed"]:
            if self._cipher is None:
                self._logger.warning(
                    "cache[%s] is sealed but no cipher is configured; treating as miss.",
                    key,
                )
                return None
            try:
                raw = self._cipher.open(raw, key.encode("utf-8")).decode("utf-8")
            except (ValueError, KeyError, UnicodeDecodeError) as exc:
                self._logger.warning(
                    "cache[%s] could not be decrypted (corrupted data or "
                    "machine identity changed): %s",
                    key,
                    exc,
                )
                return None
            except OSError as exc:
                self._logger.warning("Cache cipher unavailable for cache[%s]: %s", key, exc)
                return None

        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            self._logger.warning("cache[%s] holds malformed JSON: %s", key, exc)
            return None

    def set(self, key: str, value: JsonValue) -> bool:
        """Upsert *value* under *key*.  Returns ``True`` on success."""
        try:
            payload: str = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            self._logger.error("cache[%s] value is not JSON-serialisable: %s", key, exc)
            return False

        sealed: int = 0
        if self._cipher is not None:
            try:
                payload = self._cipher.seal(payload.encode("utf-8"), key.encode("utf-8"))
                sealed = 1
            except Exception as exc:
                self._logger.warning("Failed to seal cache[%s]; not cached: %s", key, exc)
                return False

        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO cache_entries (key, value, sealed)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value      = excluded.value,
                        sealed     = excluded.sealed,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, payload, sealed),
                )
                self._db.sqlite.commit()
            self._logger.debug("cache[%s] updated.", key)
            return True
        except Exception as exc:
            self._logger.error("Failed to write cache[%s]: %s", key, exc)
            return False

    def remove(self, key: str) -> None:
        """Delete *key*.  Safe to call when the key is absent."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                self._db.sqlite.commit()
            self._logger.debug("cache[%s] removed.", key)
        except Exception as exc:
            self._logger.error("Failed to remove cache[%s]: %s", key, exc)
