"""
Base Repository.

Shared infrastructure for repositories:
- DatabaseManager reference (Supabase client)
- Logger reference
- Translation of PostgREST / network exceptions into the typed
  ``StoreError`` family so services never inspect raw client errors.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from supabase import Client as SupabaseClient

from vital.database import DatabaseManager
from vital.logger import StructuredLogger
from vital.models.errors import StoreConflictError, StoreError

T = TypeVar("T")

# PostgreSQL SQLSTATE for unique_violation.
UNIQUE_VIOLATION: str = "23505"


class BaseRepository:
    """Supabase-backed table access with store-error translation."""

    TABLE: str = ""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def supabase(self) -> SupabaseClient:
        return self._db.supabase

    def _run(self, op: Callable[[], T], *, operation_name: str) -> T:
        """Execute a Supabase call, converting failures into ``StoreError``.

        ``StoreError`` raised inside *op* passes through unchanged.  A
        unique-violation response becomes ``StoreConflictError``; every
        other exception (offline client, network, PostgREST) becomes
        ``StoreError``.

        Parameters
        ----------
        op:
            Zero-argument callable performing the query.
        operation_name:
            Label for log messages, e.g. ``"get_by_id (profiles)"``.
        """
        try:
            return op()
        except StoreError:
            raise
        except Exception as exc:
            if self._is_unique_violation(exc):
                self._logger.info(
                    "Uniqueness conflict during %s: %s", operation_name, exc,
                )
                raise StoreConflictError(
                    f"{operation_name} conflicted with an existing row",
                    original_error=exc,
                ) from exc
            self._logger.warning(
                "Store unavailable for %s: %s", operation_name, exc,
            )
            raise StoreError(
                f"{operation_name} failed: {exc}",
                original_error=exc,
            ) from exc

    @staticmethod
    def _is_unique_violation(exc: Exception) -> bool:
        code = getattr(exc, "code", None)
        if code is None and isinstance(getattr(exc, "args", None), tuple) and exc.args:
            first = exc.args[0]
            if isinstance(first, dict):
                code = first.get("code")
        return str(code) == UNIQUE_VIOLATION
