"""
Profile Repository.

Data access for the Supabase ``profiles`` table.  Unlike an offline-first
repository there is deliberately no local fallback here: a failed read
must surface as ``StoreError`` so the reconciler never fabricates a
profile from stale local data.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from vital.database import DatabaseManager
from vital.logger import StructuredLogger
from vital.models.errors import StoreError
from vital.models.profile import Profile
from vital.repositories.base_repository import BaseRepository


@runtime_checkable
class ProfileStore(Protocol):
    """Boundary the reconciler and the registration gate depend on.

    ``get_by_id`` returns ``None`` when no row exists and raises
    ``StoreError`` on failure.  ``insert`` raises ``StoreConflictError``
    when the id already exists.
    """

    def get_by_id(self, user_id: str) -> Optional[Profile]:
        ...

    def insert(self, profile: Profile) -> Profile:
        ...

    def update(self, user_id: str, fields: dict[str, object]) -> Profile:
        ...


class ProfileRepository(BaseRepository):
    """Supabase-backed ``ProfileStore``."""

    TABLE = "profiles"

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        table: str = "profiles",
    ) -> None:
        super().__init__(db, logger)
        self.TABLE = table

    def get_by_id(self, user_id: str) -> Optional[Profile]:
        """Fetch a profile by primary key; ``None`` when no row exists."""
        def _query() -> Optional[dict[str, object]]:
            response = (
                self.supabase.table(self.TABLE)
                .select("*")
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )
            # Newer postgrest clients return None instead of an empty response.
            if response is None or not response.data:
                return None
            return response.data

        row = self._run(_query, operation_name=f"get_by_id ({self.TABLE})")
        if row is None:
            return None
        return self._to_profile(row, user_id)

    def insert(self, profile: Profile) -> Profile:
        """Insert a new row.  Raises ``StoreConflictError`` if the id exists."""
        def _query() -> list[dict[str, object]]:
            response = (
                self.supabase.table(self.TABLE)
                .insert(profile.insert_payload())
                .execute()
            )
            return response.data or []

        rows = self._run(_query, operation_name=f"insert ({self.TABLE})")
        if not rows:
            # Insert accepted but no representation returned (RLS select policy).
            self._logger.info("Profile inserted without representation: %s", profile.id)
            return profile
        created = self._to_profile(rows[0], profile.id)
        self._logger.info("Profile inserted: %s", created.id)
        return created

    def update(self, user_id: str, fields: dict[str, object]) -> Profile:
        """Apply a partial update and return the stored row.

        Raises
        ------
        StoreError
            If the update fails or matched no row.
        """
        def _query() -> list[dict[str, object]]:
            response = (
                self.supabase.table(self.TABLE)
                .update(fields)
                .eq("id", user_id)
                .execute()
            )
            return response.data or []

        rows = self._run(_query, operation_name=f"update ({self.TABLE})")
        if not rows:
            raise StoreError(f"update ({self.TABLE}) matched no row for {user_id}")
        updated = self._to_profile(rows[0], user_id)
        self._logger.info("Profile updated: %s (%s)", user_id, ", ".join(sorted(fields)))
        return updated

    def _to_profile(self, row: dict[str, object], user_id: str) -> Profile:
        try:
            return Profile.model_validate(row)
        except ValidationError as exc:
            self._logger.error("Malformed %s row for %s: %s", self.TABLE, user_id, exc)
            raise StoreError(
                f"Malformed {self.TABLE} row for {user_id}",
                original_error=exc,
            ) from exc
