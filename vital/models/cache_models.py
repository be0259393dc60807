"""
Persistent Cache Payload Models.

Validated shapes for the two blobs the core keeps in the persistent
cache: the profile snapshot written by the reconciler and the resumable
identity written by the registration gate.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from vital.models.profile import Profile


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class CachedProfile(BaseModel):
    """A profile snapshot tagged with the user id that owns it.

    Only valid for a session whose user id equals ``user_id``; any other
    reader must treat it as a miss.
    """

    user_id: str
    profile: Profile
    cached_at: datetime = Field(default_factory=_utcnow)

    def belongs_to(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.user_id == user_id and self.profile.id == user_id


class PendingRegistration(BaseModel):
    """Minimal identity needed to resume the registration-completion flow.

    Serialised with the camelCase names the completion page reads
    (``userId``, ``email``, ``phone``).
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    email: str = ""
    phone: str = ""
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")

    def to_blob(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)
