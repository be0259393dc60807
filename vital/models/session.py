"""
Session Models.

Pydantic views of the Supabase Auth session and its change events.
The core only reads these; the Identity Session Source owns them.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field

from vital.models.enums import SessionEventType

# Matches the refresh skew used by the Supabase client.
_EXPIRY_SKEW = timedelta(seconds=30)


class Session(BaseModel):
    """An authenticated session for one user.

    Attributes
    ----------
    user_id:
        Supabase UUID (JWT ``sub``).  Equal to ``profiles.id``.
    email:
        The auth user's email, if the provider supplied one.
    expires_at:
        Unix timestamp (seconds) when the access token expires.
        ``None`` means the source did not report an expiry.
    user_metadata:
        Free-form metadata from sign-up / OAuth; ``full_name`` is used
        to seed the display name of an auto-provisioned profile.
    """

    user_id: str
    email: Optional[str] = None
    access_token: str = ""
    refresh_token: str = ""
    expires_at: Optional[int] = None
    user_metadata: dict[str, object] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def is_expired(self) -> bool:
        """``True`` once the access token is within the refresh skew of expiry."""
        if self.expires_at is None:
            return False
        expiry = datetime.fromtimestamp(self.expires_at, tz=timezone.utc)
        return datetime.now(timezone.utc) >= (expiry - _EXPIRY_SKEW)

    @property
    def display_name(self) -> str:
        """Best display name: metadata ``full_name``, else the email local-part."""
        full_name = self.user_metadata.get("full_name")
        if isinstance(full_name, str) and full_name.strip():
            return full_name.strip()
        if self.email:
            return self.email.split("@", 1)[0]
        return ""

    def same_user(self, other: Optional["Session"]) -> bool:
        return other is not None and other.user_id == self.user_id


class SessionEvent(BaseModel):
    """One notification from the Identity Session Source."""

    event: SessionEventType
    session: Optional[Session] = None

    model_config = {"frozen": True}
