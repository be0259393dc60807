"""
Profile Model.

Pydantic model for a row of the ``profiles`` table.  Unknown columns
(location, proofs, donor pin, ...) are ignored so that schema additions
on the backend never break reconciliation.
"""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar, Optional

from pydantic import BaseModel, field_validator

from vital.models.enums import BloodGroup, UserRole
from vital.models.session import Session


class Profile(BaseModel):
    """The domain record for a user beyond authentication.

    ``full_name``, ``phone``, ``city`` and ``district`` are required for
    the registration to count as complete.  A freshly provisioned row has
    them blank.
    """

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("full_name", "phone", "city", "district")

    id: str
    email: str = ""
    full_name: Optional[str] = None
    phone: Optional[str] = None
    blood_group: Optional[BloodGroup] = None
    city: Optional[str] = None
    district: Optional[str] = None
    permanent_zip: Optional[str] = None
    present_zip: Optional[str] = None
    is_donor: bool = False
    is_available: bool = False
    role: UserRole = UserRole.USER
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True, "extra": "ignore"}

    @field_validator("blood_group", mode="before")
    @classmethod
    def _blank_blood_group(cls, value: object) -> object:
        # The web client stores an empty string until a group is chosen.
        return None if value == "" else value

    @field_validator("email", mode="before")
    @classmethod
    def _null_email(cls, value: object) -> object:
        return "" if value is None else value

    def missing_fields(self) -> list[str]:
        """Return the required fields that are null or blank."""
        missing: list[str] = []
        for name in self.REQUIRED_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                missing.append(name)
        return missing

    def is_complete(self) -> bool:
        """``True`` when every required field holds a non-blank value."""
        return not self.missing_fields()

    @classmethod
    def default_for(cls, session: Session) -> "Profile":
        """Build the row auto-provisioned on first sight of *session*."""
        return cls(
            id=session.user_id,
            email=session.email or "",
            full_name=session.display_name or None,
            is_donor=False,
            is_available=False,
        )

    def insert_payload(self) -> dict[str, object]:
        """Columns sent on insert; server-managed timestamps are omitted."""
        return self.model_dump(
            mode="json",
            exclude={"created_at", "updated_at"},
            exclude_none=True,
        )
