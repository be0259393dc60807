"""
Registration Completion Form.

Validated input for the completion page.  Field names match the
``profiles`` columns so the form dumps straight into an update.
"""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, field_validator

from vital.models.enums import BloodGroup

_PHONE_CHARS = re.compile(r"^\+?[0-9\s\-()]+$")
_MIN_PHONE_DIGITS: int = 7


class RegistrationForm(BaseModel):
    """Fields the user supplies to finish registration."""

    full_name: str
    phone: str
    city: str
    district: str
    blood_group: Optional[BloodGroup] = None
    permanent_zip: Optional[str] = None
    present_zip: Optional[str] = None
    is_donor: bool = True

    model_config = {"str_strip_whitespace": True}

    @field_validator("full_name", "city", "district")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("phone")
    @classmethod
    def _valid_phone(cls, value: str) -> str:
        if not value:
            raise ValueError("Phone number is required")
        if not _PHONE_CHARS.match(value):
            raise ValueError("Phone number may only contain digits, spaces, '+', '-' and parentheses")
        if sum(ch.isdigit() for ch in value) < _MIN_PHONE_DIGITS:
            raise ValueError(f"Phone number must have at least {_MIN_PHONE_DIGITS} digits")
        return value

    @field_validator("blood_group", "permanent_zip", "present_zip", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        return None if value == "" else value

    def to_update(self) -> dict[str, object]:
        """Columns to write; unset optional fields are left untouched."""
        return self.model_dump(mode="json", exclude_none=True)
