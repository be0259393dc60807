"""
Sign-in and Sign-up Models.

``AuthResult`` is what the identity source hands back for credential
operations: the UI branches on ``success`` and ``error_code`` and shows
``error_message`` as-is.  Expected failures (wrong password, duplicate
account, offline) are results, not exceptions.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, field_validator

from vital.models.session import Session

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Supabase Auth's default minimum.
MIN_PASSWORD_LENGTH = 6


class AuthErrorCode(StrEnum):
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    RATE_LIMITED = "rate_limited"
    NETWORK_ERROR = "network_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_ERROR = "unknown_error"


class AuthResult(BaseModel):
    """Outcome of a sign-in or sign-up.

    Attributes
    ----------
    session:
        Set when the provider signed the user in.  A successful sign-up
        without a session means the email must be confirmed first
        (``needs_confirmation``).
    """

    success: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    session: Optional[Session] = None
    needs_confirmation: bool = False

    @classmethod
    def failure(cls, code: AuthErrorCode, message: str) -> "AuthResult":
        return cls(success=False, error_code=code, error_message=message)


class Credentials(BaseModel):
    """Email and password as typed into the sign-in form."""

    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not _EMAIL_RE.match(value):
            raise ValueError("Enter a valid email address")
        return value

    @field_validator("password")
    @classmethod
    def _password_present(cls, value: str) -> str:
        if not value:
            raise ValueError("Enter your password")
        return value


class SignUpRequest(Credentials):
    full_name: Optional[str] = None

    @field_validator("password")
    @classmethod
    def _password_length(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return value

    @field_validator("full_name")
    @classmethod
    def _blank_name_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    def metadata(self) -> dict[str, object]:
        return {"full_name": self.full_name} if self.full_name else {}
