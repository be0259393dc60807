"""
Shared Enumerations for Vital Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so rows coming back from PostgREST compare directly.
"""

from __future__ import annotations
from enum import StrEnum


class UserRole(StrEnum):
    """Roles stored on the ``profiles`` row."""

    USER = "user"
    ADMIN = "admin"


class SessionEventType(StrEnum):
    """Supabase auth state-change events the core reacts to."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class AccessState(StrEnum):
    """States of the access gate.

    ``UNAUTHENTICATED`` is terminal: reaching it performs the single
    sign-in redirect.
    """

    INITIALIZING = "INITIALIZING"
    AUTHENTICATED = "AUTHENTICATED"
    RECOVERING = "RECOVERING"
    READY = "READY"
    UNAUTHENTICATED = "UNAUTHENTICATED"


class RegistrationState(StrEnum):
    """States of the registration gate."""

    CHECKING = "CHECKING"
    COMPLETE = "COMPLETE"
    INCOMPLETE = "INCOMPLETE"
    SIGNED_OUT = "SIGNED_OUT"


class RegistrationOutcome(StrEnum):
    """What the registration gate decided to do with its children."""

    RENDER = "RENDER"
    REDIRECT_COMPLETION = "REDIRECT_COMPLETION"
    REDIRECT_SIGN_IN = "REDIRECT_SIGN_IN"


class BloodGroup(StrEnum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    AB_POS = "AB+"
    AB_NEG = "AB-"
    O_POS = "O+"
    O_NEG = "O-"
