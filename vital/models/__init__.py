"""
Data Models Package.

Re-exports the models for short imports:
    from vital.models import Profile, Session, SessionEvent
    from vital.models import AccessState, SessionEventType, UserRole
"""

from __future__ import annotations

from vital.models.enums import (
    AccessState,
    BloodGroup,
    RegistrationOutcome,
    RegistrationState,
    SessionEventType,
    UserRole,
)
from vital.models.session import Session, SessionEvent
from vital.models.profile import Profile
from vital.models.cache_models import CachedProfile, PendingRegistration
from vital.models.registration import RegistrationForm
from vital.models.auth_models import AuthErrorCode, AuthResult, Credentials, SignUpRequest

__all__ = [
    "AccessState",
    "AuthErrorCode",
    "AuthResult",
    "BloodGroup",
    "CachedProfile",
    "Credentials",
    "PendingRegistration",
    "Profile",
    "RegistrationForm",
    "RegistrationOutcome",
    "RegistrationState",
    "Session",
    "SessionEvent",
    "SessionEventType",
    "SignUpRequest",
    "UserRole",
]
