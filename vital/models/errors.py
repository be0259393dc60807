"""
Error Taxonomy.

A closed set of error categories shared by the reconciler and both gates,
so callers branch on ``code`` instead of matching message text.

Repository-level errors (``StoreError`` / ``StoreConflictError``) describe
what the Profile Store did; reconciliation errors describe what that means
for the session being resolved.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional


class GateErrorCode(StrEnum):
    """Exhaustive enumeration of gatekeeping error categories."""

    SESSION_ABSENT = "session_absent"
    STORE_UNAVAILABLE = "store_unavailable"
    STORE_CONFLICT = "store_conflict"
    PROFILE_INCONSISTENT = "profile_inconsistent"
    VALIDATION_INCOMPLETE = "validation_incomplete"


# ---------------------------------------------------------------------------
# Profile Store boundary
# ---------------------------------------------------------------------------

class StoreError(Exception):
    """Transient read/write failure reported by the Profile Store."""

    code: GateErrorCode = GateErrorCode.STORE_UNAVAILABLE

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.message: str = message
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


class StoreConflictError(StoreError):
    """Insert rejected by the uniqueness constraint on ``profiles.id``."""

    code = GateErrorCode.STORE_CONFLICT


# ---------------------------------------------------------------------------
# Reconciliation outcomes
# ---------------------------------------------------------------------------

class ReconcileError(Exception):
    """Base class for failures surfaced by ``ProfileReconciler.reconcile``."""

    code: GateErrorCode = GateErrorCode.STORE_UNAVAILABLE

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        self.message: str = message
        self.user_id: Optional[str] = user_id
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


class StoreUnavailableError(ReconcileError):
    """The Profile Store could not be read or written."""

    code = GateErrorCode.STORE_UNAVAILABLE


class ProfileInconsistentError(ReconcileError):
    """Insert hit a conflict but the re-read still found no row."""

    code = GateErrorCode.PROFILE_INCONSISTENT


class SessionAbsentError(ReconcileError):
    """No valid session exists; never retried."""

    code = GateErrorCode.SESSION_ABSENT


class InvalidTransitionError(RuntimeError):
    """A gate attempted a transition outside its transition table."""
