"""
Identity Session Source.

Adapter over Supabase Auth that exposes what the gatekeeping core and
the sign-in view need: the current session, a change subscription,
password sign-in and sign-up, and sign-out.  The ``IdentitySource``
protocol lets the session manager be exercised without a live Supabase
project.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol, runtime_checkable

from vital.database import DatabaseManager
from vital.logger import StructuredLogger
from vital.models.auth_models import AuthErrorCode, AuthResult
from vital.models.enums import SessionEventType
from vital.models.session import Session, SessionEvent

SessionListener = Callable[[SessionEvent], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class IdentitySource(Protocol):
    """Boundary to the authentication provider."""

    def get_current_session(self) -> Optional[Session]:
        ...

    def on_change(self, callback: SessionListener) -> Unsubscribe:
        ...

    def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        ...

    def sign_up(
        self, email: str, password: str, metadata: Optional[dict[str, object]] = None
    ) -> AuthResult:
        ...

    def sign_out(self, scope: str = "local") -> None:
        ...


def session_from_supabase(raw: object) -> Optional[Session]:
    """Convert a ``gotrue`` session object into a :class:`Session`.

    Returns ``None`` for a missing session or one without a user id.
    """
    if raw is None:
        return None
    user = getattr(raw, "user", None)
    user_id = getattr(user, "id", None)
    if not user_id:
        return None
    metadata = getattr(user, "user_metadata", None) or {}
    return Session(
        user_id=str(user_id),
        email=getattr(user, "email", None),
        access_token=getattr(raw, "access_token", "") or "",
        refresh_token=getattr(raw, "refresh_token", "") or "",
        expires_at=getattr(raw, "expires_at", None),
        user_metadata=dict(metadata),
    )


# Substrings of Supabase Auth error messages, checked in order.
_AUTH_ERROR_MAP: tuple[tuple[str, AuthErrorCode, str], ...] = (
    ("invalid login credentials", AuthErrorCode.INVALID_CREDENTIALS, "Incorrect email or password."),
    ("email not confirmed", AuthErrorCode.EMAIL_NOT_CONFIRMED, "Confirm your email address, then sign in."),
    ("already registered", AuthErrorCode.EMAIL_ALREADY_EXISTS, "An account with this email already exists."),
    ("password should be", AuthErrorCode.VALIDATION_ERROR, "Choose a longer password."),
    ("rate limit", AuthErrorCode.RATE_LIMITED, "Too many attempts. Please wait and try again."),
)

_OFFLINE_MESSAGE = "Cannot reach the server. Check your internet connection."


def classify_auth_error(exc: Exception) -> AuthResult:
    """Map a Supabase Auth or network failure to a failed ``AuthResult``."""
    # RuntimeError: DatabaseManager has no client (offline mode).
    if isinstance(exc, (ConnectionError, TimeoutError, RuntimeError)):
        return AuthResult.failure(AuthErrorCode.NETWORK_ERROR, _OFFLINE_MESSAGE)
    text = str(exc).lower()
    for needle, code, message in _AUTH_ERROR_MAP:
        if needle in text:
            return AuthResult.failure(code, message)
    return AuthResult.failure(
        AuthErrorCode.UNKNOWN_ERROR, "Something went wrong. Please try again later."
    )

class SupabaseIdentitySource:
    """``IdentitySource`` backed by ``supabase.auth``.

    Parameters
    ----------
    db:
        ``DatabaseManager`` holding the Supabase client.
    logger:
        Structured logger.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    def get_current_session(self) -> Optional[Session]:
        """Return the persisted session, or ``None`` when signed out or offline."""
        try:
            raw = self._db.supabase.auth.get_session()
        except Exception as exc:
            self._logger.warning("Could not read the current auth session: %s", exc)
            return None
        return session_from_supabase(raw)

    def on_change(self, callback: SessionListener) -> Unsubscribe:
        """Subscribe *callback* to auth state changes.

        Events the core does not model (``PASSWORD_RECOVERY``,
        ``MFA_CHALLENGE_VERIFIED``) are dropped here.
        """

        def _relay(event: object, raw_session: object) -> None:
            try:
                event_type = SessionEventType(str(getattr(event, "value", event)))
            except ValueError:
                self._logger.debug("Ignoring auth event %s.", event)
                return
            callback(SessionEvent(event=event_type, session=session_from_supabase(raw_session)))

        try:
            subscription = self._db.supabase.auth.on_auth_state_change(_relay)
        except RuntimeError as exc:
            self._logger.warning("Auth change subscription unavailable: %s", exc)
            return lambda: None

        def _unsubscribe() -> None:
            try:
                subscription.unsubscribe()
            except Exception as exc:
                self._logger.warning("Failed to unsubscribe from auth changes: %s", exc)

        return _unsubscribe

    def sign_out(self, scope: str = "local") -> None:
        """Revoke the session.  Raises whatever the client raises."""
        self._db.supabase.auth.sign_out({"scope": scope})
        self._logger.info("Signed out of Supabase (scope=%s).", scope)

    def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        try:
            response = self._db.supabase.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as exc:
            result = classify_auth_error(exc)
            self._logger.warning("Sign-in failed for %s (%s): %s", email, result.error_code, exc)
            return result

        session = session_from_supabase(getattr(response, "session", None))
        if session is None:
            return AuthResult.failure(
                AuthErrorCode.UNKNOWN_ERROR, "Sign-in did not return a session."
            )
        self._logger.info("Signed in %s.", session.user_id)
        return AuthResult(success=True, session=session)

    def sign_up(
        self, email: str, password: str, metadata: Optional[dict[str, object]] = None
    ) -> AuthResult:
        """Create the account.

        With email confirmation enabled Supabase returns no session; the
        result then carries ``needs_confirmation``.
        """
        try:
            response = self._db.supabase.auth.sign_up(
                {"email": email, "password": password, "options": {"data": metadata or {}}}
            )
        except Exception as exc:
            result = classify_auth_error(exc)
            self._logger.warning("Sign-up failed for %s (%s): %s", email, result.error_code, exc)
            return result

        session = session_from_supabase(getattr(response, "session", None))
        self._logger.info("Account created for %s (confirmed: %s).", email, session is not None)
        return AuthResult(success=True, session=session, needs_confirmation=session is None)
