"""
Authentication & Session State.

Provides the injectable ``SessionManager``: the single owner of the
current ``Session`` for this process.  It relays Identity Session Source
events to the ``ProfileReconciler`` (activate / reconcile / reset) and to
any registered listeners, typically the access gate.

Usage::

    from vital.auth import SessionManager

    manager = SessionManager(source, reconciler, store, cache, config, logger)
    manager.start()
    session = manager.current_session
    profile = manager.current_profile
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Optional

from pydantic import ValidationError

from vital.config import AppConfig
from vital.logger import StructuredLogger
from vital.models.auth_models import AuthErrorCode, AuthResult, Credentials, SignUpRequest
from vital.models.enums import SessionEventType
from vital.models.errors import ReconcileError, SessionAbsentError, StoreError, StoreUnavailableError
from vital.models.profile import Profile
from vital.models.session import Session, SessionEvent
from vital.utils.audit import ActivityAction, EntityType, log_audit_event

if TYPE_CHECKING:
    from vital.repositories.profile_repository import ProfileStore
    from vital.services.cache_service import PersistentCacheService
    from vital.services.identity_source import IdentitySource, SessionListener, Unsubscribe
    from vital.services.reconciler import ProfileReconciler


class SessionManager:
    """Injectable holder for the current session and its event fan-out.

    Each instance maintains its own session state, eliminating the
    need for module-level globals.  Pass a single ``SessionManager``
    through the service container so every gate shares the same session.

    Parameters
    ----------
    source:
        Identity Session Source (Supabase Auth in production).
    reconciler:
        The process-wide ``ProfileReconciler``.
    store:
        Profile Store, used directly only for profile edits.
    cache:
        Persistent cache, used directly only by :meth:`force_reset`.
    config:
        Application configuration (settle delay, cache keys).
    logger:
        Structured logger.
    """

    def __init__(
        self,
        source: IdentitySource,
        reconciler: ProfileReconciler,
        store: ProfileStore,
        cache: PersistentCacheService,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        self._source = source
        self._reconciler = reconciler
        self._store = store
        self._cache = cache
        self._config = config
        self._logger = logger

        self._lock: threading.RLock = threading.RLock()
        self._session: Optional[Session] = None
        self._listeners: list[SessionListener] = []
        self._unsubscribe: Optional[Unsubscribe] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def current_session(self) -> Optional[Session]:
        with self._lock:
            return self._session

    @property
    def is_authenticated(self) -> bool:
        with self._lock:
            return self._session is not None

    @property
    def current_profile(self) -> Optional[Profile]:
        """Best known profile for the current session, or ``None``."""
        session = self.current_session
        if session is None:
            return None
        return self._reconciler.current(session.user_id)

    @property
    def is_loading(self) -> bool:
        return self._reconciler.is_loading

    @property
    def last_error(self) -> Optional[ReconcileError]:
        return self._reconciler.last_error

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> Optional[Profile]:
        """Subscribe to session changes and resolve the startup session.

        Returns the reconciled profile, or ``None`` when signed out or the
        startup reconciliation failed (the access gate recovers from that).
        """
        with self._lock:
            if self._unsubscribe is None:
                self._unsubscribe = self._source.on_change(self._handle_event)

        session = self._source.get_current_session()
        self.set_session(session)
        if session is None:
            self._logger.info("No session at startup.")
            return None

        cached = self._reconciler.current(session.user_id)
        if cached is not None:
            self._logger.info("Cached profile available for %s.", session.user_id)
        return self._reconcile_quietly(session)

    def stop(self) -> None:
        """Unsubscribe from the Identity Session Source."""
        with self._lock:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def add_listener(self, callback: SessionListener) -> Unsubscribe:
        """Register *callback* for session events; returns a remover."""
        with self._lock:
            self._listeners.append(callback)

        def _remove() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return _remove

    def set_session(self, session: Optional[Session]) -> None:
        """Record *session* and make its user the reconciler's active user.

        Does not reconcile and does not notify listeners.
        """
        with self._lock:
            self._session = session
            self._reconciler.activate(session.user_id if session else None)

    # ------------------------------------------------------------------
    # Profile operations
    # ------------------------------------------------------------------

    def refresh_profile(self) -> Profile:
        """Reconcile the current session now (manual trigger).

        Raises:
            SessionAbsentError: If no session is present.
            ReconcileError: Whatever the reconciliation raised.
        """
        session = self._require_session()
        return self._reconciler.reconcile(session)

    def update_profile(self, fields: dict[str, object]) -> Profile:
        """Write *fields* to the current user's row and refresh the profile.

        Raises:
            SessionAbsentError: If no session is present.
            StoreUnavailableError: If the update failed.
        """
        session = self._require_session()
        try:
            self._store.update(session.user_id, fields)
        except StoreError as exc:
            self._logger.error("Profile update failed for %s: %s", session.user_id, exc)
            raise StoreUnavailableError(
                f"Could not update profile for {session.user_id}",
                user_id=session.user_id,
                original_error=exc,
            ) from exc

        log_audit_event(
            logger=self._logger,
            action=ActivityAction.UPDATE_PROFILE,
            entity_type=EntityType.PROFILES,
            entity_id=session.user_id,
            user_id=session.user_id,
            details={"fields": ",".join(sorted(fields))},
        )
        return self._reconciler.reconcile(session, force=True)

    # ------------------------------------------------------------------
    # Sign-in / sign-up
    # ------------------------------------------------------------------

    def sign_in(self, email: str, password: str) -> AuthResult:
        """Sign in with email and password.

        Bad input and provider failures come back as a failed
        ``AuthResult``; on success the session is applied like a
        ``SIGNED_IN`` event.
        """
        try:
            credentials = Credentials(email=email, password=password)
        except ValidationError as exc:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, _first_message(exc))

        result = self._source.sign_in_with_password(credentials.email, credentials.password)
        if result.success and result.session is not None:
            self._adopt(result.session)
        return result

    def sign_up(self, email: str, password: str, full_name: Optional[str] = None) -> AuthResult:
        """Create an account; signs in at once unless email confirmation is on."""
        try:
            request = SignUpRequest(email=email, password=password, full_name=full_name)
        except ValidationError as exc:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, _first_message(exc))

        result = self._source.sign_up(request.email, request.password, request.metadata())
        if result.success and result.session is not None:
            self._adopt(result.session)
        return result

    def _adopt(self, session: Session) -> None:
        # Supabase usually emits SIGNED_IN itself; apply it only if not yet seen.
        if not session.same_user(self.current_session):
            self._handle_event(SessionEvent(event=SessionEventType.SIGNED_IN, session=session))

    # ------------------------------------------------------------------
    # Sign-out
    # ------------------------------------------------------------------

    def sign_out(self) -> None:
        """Sign out with the identity source, then clear local state.

        Raises whatever the identity source raises; local state is left
        untouched in that case.
        """
        session = self.current_session
        self._source.sign_out()
        if session is not None:
            log_audit_event(
                logger=self._logger,
                action=ActivityAction.SIGN_OUT,
                entity_type=EntityType.AUTH,
                entity_id=session.user_id,
                user_id=session.user_id,
            )
        self._handle_event(SessionEvent(event=SessionEventType.SIGNED_OUT))

    def force_reset(self) -> None:
        """Drop every cached payload and end the session everywhere.

        Used to escape a wedged state.  Failures are logged; local state
        is cleared regardless.
        """
        self._logger.warning("Force-resetting session state.")
        self._cache.remove(self._config.PENDING_REGISTRATION_KEY)
        self._reconciler.reset()
        try:
            self._source.sign_out("global")
        except Exception as exc:
            self._logger.error("Global sign-out failed during reset: %s", exc)
        self._handle_event(SessionEvent(event=SessionEventType.SIGNED_OUT))

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _handle_event(self, event: SessionEvent) -> None:
        """Apply one Identity Session Source event, then notify listeners."""
        session = event.session
        if event.event == SessionEventType.SIGNED_OUT or session is None:
            with self._lock:
                if self._session is None and self._reconciler.active_user_id is None:
                    # Echo of a sign-out already applied locally.
                    return
                self.set_session(None)
                self._reconciler.reset()
            self._logger.info("Session ended (%s).", event.event)
            self._notify(SessionEvent(event=SessionEventType.SIGNED_OUT))
            return

        previous = self.current_session
        self.set_session(session)
        self._logger.info("Session event %s for %s.", event.event, session.user_id)

        if event.event == SessionEventType.SIGNED_IN:
            self._schedule_reconcile(session)
        elif event.event == SessionEventType.TOKEN_REFRESHED:
            if (
                self._reconciler.current(session.user_id) is None
                and not self._reconciler.is_loading
            ):
                self._reconcile_quietly(session)
        elif not session.same_user(previous):
            self._reconcile_quietly(session)

        self._notify(event)

    def _schedule_reconcile(self, session: Session) -> None:
        delay = self._config.SIGN_IN_SETTLE_S
        if delay <= 0:
            self._reconcile_if_current(session)
            return
        timer = threading.Timer(delay, self._reconcile_if_current, args=(session,))
        timer.daemon = True
        timer.start()

    def _reconcile_if_current(self, session: Session) -> None:
        if not session.same_user(self.current_session):
            self._logger.debug("Skipping delayed reconcile for replaced session %s.", session.user_id)
            return
        self._reconcile_quietly(session)

    def _reconcile_quietly(self, session: Session) -> Optional[Profile]:
        """Reconcile from an event thread; failures are left to the gate."""
        try:
            return self._reconciler.reconcile(session)
        except ReconcileError as exc:
            self._logger.warning(
                "Background reconcile for %s failed (%s): %s",
                session.user_id,
                exc.code,
                exc,
            )
            return None

    def _notify(self, event: SessionEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as exc:
                self._logger.error("Session listener failed on %s: %s", event.event, exc, exc_info=True)

    def _require_session(self) -> Session:
        session = self.current_session
        if session is None:
            raise SessionAbsentError("No session is present. Sign-in required.")
        return session


def _first_message(exc: ValidationError) -> str:
    message = str(exc.errors()[0].get("msg", "Invalid input"))
    # pydantic prefixes ValueError messages.
    return message.removeprefix("Value error, ")
