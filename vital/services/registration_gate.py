"""
Registration Gate.

Renders its children only when the signed-in user's profile is complete.
Every other outcome (incomplete or missing row, store failure, malformed
row) persists the resumable identity under ``pendingRegistration`` and
sends the user to the completion page.  No error path grants access.
"""

from __future__ import annotations

import threading
from typing import Optional

from vital.auth import SessionManager
from vital.config import AppConfig
from vital.logger import StructuredLogger
from vital.models.cache_models import PendingRegistration
from vital.models.enums import RegistrationOutcome, RegistrationState
from vital.models.profile import Profile
from vital.models.session import Session
from vital.repositories.profile_repository import ProfileStore
from vital.services.base_service import BaseService
from vital.services.cache_service import PersistentCacheService
from vital.services.reconciler import ProfileReconciler
from vital.services.router import Router


class RegistrationGate(BaseService):
    """Completeness check for views that need a finished registration.

    Parameters
    ----------
    auth:
        The shared ``SessionManager``.
    store:
        Profile Store; read once per evaluation, bypassing the
        reconciler's snapshot.
    reconciler:
        Consulted only for a best-known phone number.
    cache:
        Persistent cache; the gate writes only the pending payload key.
    router:
        Navigation surface.
    config:
        Route paths and cache keys.
    logger:
        Structured logger.
    """

    # Store reads per evaluation while the session keeps changing.
    MAX_READS: int = 3

    def __init__(
        self,
        auth: SessionManager,
        store: ProfileStore,
        reconciler: ProfileReconciler,
        cache: PersistentCacheService,
        router: Router,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(config, logger)
        self._auth = auth
        self._store = store
        self._reconciler = reconciler
        self._cache = cache
        self._router = router
        self._lock: threading.Lock = threading.Lock()
        self._state: RegistrationState = RegistrationState.CHECKING

    @property
    def state(self) -> RegistrationState:
        with self._lock:
            return self._state

    @property
    def can_render(self) -> bool:
        with self._lock:
            return self._state == RegistrationState.COMPLETE

    def evaluate(self) -> RegistrationOutcome:
        """Decide whether the guarded view may render.

        Returns
        -------
        RegistrationOutcome
            ``RENDER`` only for a complete profile; otherwise the redirect
            that was issued.
        """
        self._set_state(RegistrationState.CHECKING)

        for _ in range(self.MAX_READS):
            session = self._auth.current_session
            if session is None:
                self._set_state(RegistrationState.SIGNED_OUT)
                self._logger.info("Registration check without a session; redirecting to sign-in.")
                self._router.redirect(
                    self._config.SIGN_IN_PATH,
                    {"from": self._router.current_path()},
                )
                return RegistrationOutcome.REDIRECT_SIGN_IN

            try:
                profile = self._store.get_by_id(session.user_id)
            except Exception as exc:
                # Fail safe: an unreadable profile is treated as incomplete.
                self._logger.error(
                    "Registration check failed for %s: %s", session.user_id, exc,
                    exc_info=True,
                )
                return self._send_to_completion(session, None)

            if session.same_user(self._auth.current_session):
                break
            self._logger.info("Session changed during registration check; reading again.")
        else:
            self._logger.warning(
                "Session kept changing across %d reads; not granting access.",
                self.MAX_READS,
            )
            return self._send_to_completion(session, None)

        if profile is None:
            self._logger.warning("No profile row for %s; registration incomplete.", session.user_id)
            return self._send_to_completion(session, None)

        if not profile.is_complete():
            self._logger.info(
                "Profile %s incomplete (missing: %s).",
                session.user_id,
                ", ".join(profile.missing_fields()),
            )
            return self._send_to_completion(session, profile)

        self._set_state(RegistrationState.COMPLETE)
        return RegistrationOutcome.RENDER

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _send_to_completion(
        self, session: Session, profile: Optional[Profile]
    ) -> RegistrationOutcome:
        pending = PendingRegistration(
            user_id=session.user_id,
            email=(profile.email if profile and profile.email else session.email) or "",
            phone=self._best_known_phone(session, profile),
        )
        if not self._cache.set(self._config.PENDING_REGISTRATION_KEY, pending.to_blob()):
            self._logger.warning(
                "Could not persist pending registration for %s; redirecting anyway.",
                session.user_id,
            )
        self._set_state(RegistrationState.INCOMPLETE)
        self._router.redirect(self._config.COMPLETION_PATH)
        return RegistrationOutcome.REDIRECT_COMPLETION

    def _best_known_phone(self, session: Session, profile: Optional[Profile]) -> str:
        if profile is not None and profile.phone:
            return profile.phone
        known = self._reconciler.current(session.user_id)
        if known is not None and known.phone:
            return known.phone
        phone = session.user_metadata.get("phone")
        return phone if isinstance(phone, str) else ""

    def _set_state(self, state: RegistrationState) -> None:
        with self._lock:
            self._state = state
