"""
Access Gate.

Guards protected views.  The gate is an explicit state machine:

    INITIALIZING    -> AUTHENTICATED | UNAUTHENTICATED
    AUTHENTICATED   -> READY | RECOVERING | UNAUTHENTICATED
    RECOVERING      -> READY | UNAUTHENTICATED | AUTHENTICATED
    READY           -> AUTHENTICATED | UNAUTHENTICATED
    UNAUTHENTICATED -> (terminal)

Children render only in ``READY``.  ``tick()`` is called once per render
cycle by the host shell; recovery makes at most one reconciliation
attempt per tick, bounded by ``RECOVERY_MAX_ATTEMPTS``.  A superseded
session ends recovery at once instead of spending the budget.  Session
events arrive on the identity client's thread and are serialised with
ticks by the gate lock.  Reaching ``UNAUTHENTICATED`` issues exactly one
redirect to the sign-in path.
"""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Mapping, Optional

from vital.auth import SessionManager
from vital.config import AppConfig
from vital.logger import StructuredLogger
from vital.models.enums import AccessState, SessionEventType
from vital.models.errors import InvalidTransitionError, ReconcileError, SessionAbsentError
from vital.models.session import Session, SessionEvent
from vital.services.base_service import BaseService
from vital.services.identity_source import Unsubscribe
from vital.services.reconciler import ProfileReconciler
from vital.services.router import Router
from vital.utils.retry import BoundedRetry

TRANSITIONS: Mapping[AccessState, frozenset[AccessState]] = MappingProxyType({
    AccessState.INITIALIZING: frozenset({AccessState.AUTHENTICATED, AccessState.UNAUTHENTICATED}),
    AccessState.AUTHENTICATED: frozenset(
        {AccessState.READY, AccessState.RECOVERING, AccessState.UNAUTHENTICATED}
    ),
    AccessState.RECOVERING: frozenset(
        {AccessState.READY, AccessState.UNAUTHENTICATED, AccessState.AUTHENTICATED}
    ),
    AccessState.READY: frozenset({AccessState.AUTHENTICATED, AccessState.UNAUTHENTICATED}),
    AccessState.UNAUTHENTICATED: frozenset(),
})


class AccessGate(BaseService):
    """Per-view access guard driven by the host shell's render cycle.

    Parameters
    ----------
    auth:
        The shared ``SessionManager``.
    reconciler:
        The process-wide ``ProfileReconciler``.
    router:
        Navigation surface used for the single sign-in redirect.
    config:
        Supplies ``RECOVERY_MAX_ATTEMPTS`` and ``SIGN_IN_PATH``.
    logger:
        Structured logger.
    """

    def __init__(
        self,
        auth: SessionManager,
        reconciler: ProfileReconciler,
        router: Router,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(config, logger)
        self._auth = auth
        self._reconciler = reconciler
        self._router = router

        self._lock: threading.RLock = threading.RLock()
        self._state: AccessState = AccessState.INITIALIZING
        self._user_id: Optional[str] = None
        self._retry: BoundedRetry = self._new_budget()
        # Bumped on every session change; an attempt started under an
        # older generation does not apply its result.
        self._generation: int = 0
        self._attempting: bool = False
        self._redirected: bool = False
        self._remove_listener: Optional[Unsubscribe] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> AccessState:
        with self._lock:
            return self._state

    @property
    def can_render(self) -> bool:
        with self._lock:
            return self._state == AccessState.READY

    @property
    def attempts(self) -> int:
        """Recovery attempts spent for the current session."""
        with self._lock:
            return self._retry.attempts

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> AccessState:
        """Read the session once and leave ``INITIALIZING``."""
        with self._lock:
            if self._state != AccessState.INITIALIZING:
                return self._state
            if self._remove_listener is None:
                self._remove_listener = self._auth.add_listener(self.on_session_event)

            session = self._auth.current_session
            if session is None or session.is_expired:
                self._deny("no session at mount")
                return self._state

            self._user_id = session.user_id
            self._transition(AccessState.AUTHENTICATED)
            self._resolve_cached()
            return self._state

    def close(self) -> None:
        """Detach from the session manager (view unmounted)."""
        with self._lock:
            remove, self._remove_listener = self._remove_listener, None
        if remove is not None:
            remove()

    # ------------------------------------------------------------------
    # Render cycle
    # ------------------------------------------------------------------

    def tick(self) -> AccessState:
        """Advance the gate by one render cycle.

        Returns the state after the cycle.
        """
        with self._lock:
            if self._state in (
                AccessState.INITIALIZING,
                AccessState.READY,
                AccessState.UNAUTHENTICATED,
            ) or self._attempting:
                return self._state

            session = self._auth.current_session
            if session is None:
                self._deny("session disappeared")
                return self._state
            if session.user_id != self._user_id:
                self._switch_user(session)

            if self._resolve_cached():
                return self._state
            if self._reconciler.is_loading:
                return self._state

            if self._state == AccessState.AUTHENTICATED:
                self._logger.warning(
                    "Session for %s has no profile; recovering.", session.user_id,
                )
                self._transition(AccessState.RECOVERING)

            generation = self._generation
            retry = self._retry
            self._attempting = True

        # Network I/O happens outside the gate lock so session events are
        # never blocked behind a slow store.
        error: Optional[ReconcileError] = None
        try:
            retry.attempt(lambda: self._reconciler.reconcile(session))
        except ReconcileError as exc:
            error = exc
        finally:
            with self._lock:
                self._attempting = False

        with self._lock:
            if generation != self._generation or self._state != AccessState.RECOVERING:
                self._logger.debug("Discarding recovery attempt from a previous session.")
                return self._state
            if error is None:
                self._logger.info("Recovery succeeded for %s.", session.user_id)
                self._transition(AccessState.READY)
                return self._state

            if isinstance(error, SessionAbsentError):
                # Never retried: the session this attempt used is gone.
                self._deny("session superseded")
                return self._state

            self._logger.warning(
                "Recovery attempt %d/%d for %s failed (%s): %s",
                self._retry.attempts,
                self._config.RECOVERY_MAX_ATTEMPTS,
                session.user_id,
                error.code,
                error,
            )
            if self._retry.exhausted:
                self._logger.error(
                    "Recovery exhausted for %s; signing in again.", session.user_id,
                )
                self._deny("recovery exhausted")
            return self._state

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------

    def on_session_event(self, event: SessionEvent) -> None:
        """Listener registered with the ``SessionManager``."""
        with self._lock:
            if self._state in (AccessState.UNAUTHENTICATED, AccessState.INITIALIZING):
                return

            session = event.session
            if event.event == SessionEventType.SIGNED_OUT or session is None:
                self._generation += 1
                self._deny("signed out")
                return

            if session.user_id != self._user_id:
                self._switch_user(session)
                self._resolve_cached()

    # ------------------------------------------------------------------
    # Private helpers (call with the lock held)
    # ------------------------------------------------------------------

    def _new_budget(self) -> BoundedRetry:
        return BoundedRetry(
            max_attempts=self._config.RECOVERY_MAX_ATTEMPTS,
            retry_on=(ReconcileError,),
        )

    def _transition(self, target: AccessState) -> None:
        if target not in TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state} -> {target} is not allowed")
        self._logger.debug("Access gate: %s -> %s", self._state, target)
        self._state = target

    def _resolve_cached(self) -> bool:
        """Move to ``READY`` when the reconciler already knows the profile."""
        if self._user_id is None:
            return False
        if self._reconciler.current(self._user_id) is None:
            return False
        self._transition(AccessState.READY)
        return True

    def _switch_user(self, session: Session) -> None:
        self._logger.info("Access gate: session replaced (%s -> %s).", self._user_id, session.user_id)
        self._generation += 1
        self._user_id = session.user_id
        self._retry = self._new_budget()
        if self._state != AccessState.AUTHENTICATED:
            self._transition(AccessState.AUTHENTICATED)

    def _deny(self, reason: str) -> None:
        self._transition(AccessState.UNAUTHENTICATED)
        if self._redirected:
            return
        self._redirected = True
        self._logger.info("Access denied (%s); redirecting to sign-in.", reason)
        self._router.redirect(
            self._config.SIGN_IN_PATH,
            {"from": self._router.current_path()},
        )
