"""
Profile Reconciler.

Turns an authenticated session into the user's ``profiles`` row,
provisioning a default row the first time a user is seen, and keeps the
persistent cache in step.

Reconciliation rules:
    - At most one fetch/create runs per process.  Callers for the same
      user that arrive while it runs share its result; a caller for a
      different user waits for it to finish and then runs its own.
    - A successful reconciliation less than ``RECONCILE_THROTTLE_S`` ago
      is returned as-is (unless ``force`` is set).
    - A uniqueness conflict on insert means another actor created the
      row first: re-read it.  If it is still missing the state is
      inconsistent.
    - Read failures surface as ``StoreUnavailableError``; a profile is
      never fabricated.
    - Results of a job that started before the active user changed are
      handed back to that job's callers but never committed to the
      shared state or the cache.
    - Only the active user can be reconciled.  A session held past
      sign-out is rejected with ``SessionAbsentError``.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, wait
from typing import Callable, Optional

from pydantic import ValidationError

from vital.config import AppConfig
from vital.logger import StructuredLogger
from vital.models.cache_models import CachedProfile
from vital.models.errors import (
    ProfileInconsistentError,
    ReconcileError,
    SessionAbsentError,
    StoreConflictError,
    StoreError,
    StoreUnavailableError,
)
from vital.models.profile import Profile
from vital.models.session import Session
from vital.repositories.profile_repository import ProfileStore
from vital.services.base_service import BaseService
from vital.services.cache_service import PersistentCacheService
from vital.utils.audit import ActivityAction, EntityType, log_audit_event


class _Job:
    """One in-flight fetch/create, shared by every caller for its user."""

    def __init__(self, user_id: str, epoch: int) -> None:
        self.user_id: str = user_id
        self.epoch: int = epoch
        self.future: Future[Profile] = Future()


class ReconciliationState:
    """Process-wide bookkeeping.  Only ``ProfileReconciler`` writes it."""

    def __init__(self) -> None:
        self.active_user_id: Optional[str] = None
        self.epoch: int = 0
        self.in_flight: Optional[_Job] = None
        self.last_completed_at: Optional[float] = None
        self.last_profile: Optional[Profile] = None
        self.last_error: Optional[ReconcileError] = None


class ProfileReconciler(BaseService):
    """Fetches, creates, and caches the profile for the active session.

    Parameters
    ----------
    store:
        The ``ProfileStore`` (Supabase ``profiles`` table).
    cache:
        Persistent cache; the reconciler is the only writer of the
        profile snapshot key.
    config:
        Supplies ``RECONCILE_THROTTLE_S`` and ``PROFILE_CACHE_KEY``.
    logger:
        Structured logger.
    clock:
        Monotonic clock, injectable for throttle tests.
    """

    def __init__(
        self,
        store: ProfileStore,
        cache: PersistentCacheService,
        config: AppConfig,
        logger: StructuredLogger,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config, logger)
        self._store = store
        self._cache = cache
        self._clock = clock
        self._lock: threading.Lock = threading.Lock()
        self._state: ReconciliationState = ReconciliationState()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def is_loading(self) -> bool:
        """``True`` while a fetch/create is in flight."""
        with self._lock:
            return self._state.in_flight is not None

    @property
    def last_error(self) -> Optional[ReconcileError]:
        with self._lock:
            return self._state.last_error

    @property
    def active_user_id(self) -> Optional[str]:
        with self._lock:
            return self._state.active_user_id

    def current(self, user_id: str) -> Optional[Profile]:
        """Return the best known profile for *user_id* without network I/O.

        The in-memory result of the last committed reconciliation wins;
        otherwise the cached snapshot is used if, and only if, it is
        tagged with *user_id*.
        """
        with self._lock:
            last = self._state.last_profile
            if last is not None and last.id == user_id:
                return last
        return self._read_cached(user_id)

    # ------------------------------------------------------------------
    # Session lifecycle (driven by SessionManager)
    # ------------------------------------------------------------------

    def activate(self, user_id: Optional[str]) -> None:
        """Make *user_id* the active user.

        Switching to a different user (or to ``None``) starts a new epoch:
        the remembered profile, throttle timestamp, and error are dropped
        and any job still running for the previous user will not commit.
        """
        with self._lock:
            self._activate_locked(user_id)

    def reset(self) -> None:
        """Forget the active user and drop the cached profile snapshot."""
        with self._lock:
            self._activate_locked(None)
            self._cache.remove(self._config.PROFILE_CACHE_KEY)

    def _activate_locked(self, user_id: Optional[str]) -> None:
        state = self._state
        if state.active_user_id == user_id:
            return
        self._logger.info(
            "Active user changed: %s -> %s", state.active_user_id, user_id,
        )
        state.active_user_id = user_id
        state.epoch += 1
        state.last_profile = None
        state.last_completed_at = None
        state.last_error = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reconcile(self, session: Session, force: bool = False) -> Profile:
        """Resolve the profile for *session*, creating it if absent.

        Args:
            session: The session to reconcile.  Its user must be the
                active one (see :meth:`activate`).
            force: Skip the throttle window (used after profile edits).
                The in-flight guard still applies.

        Returns:
            The stored (or just provisioned) profile.

        Raises:
            SessionAbsentError: If *session* does not belong to the active
                user, including when nobody is active (signed out).
            StoreUnavailableError: If the store could not be read/written.
            ProfileInconsistentError: If conflict recovery found no row.
        """
        user_id = session.user_id

        while True:
            waiting_on: Optional[_Job] = None
            with self._lock:
                state = self._state
                if state.active_user_id != user_id:
                    # Activation belongs to SessionManager.set_session alone.
                    raise SessionAbsentError(
                        f"Session for {user_id} is not active (active: {state.active_user_id})",
                        user_id=user_id,
                    )

                if not force and self._within_throttle_locked(user_id):
                    self._logger.debug("Reconcile throttled for %s.", user_id)
                    return state.last_profile  # type: ignore[return-value]

                job = state.in_flight
                if job is None:
                    job = _Job(user_id, state.epoch)
                    state.in_flight = job
                    leader = True
                elif job.user_id == user_id:
                    leader = False
                else:
                    waiting_on = job

            if waiting_on is not None:
                # A job for a previous user is still draining; it will not
                # commit, but two jobs must never overlap.
                wait([waiting_on.future])
                continue

            if not leader:
                self._logger.debug("Joining in-flight reconcile for %s.", user_id)
                return job.future.result()

            return self._run_job(job, session)

    # ------------------------------------------------------------------
    # Private implementation
    # ------------------------------------------------------------------

    def _within_throttle_locked(self, user_id: str) -> bool:
        state = self._state
        if state.last_profile is None or state.last_profile.id != user_id:
            return False
        if state.last_completed_at is None:
            return False
        return (self._clock() - state.last_completed_at) < self._config.RECONCILE_THROTTLE_S

    def _run_job(self, job: _Job, session: Session) -> Profile:
        """Execute *job* and publish its outcome to every waiting caller."""
        try:
            try:
                profile = self._fetch_or_create(session)
            except ReconcileError as exc:
                self._complete(job, error=exc)
                raise
            except Exception as exc:
                self._logger.error(
                    "Unexpected error reconciling %s: %s", job.user_id, exc,
                    exc_info=True,
                )
                wrapped = StoreUnavailableError(
                    f"Unexpected error reconciling {job.user_id}: {exc}",
                    user_id=job.user_id,
                    original_error=exc,
                )
                self._complete(job, error=wrapped)
                raise wrapped from exc
            self._complete(job, profile=profile)
            return profile
        finally:
            # Release even on BaseException so no caller waits forever.
            with self._lock:
                if self._state.in_flight is job:
                    self._state.in_flight = None
            if not job.future.done():
                job.future.set_exception(
                    StoreUnavailableError(
                        f"Reconcile for {job.user_id} was aborted",
                        user_id=job.user_id,
                    )
                )

    def _complete(
        self,
        job: _Job,
        profile: Optional[Profile] = None,
        error: Optional[ReconcileError] = None,
    ) -> None:
        with self._lock:
            state = self._state
            if state.in_flight is job:
                state.in_flight = None

            if job.epoch != state.epoch:
                self._logger.warning(
                    "Discarding reconcile result for superseded user %s.",
                    job.user_id,
                )
            elif profile is not None:
                state.last_profile = profile
                state.last_completed_at = self._clock()
                state.last_error = None
                self._write_cached(profile)
            else:
                state.last_error = error

        if profile is not None:
            job.future.set_result(profile)
        else:
            job.future.set_exception(error)  # type: ignore[arg-type]

    def _fetch_or_create(self, session: Session) -> Profile:
        user_id = session.user_id
        log = self._logger.bind(user_id=user_id)
        log.info("Reconciling profile.")

        try:
            existing = self._store.get_by_id(user_id)
        except StoreError as exc:
            raise StoreUnavailableError(
                f"Could not read profile for {user_id}",
                user_id=user_id,
                original_error=exc,
            ) from exc

        if existing is not None:
            return existing

        return self._provision(session)

    def _provision(self, session: Session) -> Profile:
        """Insert the default row; recover from a concurrent insert."""
        user_id = session.user_id
        new_profile = Profile.default_for(session)
        log = self._logger.bind(user_id=user_id)
        log.info("No profile row; provisioning a default.")

        try:
            created = self._store.insert(new_profile)
        except StoreConflictError as exc:
            log.warning("Profile was created concurrently; re-reading. Error: %s", exc)
            try:
                retried = self._store.get_by_id(user_id)
            except StoreError as read_exc:
                raise StoreUnavailableError(
                    f"Could not re-read profile for {user_id} after conflict",
                    user_id=user_id,
                    original_error=read_exc,
                ) from read_exc
            if retried is None:
                raise ProfileInconsistentError(
                    f"Insert for {user_id} conflicted but no row exists",
                    user_id=user_id,
                    original_error=exc,
                ) from exc
            return retried
        except StoreError as exc:
            raise StoreUnavailableError(
                f"Could not create profile for {user_id}",
                user_id=user_id,
                original_error=exc,
            ) from exc

        log_audit_event(
            logger=self._logger,
            action=ActivityAction.CREATE_PROFILE,
            entity_type=EntityType.PROFILES,
            entity_id=user_id,
            user_id=user_id,
            details={"email": created.email, "full_name": created.full_name},
        )
        return created

    def _write_cached(self, profile: Profile) -> None:
        entry = CachedProfile(user_id=profile.id, profile=profile)
        self._cache.set(self._config.PROFILE_CACHE_KEY, entry.model_dump(mode="json"))

    def _read_cached(self, user_id: str) -> Optional[Profile]:
        blob = self._cache.get(self._config.PROFILE_CACHE_KEY)
        if blob is None:
            return None
        try:
            entry = CachedProfile.model_validate(blob)
        except ValidationError as exc:
            self._logger.warning("Cached profile snapshot is malformed: %s", exc)
            return None
        if not entry.belongs_to(user_id):
            self._logger.info(
                "Ignoring cached profile owned by %s (active: %s).",
                entry.user_id,
                user_id,
            )
            return None
        return entry.profile
