"""
Registration Completion Service.

Backs the completion page: decides where a signed-in user belongs
(dashboard, completion form, or fresh registration), reads the resumable
identity left by the registration gate, and applies the submitted form.
"""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from vital.auth import SessionManager
from vital.config import AppConfig
from vital.logger import StructuredLogger
from vital.models.cache_models import PendingRegistration
from vital.models.errors import ProfileInconsistentError, SessionAbsentError, StoreError
from vital.models.profile import Profile
from vital.models.registration import RegistrationForm
from vital.models.session import Session
from vital.repositories.profile_repository import ProfileStore
from vital.services.base_service import BaseService
from vital.services.cache_service import PersistentCacheService
from vital.utils.audit import ActivityAction, EntityType, log_audit_event


class RegistrationCompletionService(BaseService):
    """Resume and finish an incomplete registration."""

    def __init__(
        self,
        auth: SessionManager,
        store: ProfileStore,
        cache: PersistentCacheService,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(config, logger)
        self._auth = auth
        self._store = store
        self._cache = cache

    def load_pending(self, session: Session) -> Optional[PendingRegistration]:
        """Return the pending payload for *session*'s user, if one was left."""
        blob = self._cache.get(self._config.PENDING_REGISTRATION_KEY)
        if blob is None:
            return None
        try:
            pending = PendingRegistration.model_validate(blob)
        except ValidationError as exc:
            self._logger.warning("Pending registration payload is malformed: %s", exc)
            return None
        if pending.user_id != session.user_id:
            self._logger.info(
                "Ignoring pending registration for %s (active: %s).",
                pending.user_id,
                session.user_id,
            )
            return None
        return pending

    def resolve_entry(self, session: Session) -> str:
        """Return the path the completion page should show or send the user to."""
        try:
            profile = self._store.get_by_id(session.user_id)
        except StoreError as exc:
            self._logger.warning("Could not read profile for %s: %s", session.user_id, exc)
            profile = None

        if profile is not None and profile.is_complete():
            return self._config.DASHBOARD_PATH
        if self.load_pending(session) is not None:
            return self._config.COMPLETION_PATH
        return self._config.REGISTER_PATH

    def complete(self, session: Session, form: RegistrationForm) -> Profile:
        """Write *form* to the profile and clear the pending payload.

        Raises
        ------
        SessionAbsentError
            If the session ended before submission.
        StoreUnavailableError
            If the update or the follow-up reconciliation failed.
        ProfileInconsistentError
            If the stored row is still incomplete after the update.
        """
        current = self._auth.current_session
        if not session.same_user(current):
            raise SessionAbsentError(
                f"Session for {session.user_id} ended before completion was submitted",
                user_id=session.user_id,
            )

        profile = self._auth.update_profile(form.to_update())
        if not profile.is_complete():
            raise ProfileInconsistentError(
                f"Profile {session.user_id} still incomplete after update "
                f"(missing: {', '.join(profile.missing_fields())})",
                user_id=session.user_id,
            )

        self._cache.remove(self._config.PENDING_REGISTRATION_KEY)
        log_audit_event(
            logger=self._logger,
            action=ActivityAction.REGISTER_USER,
            entity_type=EntityType.PROFILES,
            entity_id=session.user_id,
            user_id=session.user_id,
            details={"is_donor": form.is_donor},
        )
        return profile
