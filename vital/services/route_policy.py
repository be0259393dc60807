"""
Route Policy.

Coarse, session-only navigation rules applied before any view mounts:
protected prefixes need a session, and the sign-in / registration pages
send signed-in users to the dashboard.  Profile completeness is the
registration gate's job, not this policy's.
"""

from __future__ import annotations

from typing import Optional

from vital.models.session import Session
from vital.services.base_service import BaseService
from vital.services.router import Redirect


class RoutePolicy(BaseService):
    """Path-prefix rules evaluated on every navigation."""

    def is_protected(self, path: str) -> bool:
        return any(_matches(path, prefix) for prefix in self._config.PROTECTED_PATH_PREFIXES)

    def is_auth_path(self, path: str) -> bool:
        return any(_matches(path, prefix) for prefix in self._config.AUTH_PATHS)

    def evaluate(self, path: str, session: Optional[Session]) -> Optional[Redirect]:
        """Return where to go instead of *path*, or ``None`` to proceed."""
        if session is None and self.is_protected(path):
            self._logger.debug("Protected path %s without a session.", path)
            return Redirect(path=self._config.SIGN_IN_PATH, query={"redirect": path})
        if session is not None and self.is_auth_path(path):
            return Redirect(path=self._config.DASHBOARD_PATH)
        return None


def _matches(path: str, prefix: str) -> bool:
    # "/profile" matches "/profile" and "/profile/edit", not "/profiles".
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")
