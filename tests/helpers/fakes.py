"""In-memory stand-ins for the identity source, profile store, router and clock."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from vital.models.auth_models import AuthErrorCode, AuthResult
from vital.models.enums import SessionEventType
from vital.models.errors import StoreConflictError, StoreError
from vital.models.profile import Profile
from vital.models.session import Session, SessionEvent


class FakeProfileStore:
    """In-memory ProfileStore with failure injection and call counters."""

    def __init__(self) -> None:
        self.rows: dict[str, Profile] = {}
        self.get_failures = 0
        self.insert_error: Optional[Exception] = None
        # Row that "another actor" inserts just before our insert conflicts.
        self.conflict_row: Optional[Profile] = None
        self.conflict_without_row = False
        self.get_calls = 0
        self.insert_calls = 0
        self.update_calls = 0
        self.entered = threading.Event()
        self.release: Optional[threading.Event] = None
        self._lock = threading.Lock()

    def add(self, profile: Profile) -> Profile:
        self.rows[profile.id] = profile
        return profile

    def get_by_id(self, user_id: str) -> Optional[Profile]:
        with self._lock:
            self.get_calls += 1
            fail = self.get_failures > 0
            if fail:
                self.get_failures -= 1
        self.entered.set()
        if self.release is not None:
            assert self.release.wait(timeout=5), "store barrier never released"
        if fail:
            raise StoreError("profiles read timed out")
        return self.rows.get(user_id)

    def insert(self, profile: Profile) -> Profile:
        with self._lock:
            self.insert_calls += 1
        if self.insert_error is not None:
            raise self.insert_error
        if self.conflict_row is not None:
            self.rows[self.conflict_row.id] = self.conflict_row
            raise StoreConflictError("duplicate key value violates unique constraint")
        if self.conflict_without_row or profile.id in self.rows:
            raise StoreConflictError("duplicate key value violates unique constraint")
        self.rows[profile.id] = profile
        return profile

    def update(self, user_id: str, fields: dict[str, object]) -> Profile:
        with self._lock:
            self.update_calls += 1
        if user_id not in self.rows:
            raise StoreError(f"update matched no row for {user_id}")
        updated = Profile.model_validate({**self.rows[user_id].model_dump(), **fields})
        self.rows[user_id] = updated
        return updated


class FakeIdentitySource:
    """IdentitySource that emits events on demand, like supabase.auth."""

    def __init__(self, session: Optional[Session] = None) -> None:
        self.session = session
        self.callbacks: list[Callable[[SessionEvent], None]] = []
        self.sign_out_scopes: list[str] = []
        self.sign_out_error: Optional[Exception] = None
        # email -> (password, session)
        self.accounts: dict[str, tuple[str, Session]] = {}
        self.confirm_email = False
        self.signed_up: list[tuple[str, dict[str, object]]] = []

    def get_current_session(self) -> Optional[Session]:
        return self.session

    def on_change(self, callback: Callable[[SessionEvent], None]) -> Callable[[], None]:
        self.callbacks.append(callback)
        return lambda: self.callbacks.remove(callback)

    def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        password_and_session = self.accounts.get(email)
        if password_and_session is None or password_and_session[0] != password:
            return AuthResult.failure(AuthErrorCode.INVALID_CREDENTIALS, "Incorrect email or password.")
        session = password_and_session[1]
        self.emit(SessionEventType.SIGNED_IN, session)
        return AuthResult(success=True, session=session)

    def sign_up(
        self, email: str, password: str, metadata: Optional[dict[str, object]] = None
    ) -> AuthResult:
        if email in self.accounts:
            return AuthResult.failure(
                AuthErrorCode.EMAIL_ALREADY_EXISTS, "An account with this email already exists."
            )
        self.signed_up.append((email, dict(metadata or {})))
        session = make_session(f"user-{len(self.accounts) + 1}", email=email, **(metadata or {}))
        self.accounts[email] = (password, session)
        if self.confirm_email:
            return AuthResult(success=True, needs_confirmation=True)
        self.emit(SessionEventType.SIGNED_IN, session)
        return AuthResult(success=True, session=session)

    def sign_out(self, scope: str = "local") -> None:
        self.sign_out_scopes.append(scope)
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.session = None
        self.emit(SessionEventType.SIGNED_OUT, None)

    def emit(self, event: SessionEventType, session: Optional[Session]) -> None:
        if session is not None:
            self.session = session
        for callback in list(self.callbacks):
            callback(SessionEvent(event=event, session=session))


class FakeRouter:
    def __init__(self, path: str = "/dashboard") -> None:
        self.path = path
        self.redirects: list[tuple[str, Optional[dict[str, str]]]] = []

    def redirect(self, path: str, query: Optional[dict[str, str]] = None) -> None:
        self.redirects.append((path, query))

    def current_path(self) -> str:
        return self.path


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_session(user_id: str = "user-a", email: Optional[str] = None, **metadata: object) -> Session:
    return Session(
        user_id=user_id,
        email=email if email is not None else f"{user_id}@example.com",
        access_token=f"token-{user_id}",
        user_metadata=dict(metadata),
    )


def complete_profile(user_id: str = "user-a", **overrides: object) -> Profile:
    fields: dict[str, object] = {
        "id": user_id,
        "email": f"{user_id}@example.com",
        "full_name": "Rahim Uddin",
        "phone": "+8801711000000",
        "city": "Dhaka",
        "district": "Dhaka",
    }
    fields.update(overrides)
    return Profile(**fields)


