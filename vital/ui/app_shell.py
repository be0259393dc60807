"""Application Host Shell.

The top-level ``CTk`` window.  It implements the ``Router`` the gates
redirect through, applies the route policy on every navigation, and
drives the per-view access and registration gates from its render cycle
(``self.after``).

All dependencies are injected via the constructor.  The shell contains
no gatekeeping logic; every network call runs on a background thread
and its result is marshalled back to the UI thread with ``after(0, ...)``.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

import customtkinter as ctk
from pydantic import ValidationError

from vital import __version__ as _APP_VERSION
from vital.config import AppConfig
from vital.logger import StructuredLogger
from vital.models.auth_models import AuthResult
from vital.models.enums import AccessState, RegistrationOutcome
from vital.models.errors import ReconcileError
from vital.models.profile import Profile
from vital.models.registration import RegistrationForm
from vital.models.session import Session
from vital.services import ServiceContainer
from vital.services.access_gate import AccessGate
from vital.services.registration_gate import RegistrationGate
from vital.ui.theme import (
    ACCENT_HOVER,
    ACCENT_PRIMARY,
    CONTENT_BG,
    CONTENT_CARD_BG,
    CORNER_RADIUS,
    ERROR_TEXT,
    FONT_BODY,
    FONT_BUTTON,
    FONT_HEADING,
    FONT_LABEL,
    FONT_SMALL,
    FORM_WIDTH,
    MAIN_WINDOW_HEIGHT,
    MAIN_WINDOW_WIDTH,
    PADDING_LG,
    PADDING_MD,
    PADDING_SM,
    SUCCESS_TEXT,
    TEXT_SECONDARY,
)

_SIGN_IN_FIELDS: tuple[tuple[str, str, bool], ...] = (
    ("email", "Email", False),
    ("password", "Password", True),
    ("full_name", "Full name (new accounts)", False),
)

_FORM_FIELDS: tuple[tuple[str, str], ...] = (
    ("full_name", "Full name"),
    ("phone", "Phone"),
    ("city", "City"),
    ("district", "District"),
    ("blood_group", "Blood group (optional)"),
    ("present_zip", "Present ZIP (optional)"),
)


class AppShell(ctk.CTk):
    """Host Shell: the main application window and the gates' router.

    Lifecycle
    ---------
    1. On boot: starts the session manager on a background thread, then
       navigates to the dashboard.
    2. Protected paths mount an ``AccessGate`` (ticked every
       ``GATE_TICK_MS``) and, once it is ready, a ``RegistrationGate``.
    3. Redirects issued by either gate re-enter :meth:`redirect` and are
       applied on the UI thread.

    Parameters
    ----------
    config:
        Application configuration.
    services:
        Fully-wired service container.
    logger:
        Structured logger instance.
    """

    def __init__(
        self,
        config: AppConfig,
        services: ServiceContainer,
        logger: StructuredLogger,
    ) -> None:
        super().__init__()

        self._config = config
        self._services = services
        self._logger = logger
        self._auth = services["session_manager"]

        self._path: str = "/"
        self._view: Optional[ctk.CTkFrame] = None
        self._access_gate: Optional[AccessGate] = None
        self._registration_gate: Optional[RegistrationGate] = None
        self._registration_checked: bool = False
        self._tick_job: Optional[str] = None
        self._tick_running: bool = False

        self.title(f"Vital {_APP_VERSION}")
        self.geometry(f"{MAIN_WINDOW_WIDTH}x{MAIN_WINDOW_HEIGHT}")
        self.configure(fg_color=CONTENT_BG)
        ctk.set_appearance_mode("light")
        ctk.set_default_color_theme("blue")

        self.protocol("WM_DELETE_WINDOW", self._on_close)

        self._show_message("Vital", "Restoring your session...")
        self._run_in_background(
            self._auth.start,
            lambda _profile: self._navigate(config.DASHBOARD_PATH),
            name="session-start",
        )

    # ==================================================================
    # Router
    # ==================================================================

    def redirect(self, path: str, query: Optional[dict[str, str]] = None) -> None:
        """Navigate to *path*.  Safe to call from any thread."""
        self.after(0, self._navigate, path, query)

    def current_path(self) -> str:
        return self._path

    # ==================================================================
    # Navigation
    # ==================================================================

    def _navigate(self, path: str, query: Optional[dict[str, str]] = None) -> None:
        target = self._services["route_policy"].evaluate(path, self._auth.current_session)
        if target is not None:
            self._logger.info("Route policy: %s -> %s", path, target.path)
            target.apply(self)
            return

        self._unmount_gates()
        self._path = path
        self._logger.info("Navigated to %s %s", path, query or "")

        if self._services["route_policy"].is_protected(path):
            self._mount_protected()
        elif path == self._config.COMPLETION_PATH:
            self._show_completion_form()
        elif path == self._config.SIGN_IN_PATH:
            self._show_sign_in((query or {}).get("from") or (query or {}).get("redirect"))
        else:
            self._show_message("Vital", f"Nothing to show at {path}.")

    def _mount_protected(self) -> None:
        self._show_message("Vital", "Loading your profile...")
        gate = AccessGate(
            auth=self._auth,
            reconciler=self._services["reconciler"],
            router=self,
            config=self._config,
            logger=self._logger,
        )
        self._access_gate = gate
        self._registration_gate = RegistrationGate(
            auth=self._auth,
            store=self._services["profile_repository"],
            reconciler=self._services["reconciler"],
            cache=self._services["cache"],
            router=self,
            config=self._config,
            logger=self._logger,
        )
        self._registration_checked = False
        gate.start()
        self._schedule_tick()

    def _unmount_gates(self) -> None:
        if self._tick_job is not None:
            self.after_cancel(self._tick_job)
            self._tick_job = None
        if self._access_gate is not None:
            self._access_gate.close()
        self._access_gate = None
        self._registration_gate = None

    # ==================================================================
    # Render cycle
    # ==================================================================

    def _schedule_tick(self) -> None:
        self._tick_job = self.after(self._config.GATE_TICK_MS, self._render_cycle)

    def _render_cycle(self) -> None:
        """One render cycle: advance the access gate off the UI thread."""
        self._tick_job = None
        gate = self._access_gate
        if gate is None:
            return
        if self._tick_running:
            self._schedule_tick()
            return

        self._tick_running = True

        def _done(state: AccessState) -> None:
            self._tick_running = False
            if gate is not self._access_gate:
                return
            if state == AccessState.UNAUTHENTICATED:
                return  # the gate has already redirected
            if state == AccessState.READY and not self._registration_checked:
                self._registration_checked = True
                self._check_registration()
                return
            self._schedule_tick()

        self._run_in_background(gate.tick, _done, name="gate-tick")

    def _check_registration(self) -> None:
        gate = self._registration_gate
        if gate is None:
            return

        def _done(outcome: RegistrationOutcome) -> None:
            if gate is not self._registration_gate:
                return
            if outcome == RegistrationOutcome.RENDER:
                self._show_dashboard(self._auth.current_profile)

        self._run_in_background(gate.evaluate, _done, name="registration-check")

    # ==================================================================
    # Views
    # ==================================================================

    def _replace_view(self) -> ctk.CTkFrame:
        if self._view is not None:
            self._view.destroy()
        self._view = ctk.CTkFrame(self, fg_color=CONTENT_CARD_BG, corner_radius=CORNER_RADIUS)
        self._view.pack(fill="both", expand=True, padx=PADDING_LG, pady=PADDING_LG)
        return self._view

    def _show_message(self, heading: str, body: str) -> ctk.CTkFrame:
        view = self._replace_view()
        ctk.CTkLabel(view, text=heading, font=FONT_HEADING).pack(pady=(PADDING_LG, PADDING_SM))
        ctk.CTkLabel(view, text=body, font=FONT_BODY, text_color=TEXT_SECONDARY).pack()
        return view

    def _show_sign_in(self, return_to: Optional[str]) -> None:
        view = self._show_message("Sign in", "Use your Vital account, or create one.")
        entries: dict[str, ctk.CTkEntry] = {}
        for field, label, secret in _SIGN_IN_FIELDS:
            ctk.CTkLabel(view, text=label, font=FONT_LABEL).pack(anchor="w", padx=PADDING_LG)
            entry = ctk.CTkEntry(view, width=FORM_WIDTH, font=FONT_BODY, show="*" if secret else "")
            entry.pack(anchor="w", padx=PADDING_LG, pady=(0, PADDING_SM))
            entries[field] = entry
        status = ctk.CTkLabel(view, text="", font=FONT_SMALL, text_color=ERROR_TEXT)

        def _finish(result: AuthResult) -> None:
            if not result.success:
                status.configure(text=result.error_message or "Sign-in failed.", text_color=ERROR_TEXT)
            elif result.needs_confirmation:
                status.configure(
                    text="Check your inbox to confirm your email, then sign in.",
                    text_color=SUCCESS_TEXT,
                )
            else:
                self._navigate(return_to or self._config.DASHBOARD_PATH)

        def _submit(create: bool) -> None:
            email, password = entries["email"].get(), entries["password"].get()
            full_name = entries["full_name"].get()
            status.configure(text="Working...", text_color=SUCCESS_TEXT)
            if create:
                self._run_in_background(
                    lambda: self._auth.sign_up(email, password, full_name), _finish, name="sign-up"
                )
            else:
                self._run_in_background(
                    lambda: self._auth.sign_in(email, password), _finish, name="sign-in"
                )

        sign_in = self._button(view, "Sign in", lambda: _submit(False))
        sign_in.pack(anchor="w", padx=PADDING_LG, pady=(PADDING_MD, PADDING_SM))
        self._button(view, "Create account", lambda: _submit(True)).pack(anchor="w", padx=PADDING_LG)
        status.pack(anchor="w", padx=PADDING_LG, pady=PADDING_SM)

    def _show_dashboard(self, profile: Optional[Profile]) -> None:
        name = profile.full_name if profile and profile.full_name else "donor"
        view = self._show_message(f"Welcome, {name}", self._profile_summary(profile))

        def _refresh() -> None:
            self._run_in_background(
                self._auth.refresh_profile,
                lambda refreshed: self._show_dashboard(refreshed),
                name="profile-refresh",
            )

        def _sign_out() -> None:
            self._run_in_background(self._auth.sign_out, lambda _none: None, name="sign-out")

        self._button(view, "Refresh profile", _refresh).pack(pady=(PADDING_MD, PADDING_SM))
        self._button(view, "Sign out", _sign_out).pack(pady=PADDING_SM)

    def _show_completion_form(self) -> None:
        session = self._auth.current_session
        if session is None:
            self._navigate(self._config.SIGN_IN_PATH, {"from": self._config.COMPLETION_PATH})
            return

        self._show_message("Complete your registration", "Checking your profile...")
        completion = self._services["registration_completion"]

        def _resolved(entry: str) -> None:
            if self._path != self._config.COMPLETION_PATH:
                return
            if entry == self._config.DASHBOARD_PATH:
                self._navigate(entry)
                return
            # REGISTER_PATH only means nothing was left to resume; the
            # signed-in user still fills the form, just without prefill.
            self._build_completion_form(session)

        self._run_in_background(
            lambda: completion.resolve_entry(session),
            _resolved,
            name="completion-entry",
            on_error=lambda _exc: self._build_completion_form(session),
        )

    def _build_completion_form(self, session: Session) -> None:
        view = self._show_message("Complete your registration", "A few details before you continue.")
        completion = self._services["registration_completion"]
        pending = completion.load_pending(session)

        entries: dict[str, ctk.CTkEntry] = {}
        for field, label in _FORM_FIELDS:
            ctk.CTkLabel(view, text=label, font=FONT_LABEL).pack(anchor="w", padx=PADDING_LG)
            entry = ctk.CTkEntry(view, width=FORM_WIDTH, font=FONT_BODY)
            entry.pack(anchor="w", padx=PADDING_LG, pady=(0, PADDING_SM))
            entries[field] = entry
        if pending is not None and pending.phone:
            entries["phone"].insert(0, pending.phone)

        status = ctk.CTkLabel(view, text="", font=FONT_SMALL, text_color=ERROR_TEXT)

        def _submit() -> None:
            try:
                form = RegistrationForm(**{name: entry.get() for name, entry in entries.items()})
            except ValidationError as exc:
                status.configure(text=_first_error(exc), text_color=ERROR_TEXT)
                return
            status.configure(text="Saving...", text_color=SUCCESS_TEXT)
            self._run_in_background(
                lambda: completion.complete(session, form),
                lambda _profile: self._navigate(self._config.DASHBOARD_PATH),
                name="registration-complete",
                on_error=lambda exc: status.configure(text=str(exc), text_color=ERROR_TEXT),
            )

        self._button(view, "Save and continue", _submit).pack(anchor="w", padx=PADDING_LG, pady=PADDING_MD)
        status.pack(anchor="w", padx=PADDING_LG)

    @staticmethod
    def _profile_summary(profile: Optional[Profile]) -> str:
        if profile is None:
            return "Your profile is loading."
        parts = [profile.email, profile.phone or "", profile.city or "", profile.district or ""]
        return " | ".join(part for part in parts if part)

    @staticmethod
    def _button(parent: ctk.CTkFrame, text: str, command: Callable[[], None]) -> ctk.CTkButton:
        return ctk.CTkButton(
            parent,
            text=text,
            command=command,
            font=FONT_BUTTON,
            fg_color=ACCENT_PRIMARY,
            hover_color=ACCENT_HOVER,
        )

    # ==================================================================
    # Threading helpers
    # ==================================================================

    def _run_in_background(
        self,
        work: Callable[[], object],
        on_result: Callable[..., None],
        name: str,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        """Run *work* on a daemon thread; deliver its result on the UI thread."""

        def _target() -> None:
            try:
                result = work()
            except ReconcileError as exc:
                self._logger.warning("%s failed (%s): %s", name, exc.code, exc)
                if on_error is not None:
                    self.after(0, on_error, exc)
                return
            except Exception as exc:
                self._logger.error("%s failed: %s", name, exc, exc_info=True)
                if on_error is not None:
                    self.after(0, on_error, exc)
                return
            self.after(0, on_result, result)

        threading.Thread(target=_target, name=name, daemon=True).start()

    # ==================================================================
    # Window close
    # ==================================================================

    def _on_close(self) -> None:
        """Detach from session events before destroying the window."""
        self._unmount_gates()
        self._auth.stop()
        self.destroy()


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ()))
    return f"{field}: {error.get('msg', 'invalid value')}"
