"""
Settings for the Vital session gatekeeper.

Read once from the environment (and an optional ``.env``) into
``AppConfig``, then passed to each service through its constructor.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import ClassVar, Optional

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Supabase access, cache location, reconcile and recovery tunables, routes."""

    # --- Supabase ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")
    PROFILE_TABLE: str = "profiles"

    # --- Local cache ---
    CACHE_DB_PATH: str = "vital_local.db"
    CACHE_ENCRYPTION_ENABLED: bool = True
    CACHE_KDF_ITERATIONS: int = 600_000
    CACHE_SALT_PATH: str = ""  # empty -> ~/.vital_cache_salt

    # Keys shared with the web client's localStorage layout.
    PROFILE_CACHE_KEY: ClassVar[str] = "vital_user_profile"
    PENDING_REGISTRATION_KEY: ClassVar[str] = "pendingRegistration"

    # --- Reconciliation ---
    RECONCILE_THROTTLE_S: float = 2.0
    SIGN_IN_SETTLE_S: float = 0.5

    # --- Access gate ---
    RECOVERY_MAX_ATTEMPTS: int = 3
    GATE_TICK_MS: int = 250

    # --- Routes ---
    SIGN_IN_PATH: str = "/login"
    REGISTER_PATH: str = "/register"
    COMPLETION_PATH: str = "/complete-registration"
    DASHBOARD_PATH: str = "/dashboard"
    PROTECTED_PATH_PREFIXES: tuple[str, ...] = (
        "/admin",
        "/profile",
        "/donations",
        "/requests/new",
        "/achievements",
        "/dashboard",
    )
    AUTH_PATHS: tuple[str, ...] = ("/login", "/register")

    # --- Logging ---
    LOG_FILE: str = ""
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _flag_offline(self) -> "AppConfig":
        log = logging.getLogger("vital.config")
        if not Path(".env").exists():
            log.debug("No .env file; using the process environment only.")
        if not self.SUPABASE_URL:
            log.warning(
                "SUPABASE_URL is empty; sessions and profiles cannot be "
                "resolved until Supabase is configured."
            )

        return self

    def validate_gate_config(self) -> None:
        """Validate the tunables the gates depend on.

        Raises:
            ValueError: If a throttle or retry setting is out of range.
        """
        if self.RECONCILE_THROTTLE_S < 0:
            raise ValueError("RECONCILE_THROTTLE_S must be >= 0")
        if self.RECOVERY_MAX_ATTEMPTS < 1:
            raise ValueError("RECOVERY_MAX_ATTEMPTS must be >= 1")


_shared: Optional[AppConfig] = None
_shared_lock = threading.Lock()


def get_config() -> AppConfig:
    """Process-wide settings, built on first use.

    Services take ``AppConfig`` in their constructors; this accessor is for
    the logger setup and ``main.py``.
    """
    global _shared
    if _shared is None:
        with _shared_lock:
            if _shared is None:
                _shared = AppConfig()
    return _shared
