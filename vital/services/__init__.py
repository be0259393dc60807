"""
Gatekeeping Services Package.

The ``create_services()`` factory wires the cache, Profile Store,
reconciler and session manager together, returning a typed dict the
host shell consumes without knowing the dependency graph.  Gates are
per-view and are built by the shell with its own router.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, TypedDict

from vital.auth import SessionManager
from vital.config import AppConfig
from vital.database import DatabaseManager
from vital.logger import get_logger
from vital.repositories.profile_repository import ProfileRepository
from vital.services.cache_cipher import CacheCipher
from vital.services.cache_service import PersistentCacheService
from vital.services.identity_source import IdentitySource, SupabaseIdentitySource
from vital.services.reconciler import ProfileReconciler
from vital.services.registration_completion import RegistrationCompletionService
from vital.services.route_policy import RoutePolicy


class ServiceContainer(TypedDict):
    """Typed container for the process-wide services."""

    cache: PersistentCacheService
    profile_repository: ProfileRepository
    reconciler: ProfileReconciler
    session_manager: SessionManager
    route_policy: RoutePolicy
    registration_completion: RegistrationCompletionService


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    identity_source: Optional[IdentitySource] = None,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    entry point calls it once at startup.

    Args:
        db: Initialised DatabaseManager (SQLite schema ready).
        config: Application configuration.
        identity_source: Override for the Supabase-backed source.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services")

    cipher: Optional[CacheCipher] = None
    if config.CACHE_ENCRYPTION_ENABLED:
        cipher = CacheCipher(
            logger=logger,
            iterations=config.CACHE_KDF_ITERATIONS,
            salt_path=Path(config.CACHE_SALT_PATH) if config.CACHE_SALT_PATH else None,
        )
    cache = PersistentCacheService(db=db, logger=logger, cipher=cipher)

    profile_repo = ProfileRepository(db=db, logger=logger, table=config.PROFILE_TABLE)

    reconciler = ProfileReconciler(
        store=profile_repo,
        cache=cache,
        config=config,
        logger=logger,
    )
    session_manager = SessionManager(
        source=identity_source or SupabaseIdentitySource(db=db, logger=logger),
        reconciler=reconciler,
        store=profile_repo,
        cache=cache,
        config=config,
        logger=logger,
    )

    return ServiceContainer(
        cache=cache,
        profile_repository=profile_repo,
        reconciler=reconciler,
        session_manager=session_manager,
        route_policy=RoutePolicy(config=config, logger=logger),
        registration_completion=RegistrationCompletionService(
            auth=session_manager,
            store=profile_repo,
            cache=cache,
            config=config,
            logger=logger,
        ),
    )
