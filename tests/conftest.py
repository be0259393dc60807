from __future__ import annotations

import pytest

from tests.helpers.fakes import FakeClock, FakeIdentitySource, FakeProfileStore, FakeRouter
from vital.auth import SessionManager
from vital.config import AppConfig
from vital.database import DatabaseManager
from vital.logger import StructuredLogger
from vital.schema import initialize_schema
from vital.services.cache_service import PersistentCacheService
from vital.services.reconciler import ProfileReconciler


@pytest.fixture
def config():
    return AppConfig(
        SUPABASE_URL="",
        CACHE_ENCRYPTION_ENABLED=False,
        SIGN_IN_SETTLE_S=0.0,
        RECONCILE_THROTTLE_S=2.0,
        RECOVERY_MAX_ATTEMPTS=3,
    )


@pytest.fixture
def logger():
    return StructuredLogger(name="vital.tests")


@pytest.fixture
def db(tmp_path, logger):
    manager = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=tmp_path / "cache.db",
        logger=logger,
    )
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def cache(db, logger):
    return PersistentCacheService(db=db, logger=logger)


@pytest.fixture
def store():
    return FakeProfileStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reconciler(store, cache, config, logger, clock):
    return ProfileReconciler(store=store, cache=cache, config=config, logger=logger, clock=clock)


@pytest.fixture
def source():
    return FakeIdentitySource()


@pytest.fixture
def session_manager(source, reconciler, store, cache, config, logger):
    manager = SessionManager(
        source=source,
        reconciler=reconciler,
        store=store,
        cache=cache,
        config=config,
        logger=logger,
    )
    yield manager
    manager.stop()


@pytest.fixture
def router():
    return FakeRouter()
