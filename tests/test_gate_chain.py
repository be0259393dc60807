"""Access gate followed by registration gate, as a protected view mounts them."""

from __future__ import annotations

import pytest

from tests.helpers.fakes import complete_profile, make_session
from vital.models.cache_models import PendingRegistration
from vital.models.enums import AccessState, RegistrationOutcome
from vital.services.access_gate import AccessGate
from vital.services.registration_gate import RegistrationGate


@pytest.fixture
def access(session_manager, reconciler, router, config, logger):
    gate = AccessGate(auth=session_manager, reconciler=reconciler, router=router, config=config, logger=logger)
    yield gate
    gate.close()


@pytest.fixture
def registration(session_manager, store, reconciler, cache, router, config, logger):
    return RegistrationGate(
        auth=session_manager,
        store=store,
        reconciler=reconciler,
        cache=cache,
        router=router,
        config=config,
        logger=logger,
    )


def _mount(access, registration, ticks=3):
    access.start()
    for _ in range(ticks):
        if access.can_render:
            break
        access.tick()
    if not access.can_render:
        return access.state, None
    return access.state, registration.evaluate()


def test_new_user_lands_on_completion(access, registration, session_manager, store, cache, router, config):
    session_manager.set_session(make_session("user-a", phone="+8801711000000"))

    state, outcome = _mount(access, registration)

    assert state == AccessState.READY
    assert outcome == RegistrationOutcome.REDIRECT_COMPLETION
    assert store.insert_calls == 1
    assert router.redirects == [(config.COMPLETION_PATH, None)]
    pending = PendingRegistration.model_validate(cache.get(config.PENDING_REGISTRATION_KEY))
    assert pending.user_id == "user-a"
    assert pending.phone == "+8801711000000"


def test_registered_user_renders(access, registration, session_manager, source, store, router):
    store.add(complete_profile("user-a"))
    source.session = make_session("user-a")
    session_manager.start()

    state, outcome = _mount(access, registration)

    assert state == AccessState.READY
    assert outcome == RegistrationOutcome.RENDER
    assert registration.can_render is True
    assert store.insert_calls == 0
    assert router.redirects == []


def test_unreachable_store_never_reaches_registration(access, registration, session_manager, store, router, config):
    store.get_failures = 10
    session_manager.set_session(make_session("user-a"))

    state, outcome = _mount(access, registration, ticks=5)

    assert state == AccessState.UNAUTHENTICATED
    assert outcome is None
    assert router.redirects == [(config.SIGN_IN_PATH, {"from": "/dashboard"})]
