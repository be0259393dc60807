from __future__ import annotations

import pytest

from tests.helpers.fakes import complete_profile, make_session
from vital.models.enums import AccessState, SessionEventType
from vital.models.errors import InvalidTransitionError, SessionAbsentError
from vital.models.session import SessionEvent
from vital.services.access_gate import TRANSITIONS, AccessGate


@pytest.fixture
def gate(session_manager, reconciler, router, config, logger):
    access = AccessGate(
        auth=session_manager,
        reconciler=reconciler,
        router=router,
        config=config,
        logger=logger,
    )
    yield access
    access.close()


def test_no_session_redirects_once_to_sign_in(gate, router, config):
    router.path = "/donations"

    assert gate.start() == AccessState.UNAUTHENTICATED
    gate.tick()
    gate.tick()

    assert router.redirects == [(config.SIGN_IN_PATH, {"from": "/donations"})]
    assert gate.can_render is False


def test_known_profile_renders_immediately(gate, session_manager, reconciler, store, router):
    store.add(complete_profile("user-a"))
    session_manager.set_session(make_session("user-a"))
    reconciler.reconcile(make_session("user-a"))

    assert gate.start() == AccessState.READY
    assert gate.can_render is True
    assert router.redirects == []


def test_session_without_profile_recovers(gate, session_manager, store, router):
    store.add(complete_profile("user-a"))
    store.get_failures = 2
    session_manager.set_session(make_session("user-a"))

    assert gate.start() == AccessState.AUTHENTICATED
    assert gate.tick() == AccessState.RECOVERING
    assert gate.tick() == AccessState.RECOVERING
    assert gate.tick() == AccessState.READY

    assert store.get_calls == 3
    assert router.redirects == []


def test_recovery_provisions_a_missing_row(gate, session_manager, store):
    session_manager.set_session(make_session("user-a"))

    gate.start()
    assert gate.tick() == AccessState.READY
    assert store.insert_calls == 1


def test_bounded_retry_single_redirect(gate, session_manager, store, router, config):
    store.add(complete_profile("user-a"))
    # The fourth read would succeed; the gate must stop at three.
    store.get_failures = 3
    session_manager.set_session(make_session("user-a"))
    router.path = "/profile"

    gate.start()
    states = [gate.tick() for _ in range(6)]

    assert states[:2] == [AccessState.RECOVERING, AccessState.RECOVERING]
    assert states[2:] == [AccessState.UNAUTHENTICATED] * 4
    assert store.get_calls == 3
    assert router.redirects == [(config.SIGN_IN_PATH, {"from": "/profile"})]


def test_sign_out_mid_recovery_is_immediate(gate, session_manager, store, router, config):
    store.add(complete_profile("user-a"))
    store.get_failures = 5
    session_manager.set_session(make_session("user-a"))

    gate.start()
    assert gate.tick() == AccessState.RECOVERING
    session_manager.sign_out()

    assert gate.state == AccessState.UNAUTHENTICATED
    gate.tick()
    gate.tick()
    assert store.get_calls == 1
    assert router.redirects == [(config.SIGN_IN_PATH, {"from": "/dashboard"})]


def test_session_disappearing_between_ticks_is_terminal(gate, session_manager, store, router):
    store.get_failures = 5
    session_manager.set_session(make_session("user-a"))

    gate.start()
    gate.tick()
    session_manager.set_session(None)

    assert gate.tick() == AccessState.UNAUTHENTICATED
    assert store.get_calls == 1
    assert len(router.redirects) == 1


def test_replacement_session_gets_fresh_budget(gate, session_manager, store, router):
    store.add(complete_profile("user-b"))
    store.get_failures = 2
    session_manager.set_session(make_session("user-a"))

    gate.start()
    gate.tick()
    gate.tick()
    assert gate.attempts == 2

    session_manager.set_session(make_session("user-b"))
    gate.on_session_event(SessionEvent(event=SessionEventType.SIGNED_IN, session=make_session("user-b")))

    assert gate.state == AccessState.AUTHENTICATED
    assert gate.attempts == 0
    assert gate.tick() == AccessState.READY
    assert router.redirects == []


def test_same_user_token_refresh_is_ignored(gate, session_manager, reconciler, store):
    store.add(complete_profile("user-a"))
    session = make_session("user-a")
    session_manager.set_session(session)
    reconciler.reconcile(session)
    gate.start()

    gate.on_session_event(SessionEvent(event=SessionEventType.TOKEN_REFRESHED, session=session))

    assert gate.state == AccessState.READY


def test_signed_out_event_after_ready(gate, session_manager, reconciler, store, router, source):
    store.add(complete_profile("user-a"))
    source.session = make_session("user-a")
    session_manager.start()
    gate.start()
    assert gate.can_render

    source.emit(SessionEventType.SIGNED_OUT, None)

    assert gate.state == AccessState.UNAUTHENTICATED
    assert len(router.redirects) == 1


def test_unauthenticated_is_terminal(gate, router):
    gate.start()

    assert TRANSITIONS[AccessState.UNAUTHENTICATED] == frozenset()
    with pytest.raises(InvalidTransitionError):
        gate._transition(AccessState.READY)


def test_illegal_transition_from_initializing():
    assert AccessState.READY not in TRANSITIONS[AccessState.INITIALIZING]
    assert AccessState.RECOVERING not in TRANSITIONS[AccessState.INITIALIZING]


def test_sign_out_during_recovery_attempt_stays_signed_out(
    gate, session_manager, reconciler, store, cache, router, config, monkeypatch
):
    store.add(complete_profile("user-a"))
    store.get_failures = 1
    session_manager.set_session(make_session("user-a"))
    gate.start()
    assert gate.tick() == AccessState.RECOVERING

    reconcile = reconciler.reconcile

    def _sign_out_first(session, force=False):
        # The user signs out between the tick releasing the gate lock and
        # the reconciler being entered.
        session_manager.sign_out()
        return reconcile(session, force)

    monkeypatch.setattr(reconciler, "reconcile", _sign_out_first)

    assert gate.tick() == AccessState.UNAUTHENTICATED
    assert reconciler.active_user_id is None
    assert cache.get(config.PROFILE_CACHE_KEY) is None
    assert store.get_calls == 1
    assert len(router.redirects) == 1


def test_superseded_session_is_not_retried(gate, session_manager, reconciler, store, router, config):
    session_manager.set_session(make_session("user-a"))
    gate.start()
    # The reconciler no longer considers user-a active.
    reconciler.activate(None)

    assert gate.tick() == AccessState.UNAUTHENTICATED
    assert gate.attempts == 1
    assert store.get_calls == 0
    assert router.redirects == [(config.SIGN_IN_PATH, {"from": "/dashboard"})]


def test_superseded_error_from_reconciler_denies_at_once(gate, session_manager, reconciler, router, monkeypatch):
    session_manager.set_session(make_session("user-a"))
    gate.start()

    def _superseded(session, force=False):
        raise SessionAbsentError("superseded", user_id=session.user_id)

    monkeypatch.setattr(reconciler, "reconcile", _superseded)

    assert gate.tick() == AccessState.UNAUTHENTICATED
    assert len(router.redirects) == 1
