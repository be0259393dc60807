from __future__ import annotations

import pytest
from pydantic import ValidationError

from tests.helpers.fakes import complete_profile, make_session
from vital.models.cache_models import PendingRegistration
from vital.models.errors import SessionAbsentError
from vital.models.profile import Profile
from vital.models.registration import RegistrationForm
from vital.services.registration_completion import RegistrationCompletionService


@pytest.fixture
def completion(session_manager, store, cache, config, logger):
    return RegistrationCompletionService(
        auth=session_manager,
        store=store,
        cache=cache,
        config=config,
        logger=logger,
    )


def _form(**overrides):
    fields = {
        "full_name": "Nusrat Jahan",
        "phone": "+880 1711-222333",
        "city": "Chattogram",
        "district": "Chattogram",
        "blood_group": "O+",
    }
    fields.update(overrides)
    return RegistrationForm(**fields)


def _leave_pending(cache, config, user_id="user-a"):
    cache.set(
        config.PENDING_REGISTRATION_KEY,
        PendingRegistration(user_id=user_id, email=f"{user_id}@example.com", phone="01711").to_blob(),
    )


def test_load_pending_for_same_user(completion, cache, config):
    _leave_pending(cache, config)

    pending = completion.load_pending(make_session("user-a"))

    assert pending.user_id == "user-a"
    assert pending.phone == "01711"


def test_load_pending_ignores_other_user(completion, cache, config):
    _leave_pending(cache, config, user_id="user-b")
    assert completion.load_pending(make_session("user-a")) is None


def test_load_pending_ignores_malformed_payload(completion, cache, config):
    cache.set(config.PENDING_REGISTRATION_KEY, {"email": "no-user-id@example.com"})
    assert completion.load_pending(make_session("user-a")) is None


def test_resolve_entry_for_complete_profile(completion, store, config):
    store.add(complete_profile("user-a"))
    assert completion.resolve_entry(make_session("user-a")) == config.DASHBOARD_PATH


def test_resolve_entry_with_pending_payload(completion, store, cache, config):
    store.add(Profile(id="user-a"))
    _leave_pending(cache, config)
    assert completion.resolve_entry(make_session("user-a")) == config.COMPLETION_PATH


def test_resolve_entry_without_pending_payload(completion, config):
    assert completion.resolve_entry(make_session("user-a")) == config.REGISTER_PATH


def test_resolve_entry_on_store_failure_never_reaches_dashboard(completion, store, cache, config):
    store.add(complete_profile("user-a"))
    store.get_failures = 1
    _leave_pending(cache, config)
    assert completion.resolve_entry(make_session("user-a")) == config.COMPLETION_PATH


def test_complete_updates_profile_and_clears_pending(completion, session_manager, store, cache, config):
    session = make_session("user-a")
    store.add(Profile(id="user-a", email="user-a@example.com"))
    session_manager.set_session(session)
    _leave_pending(cache, config)

    profile = completion.complete(session, _form())

    assert profile.is_complete()
    assert profile.blood_group == "O+"
    assert store.rows["user-a"].city == "Chattogram"
    assert cache.get(config.PENDING_REGISTRATION_KEY) is None


def test_complete_rejects_replaced_session(completion, session_manager, store):
    store.add(Profile(id="user-a"))
    session_manager.set_session(make_session("user-b"))

    with pytest.raises(SessionAbsentError):
        completion.complete(make_session("user-a"), _form())
    assert store.update_calls == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"full_name": "   "},
        {"city": ""},
        {"phone": ""},
        {"phone": "call me"},
        {"phone": "12345"},
        {"blood_group": "Z+"},
    ],
)
def test_form_rejects_invalid_input(overrides):
    with pytest.raises(ValidationError):
        _form(**overrides)


def test_form_strips_and_drops_blank_optionals():
    form = _form(full_name="  Nusrat Jahan ", present_zip="", blood_group="")

    update = form.to_update()

    assert update["full_name"] == "Nusrat Jahan"
    assert "present_zip" not in update
    assert "blood_group" not in update
