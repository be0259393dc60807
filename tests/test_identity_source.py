from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from vital.models.auth_models import AuthErrorCode
from vital.services.identity_source import (
    IdentitySource,
    SupabaseIdentitySource,
    classify_auth_error,
    session_from_supabase,
)


def _raw_session(user_id="user-a", email="a@example.com", **metadata):
    user = SimpleNamespace(id=user_id, email=email, user_metadata=metadata)
    return SimpleNamespace(user=user, access_token="at", refresh_token="rt", expires_at=None)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def source(client, logger):
    return SupabaseIdentitySource(db=SimpleNamespace(supabase=client), logger=logger)


def test_adapter_satisfies_protocol(source):
    assert isinstance(source, IdentitySource)


def test_session_conversion_needs_a_user_id():
    assert session_from_supabase(None) is None
    assert session_from_supabase(SimpleNamespace(user=None)) is None
    session = session_from_supabase(_raw_session(full_name="Karim"))
    assert session.user_id == "user-a"
    assert session.user_metadata == {"full_name": "Karim"}


def test_sign_in_returns_session(source, client):
    client.auth.sign_in_with_password.return_value = SimpleNamespace(session=_raw_session())

    result = source.sign_in_with_password("a@example.com", "pw123456")

    assert result.success
    assert result.session.user_id == "user-a"
    client.auth.sign_in_with_password.assert_called_once_with(
        {"email": "a@example.com", "password": "pw123456"}
    )


def test_sign_in_error_is_classified(source, client):
    client.auth.sign_in_with_password.side_effect = Exception("Invalid login credentials")

    result = source.sign_in_with_password("a@example.com", "nope")

    assert result.success is False
    assert result.error_code == AuthErrorCode.INVALID_CREDENTIALS


def test_sign_up_sends_metadata_and_flags_confirmation(source, client):
    client.auth.sign_up.return_value = SimpleNamespace(session=None, user=SimpleNamespace(id="user-a"))

    result = source.sign_up("a@example.com", "pw123456", {"full_name": "Karim"})

    assert result.success and result.needs_confirmation
    payload = client.auth.sign_up.call_args.args[0]
    assert payload["options"] == {"data": {"full_name": "Karim"}}


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (Exception("Email not confirmed"), AuthErrorCode.EMAIL_NOT_CONFIRMED),
        (Exception("User already registered"), AuthErrorCode.EMAIL_ALREADY_EXISTS),
        (Exception("Password should be at least 6 characters"), AuthErrorCode.VALIDATION_ERROR),
        (Exception("email rate limit exceeded"), AuthErrorCode.RATE_LIMITED),
        (ConnectionError("reset"), AuthErrorCode.NETWORK_ERROR),
        (RuntimeError("Supabase client is not initialised"), AuthErrorCode.NETWORK_ERROR),
        (Exception("teapot"), AuthErrorCode.UNKNOWN_ERROR),
    ],
)
def test_classify_auth_error(error, code):
    result = classify_auth_error(error)
    assert result.error_code == code
    assert result.error_message
