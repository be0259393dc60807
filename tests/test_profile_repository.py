from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from tests.helpers.fakes import complete_profile
from vital.models.errors import StoreConflictError, StoreError
from vital.models.profile import Profile
from vital.repositories.profile_repository import ProfileRepository, ProfileStore


class _PostgrestError(Exception):
    """Shaped like postgrest's APIError: a dict payload plus ``.code``."""

    def __init__(self, payload):
        super().__init__(payload)
        self.code = payload.get("code")


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def repo(client, logger):
    db = SimpleNamespace(supabase=client)
    return ProfileRepository(db=db, logger=logger, table="profiles")


def _select_chain(client):
    return client.table.return_value.select.return_value.eq.return_value.maybe_single.return_value.execute


def test_repository_satisfies_protocol(repo):
    assert isinstance(repo, ProfileStore)


def test_get_by_id_returns_profile(repo, client):
    _select_chain(client).return_value = SimpleNamespace(
        data={"id": "user-a", "email": "a@example.com", "blood_group": "", "location": "ignored"}
    )

    profile = repo.get_by_id("user-a")

    assert profile.id == "user-a"
    assert profile.blood_group is None
    client.table.assert_called_with("profiles")


@pytest.mark.parametrize("response", [None, SimpleNamespace(data=None)])
def test_get_by_id_missing_row(repo, client, response):
    _select_chain(client).return_value = response
    assert repo.get_by_id("user-a") is None


def test_get_by_id_network_error_is_store_error(repo, client):
    _select_chain(client).side_effect = ConnectionError("timed out")

    with pytest.raises(StoreError) as excinfo:
        repo.get_by_id("user-a")
    assert not isinstance(excinfo.value, StoreConflictError)


def test_get_by_id_malformed_row_is_store_error(repo, client):
    _select_chain(client).return_value = SimpleNamespace(data={"id": "user-a", "is_donor": "maybe"})

    with pytest.raises(StoreError):
        repo.get_by_id("user-a")


def test_insert_sends_payload_without_timestamps(repo, client):
    insert = client.table.return_value.insert
    insert.return_value.execute.return_value = SimpleNamespace(data=[{"id": "user-a"}])

    created = repo.insert(Profile(id="user-a", email="a@example.com", full_name="a"))

    payload = insert.call_args.args[0]
    assert payload["id"] == "user-a"
    assert "created_at" not in payload
    assert created.id == "user-a"


def test_insert_without_representation_returns_input(repo, client):
    client.table.return_value.insert.return_value.execute.return_value = SimpleNamespace(data=[])
    profile = Profile(id="user-a")

    assert repo.insert(profile) is profile


@pytest.mark.parametrize(
    "error",
    [
        _PostgrestError({"code": "23505", "message": "duplicate key value"}),
        Exception({"code": "23505", "message": "duplicate key value"}),
    ],
)
def test_unique_violation_is_conflict(repo, client, error):
    client.table.return_value.insert.return_value.execute.side_effect = error

    with pytest.raises(StoreConflictError):
        repo.insert(Profile(id="user-a"))


def test_other_insert_errors_are_store_errors(repo, client):
    client.table.return_value.insert.return_value.execute.side_effect = _PostgrestError(
        {"code": "42501", "message": "permission denied"}
    )

    with pytest.raises(StoreError) as excinfo:
        repo.insert(Profile(id="user-a"))
    assert not isinstance(excinfo.value, StoreConflictError)


def test_update_returns_stored_row(repo, client):
    row = complete_profile("user-a").model_dump(mode="json")
    update = client.table.return_value.update
    update.return_value.eq.return_value.execute.return_value = SimpleNamespace(data=[row])

    profile = repo.update("user-a", {"city": "Dhaka"})

    update.assert_called_with({"city": "Dhaka"})
    assert profile.is_complete()


def test_update_matching_no_row(repo, client):
    client.table.return_value.update.return_value.eq.return_value.execute.return_value = SimpleNamespace(data=[])

    with pytest.raises(StoreError):
        repo.update("user-a", {"city": "Dhaka"})


def test_offline_client_is_store_error(logger):
    class _OfflineDb:
        @property
        def supabase(self):
            raise RuntimeError("Supabase client is not initialised.")

    repo = ProfileRepository(db=_OfflineDb(), logger=logger)

    with pytest.raises(StoreError):
        repo.get_by_id("user-a")
