from __future__ import annotations

import pytest

from tests.helpers.fakes import FakeRouter, make_session
from vital.services.route_policy import RoutePolicy
from vital.services.router import Redirect


@pytest.fixture
def policy(config, logger):
    return RoutePolicy(config=config, logger=logger)


@pytest.mark.parametrize(
    "path",
    ["/admin", "/profile", "/profile/edit", "/donations", "/requests/new", "/achievements", "/dashboard"],
)
def test_protected_paths_need_a_session(policy, path):
    assert policy.evaluate(path, None) == Redirect(path="/login", query={"redirect": path})


@pytest.mark.parametrize("path", ["/", "/requests", "/profiles", "/how-it-works", "/complete-registration"])
def test_public_paths_pass_without_session(policy, path):
    assert policy.evaluate(path, None) is None


@pytest.mark.parametrize("path", ["/login", "/register"])
def test_signed_in_users_skip_auth_pages(policy, path):
    assert policy.evaluate(path, make_session("user-a")) == Redirect(path="/dashboard")


def test_signed_in_users_reach_protected_paths(policy):
    assert policy.evaluate("/donations", make_session("user-a")) is None


def test_redirect_applies_to_router():
    router = FakeRouter()
    Redirect(path="/login", query={"redirect": "/admin"}).apply(router)
    Redirect(path="/dashboard").apply(router)

    assert router.redirects == [("/login", {"redirect": "/admin"}), ("/dashboard", None)]
