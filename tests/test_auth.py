"""Tests for sign-up, sign-in, settings and GitHub sign-in routes."""

from __future__ import annotations

import importlib
from typing import Any, Dict

import pytest
from flask import Flask
from flask.testing import FlaskClient

import config
from forum import auth as auth_module
from forum.models import Topic, User, db
from forum.services.auth_utils import (
    authenticate,
    is_blocked_request,
    register_user,
    resolve_rate_limit,
)


def _signup_form(**overrides: str) -> Dict[str, str]:
    form = {
        "loginname": "newbie01",
        "email": "newbie@example.com",
        "pass": "secret-pass",
        "re_pass": "secret-pass",
    }
    form.update(overrides)
    return form


def test_signup_creates_member(app: Flask, client: FlaskClient) -> None:
    response = client.post("/signup", data=_signup_form())

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/signin")
    with app.app_context():
        user = User.query.filter_by(loginname="newbie01").one()
        assert user.check_password("secret-pass")
        assert user.access_token


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"email": ""}, "Incomplete information."),
        ({"loginname": "ab"}, "Login names are 5-20 letters"),
        ({"email": "not-an-email"}, "Invalid email address."),
        ({"re_pass": "different"}, "Passwords do not match."),
        ({"pass": "short", "re_pass": "short"}, "Passwords need at least 6 characters."),
    ],
)
def test_signup_validation_messages(client: FlaskClient, overrides: Dict[str, str], message: str) -> None:
    response = client.post("/signup", data=_signup_form(**overrides))

    assert response.status_code == 422
    assert message in response.get_data(as_text=True)


def test_signup_refuses_duplicates(app: Flask, make_user) -> None:
    make_user("newbie01", email="taken@example.com")

    with app.app_context():
        assert register_user("NEWBIE01", "x@example.com", "secret-pass", "secret-pass") == (
            None,
            "That login name is already taken.",
        )
        assert register_user("other01", "TAKEN@example.com", "secret-pass", "secret-pass") == (
            None,
            "That email address is already registered.",
        )


def test_authenticate_accepts_loginname_or_email(app: Flask, make_user) -> None:
    make_user()

    with app.app_context():
        by_name, _ = authenticate("Alice01", "secret-pass")
        by_email, _ = authenticate("alice01@example.com", "secret-pass")
        assert by_name is not None and by_email is not None
        assert authenticate("alice01", "wrong") == (None, "Incorrect username or password.")
        assert authenticate("", "x") == (None, "Incomplete information.")


def test_authenticate_refuses_inactive_accounts(app: Flask, make_user) -> None:
    make_user(active=False)

    with app.app_context():
        assert authenticate("alice01", "secret-pass") == (
            None,
            "This account has not been activated.",
        )


def test_signin_and_signout(client: FlaskClient, make_user, sign_in) -> None:
    make_user()

    response = sign_in(client, "alice01")
    assert response.status_code == 302
    assert "alice01" in client.get("/").get_data(as_text=True)
    assert client.get("/setting").status_code == 200

    client.post("/signout")
    assert client.get("/setting").status_code == 302


def test_signin_failure_is_forbidden(client: FlaskClient, make_user, sign_in) -> None:
    make_user()

    response = sign_in(client, "alice01", "wrong-pass")

    assert response.status_code == 403
    assert "Incorrect username or password." in response.get_data(as_text=True)


def test_signin_honours_local_next_only(client: FlaskClient, make_user) -> None:
    make_user()

    local = client.post(
        "/signin", data={"name": "alice01", "pass": "secret-pass", "next": "/about"}
    )
    assert local.headers["Location"].endswith("/about")

    client.post("/signout")
    foreign = client.post(
        "/signin",
        data={"name": "alice01", "pass": "secret-pass", "next": "//evil.example.com"},
    )
    assert "evil.example.com" not in foreign.headers["Location"]


def test_remember_cookie_uses_auth_cookie_name(client: FlaskClient, make_user, sign_in) -> None:
    make_user()

    response = sign_in(client, "alice01")

    cookies = response.headers.getlist("Set-Cookie")
    assert any(cookie.startswith("forum_auth=") for cookie in cookies)


def test_setting_updates_profile(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    make_user()
    sign_in(client, "alice01")

    response = client.post(
        "/setting",
        data={
            "email": "alice.new@example.com",
            "name": "Alice",
            "url": "https://alice.example.com",
            "location": "Berlin",
            "signature": "Hello",
        },
    )

    assert response.status_code == 302
    with app.app_context():
        user = User.query.filter_by(loginname="alice01").one()
        assert user.email == "alice.new@example.com"
        assert user.location == "Berlin"


def test_setting_changes_password(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    make_user()
    sign_in(client, "alice01")

    wrong = client.post(
        "/setting",
        data={"action": "change_password", "old_pass": "nope", "new_pass": "brand-new"},
    )
    assert wrong.status_code == 422

    ok = client.post(
        "/setting",
        data={"action": "change_password", "old_pass": "secret-pass", "new_pass": "brand-new"},
    )
    assert ok.status_code == 302
    with app.app_context():
        assert User.query.filter_by(loginname="alice01").one().check_password("brand-new")


def test_setting_refreshes_access_token(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    user = make_user()
    sign_in(client, "alice01")

    client.post("/setting", data={"action": "refresh_token"})

    with app.app_context():
        assert db.session.get(User, user.id).access_token != user.access_token


def test_is_blocked_request_allows_reads_and_signout() -> None:
    blocked = User(loginname="blocked1", is_block=True)
    member = User(loginname="member01", is_block=False)

    assert is_blocked_request(blocked, "POST", "/topic/create")
    assert not is_blocked_request(blocked, "GET", "/topic/1")
    assert not is_blocked_request(blocked, "POST", "/signout")
    assert not is_blocked_request(member, "POST", "/topic/create")
    assert not is_blocked_request(None, "POST", "/topic/create")


class _FakeGithubClient:
    """Stand-in for the Authlib GitHub client used by the callback route."""

    def authorize_access_token(self) -> Dict[str, Any]:
        return {"access_token": "gh-token"}


def _patch_github(monkeypatch: pytest.MonkeyPatch, profile: Dict[str, Any]) -> None:
    monkeypatch.setattr(auth_module, "is_github_configured", lambda app=None: True)
    monkeypatch.setattr(auth_module, "get_github_client", lambda: _FakeGithubClient())
    monkeypatch.setattr(auth_module, "fetch_github_profile", lambda client, token: profile)


def _github_profile(**overrides: Any) -> Dict[str, Any]:
    profile = {
        "id": "4242",
        "login": "octocat1",
        "email": "octo@example.com",
        "avatar_url": "https://avatars.githubusercontent.com/u/4242",
        "access_token": "gh-token",
    }
    profile.update(overrides)
    return profile


def test_github_callback_provisions_new_member(app: Flask, client: FlaskClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_github(monkeypatch, _github_profile())

    response = client.get("/auth/github/callback")

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/")
    with app.app_context():
        user = User.query.filter_by(github_id="4242").one()
        assert user.loginname == "octocat1"
        assert user.avatar_url == "https://avatars.githubusercontent.com/u/4242"
    assert "octocat1" in client.get("/").get_data(as_text=True)


def test_github_callback_signs_in_linked_member(app: Flask, client: FlaskClient, make_user, monkeypatch: pytest.MonkeyPatch) -> None:
    make_user(github_id="4242")
    _patch_github(monkeypatch, _github_profile(login="renamed1"))

    client.get("/auth/github/callback")

    with app.app_context():
        user = User.query.filter_by(loginname="alice01").one()
        assert user.github_username == "renamed1"
        assert user.github_access_token == "gh-token"
    assert "alice01" in client.get("/").get_data(as_text=True)


def test_github_callback_binds_signed_in_member(app: Flask, client: FlaskClient, make_user, sign_in, monkeypatch: pytest.MonkeyPatch) -> None:
    make_user()
    sign_in(client, "alice01")
    _patch_github(monkeypatch, _github_profile())

    client.get("/auth/github/callback")

    with app.app_context():
        assert User.query.filter_by(loginname="alice01").one().github_id == "4242"
        assert User.query.count() == 1


def test_github_callback_keeps_existing_link(app: Flask, client: FlaskClient, make_user, sign_in, monkeypatch: pytest.MonkeyPatch) -> None:
    """A member linked to one GitHub account cannot be rebound to another."""

    make_user(github_id="1", github_username="original")
    sign_in(client, "alice01")
    _patch_github(monkeypatch, _github_profile())

    response = client.get("/auth/github/callback")

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/setting")
    with app.app_context():
        user = User.query.filter_by(loginname="alice01").one()
        assert user.github_id == "1"
        assert user.github_username == "original"
        assert User.query.filter_by(github_id="4242").first() is None
    assert "already linked" in client.get("/setting").get_data(as_text=True)


def test_github_callback_reports_collisions(app: Flask, client: FlaskClient, make_user, monkeypatch: pytest.MonkeyPatch) -> None:
    make_user("octocat1")
    _patch_github(monkeypatch, _github_profile())

    response = client.get("/auth/github/callback")

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/signin")
    with app.app_context():
        assert User.query.filter_by(github_id="4242").first() is None


def test_github_login_without_configuration_redirects(client: FlaskClient) -> None:
    response = client.get("/auth/github")

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/signin")


def test_self_registered_admin_name_gets_no_moderation_rights(
    app: Flask, client: FlaskClient, make_user, sign_in, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Without ``ADMINS`` configured, signing up as ``admin`` grants nothing."""

    monkeypatch.delenv("ADMINS", raising=False)
    app.config["ADMINS"] = importlib.reload(config).Config.ADMINS
    author = make_user("author01")
    with app.app_context():
        topic = Topic(title="Someone else's topic", content="body", tab="share", author_id=author.id)
        db.session.add(topic)
        db.session.commit()
        topic_id = topic.id

    client.post(
        "/signup",
        data=_signup_form(loginname="admin", email="admin@example.com"),
    )
    sign_in(client, "admin")

    with app.app_context():
        assert User.query.filter_by(loginname="admin").one().is_admin is False
    assert client.post(f"/topic/{topic_id}/top").status_code == 403
    assert client.post(f"/topic/{topic_id}/delete").status_code == 403


@pytest.mark.parametrize(
    ("configured", "expected"),
    [
        ("3 per hour", "3 per hour"),
        ("", "10 per minute"),
        ("lots per fortnight", "10 per minute"),
    ],
)
def test_rate_limit_settings_are_validated(
    app: Flask, caplog: pytest.LogCaptureFixture, configured: str, expected: str
) -> None:
    app.config["AUTH_SIGNIN_RATE_LIMIT"] = configured

    with app.app_context(), caplog.at_level("WARNING", logger="forum.auth"):
        assert resolve_rate_limit("AUTH_SIGNIN_RATE_LIMIT", "10 per minute") == expected
    assert ("Invalid AUTH_SIGNIN_RATE_LIMIT" in caplog.text) is (configured == "lots per fortnight")
