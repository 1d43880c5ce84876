from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Iterator

import pytest
from flask import Flask
from flask.testing import FlaskClient

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT))

from config import Config  # noqa: E402
from forum import create_app  # noqa: E402
from forum.models import User, db  # noqa: E402


class ForumTestConfig(Config):
    """Configuration overrides for an isolated in-memory forum."""

    TESTING = True
    DEBUG = False
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}
    SESSION_TYPE = None
    WTF_CSRF_ENABLED = False
    STARTUP_DB_CHECKS = False
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = "memory://"
    MINI_ASSETS = False
    LOG_DIR = None
    CONFIG_ERRORS: list = []
    ADMINS = frozenset({"moderator"})
    GITHUB_CLIENT_ID = None
    GITHUB_CLIENT_SECRET = None


@pytest.fixture()
def app(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Flask]:
    """Create a forum app backed by an in-memory SQLite database.

    The schema is created with :meth:`flask_sqlalchemy.SQLAlchemy.create_all`
    and dropped after the test. No application context stays pushed so each
    test request gets a fresh :data:`flask.g`.

    External dependencies:
        * Calls :func:`forum.create_app`.
        * Clears ``ENVIRONMENT``/``FLASK_ENV`` so startup stays in
          development mode.
    """

    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.delenv("FLASK_ENV", raising=False)
    monkeypatch.delenv("MIGRATE_ON_STARTUP", raising=False)
    monkeypatch.delenv("STARTUP_DB_CHECKS", raising=False)

    class _Config(ForumTestConfig):
        UPLOAD_FOLDER = str(tmp_path / "upload")

    app = create_app(_Config)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app: Flask) -> FlaskClient:
    return app.test_client()


@pytest.fixture()
def make_user(app: Flask) -> Callable[..., User]:
    """Return a factory that persists members.

    The returned :class:`~forum.models.User` is detached with its columns
    loaded, so ``id``, ``loginname`` and ``access_token`` stay readable.
    """

    def _make_user(
        loginname: str = "alice01",
        password: str = "secret-pass",
        email: str | None = None,
        **fields: object,
    ) -> User:
        with app.app_context():
            user = User(
                loginname=loginname,
                name=loginname,
                email=email or f"{loginname}@example.com",
                **fields,
            )
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            db.session.refresh(user)
            db.session.expunge(user)
            return user

    return _make_user


@pytest.fixture()
def sign_in() -> Callable[..., object]:
    """Return a helper that signs a member in through the ``/signin`` form."""

    def _sign_in(client: FlaskClient, loginname: str, password: str = "secret-pass"):
        return client.post("/signin", data={"name": loginname, "pass": password})

    return _sign_in
