"""Centralise GitHub OAuth client setup for the Flask application.

The module exposes a reusable :class:`authlib.integrations.flask_client.OAuth`
registry so the auth blueprint can obtain a configured GitHub client during
requests. Configuration is driven by :class:`config.Config` values which keeps
client secrets out of source control.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from authlib.integrations.flask_client import OAuth
from flask import Flask, current_app


oauth: OAuth = OAuth()

GITHUB_API_BASE_URL = "https://api.github.com/"
GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_SCOPE = "user:email"


def _configuration_complete(config: Dict[str, Any]) -> bool:
    """Return ``True`` when the GitHub client id and secret are present."""

    return all(config.get(key) for key in ("GITHUB_CLIENT_ID", "GITHUB_CLIENT_SECRET"))


def init_github_oauth(app: Flask) -> None:
    """Initialise the global Authlib OAuth registry with the GitHub client.

    Args:
        app: Active :class:`~flask.Flask` application instance created by the
            factory in :mod:`forum`.

    When the client id or secret is missing the function logs a concise
    message and returns so deployments without GitHub sign-in keep working.
    Registration failures are logged and leave the client unregistered.
    """

    app.config.setdefault("GITHUB_CLIENT_REGISTERED", False)
    oauth.init_app(app)

    if not _configuration_complete(app.config):
        app.logger.info("Skipping GitHub OAuth registration; configuration incomplete.")
        return

    try:
        oauth.register(
            name="github",
            client_id=app.config["GITHUB_CLIENT_ID"],
            client_secret=app.config["GITHUB_CLIENT_SECRET"],
            access_token_url=GITHUB_ACCESS_TOKEN_URL,
            authorize_url=GITHUB_AUTHORIZE_URL,
            api_base_url=GITHUB_API_BASE_URL,
            client_kwargs={"scope": GITHUB_SCOPE},
        )
    except Exception:  # pragma: no cover - depends on Authlib internals
        logging.getLogger("forum.oauth").exception("Failed to register GitHub client")
        app.config["GITHUB_CLIENT_REGISTERED"] = False
    else:
        app.config["GITHUB_CLIENT_REGISTERED"] = True


def is_github_configured(app: Optional[Flask] = None) -> bool:
    """Return ``True`` when the GitHub client is ready for use."""

    target_app = app or current_app
    try:
        config = target_app.config  # type: ignore[assignment]
    except RuntimeError:
        return False

    return bool(_configuration_complete(config) and config.get("GITHUB_CLIENT_REGISTERED"))


def get_github_client() -> Optional[Any]:
    """Return the registered Authlib remote application for GitHub."""

    if not is_github_configured():
        return None

    try:
        return oauth.create_client("github")
    except Exception:  # pragma: no cover - depends on Authlib internals
        logging.getLogger("forum.oauth").exception("Failed to create GitHub client")
        return None


def fetch_github_profile(client: Any, token: Dict[str, Any]) -> Dict[str, Any]:
    """Return the GitHub profile for ``token`` with a usable email address.

    GitHub omits ``email`` from ``/user`` when the address is private, so the
    primary verified address from ``/user/emails`` is used instead.

    Returns:
        Mapping with ``id``, ``login``, ``email``, ``avatar_url`` and
        ``access_token`` keys.
    """

    response = client.get("user", token=token)
    response.raise_for_status()
    profile = response.json()

    email = profile.get("email")
    if not email:
        emails_response = client.get("user/emails", token=token)
        if emails_response.ok:
            entries = emails_response.json() or []
            primary = next(
                (e for e in entries if e.get("primary") and e.get("verified")),
                None,
            )
            if primary is None and entries:
                primary = entries[0]
            email = (primary or {}).get("email")

    return {
        "id": str(profile.get("id", "")),
        "login": profile.get("login") or "",
        "email": (email or "").strip().lower(),
        "avatar_url": profile.get("avatar_url"),
        "access_token": token.get("access_token"),
    }
