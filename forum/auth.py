# forum/auth.py
"""Define the authentication blueprint and its user-facing routes.

- ``/signup`` creates a local account.
- ``/signin`` authenticates with a login name or email and starts a session
  via :func:`flask_login.login_user`; the remember cookie keeps members
  signed in across browser restarts.
- ``/signout`` ends the session.
- ``/setting`` edits the profile, changes the password or refreshes the API
  access token.
- ``/auth/github`` and ``/auth/github/callback`` implement GitHub sign-in
  through the Authlib client in :mod:`forum.services.github_client`.
"""

from typing import Optional, Union, cast

from authlib.integrations.base_client.errors import OAuthError
from flask import (
    Blueprint,
    Response,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_limiter.util import get_remote_address
from flask_login import current_user, login_required, login_user, logout_user

from forum import limiter
from forum.models import db, User
from forum.services.auth_utils import (
    authenticate,
    is_valid_email,
    is_valid_password,
    provision_user_from_github,
    register_user,
    resolve_rate_limit,
    MIN_PASSWORD_LENGTH,
)
from forum.services.github_client import (
    fetch_github_profile,
    get_github_client,
    is_github_configured,
)

auth_bp = Blueprint("auth", __name__)


def _remote_limit_scope(identifier: Optional[str]) -> str:
    """Return a limiter key combining the caller's IP and ``identifier``."""

    base_ip = request.remote_addr or get_remote_address()
    if identifier:
        candidate = identifier.strip().lower()
        if candidate:
            return f"{base_ip}:{candidate}"
    return base_ip


def _signin_rate_limit_value() -> str:
    return resolve_rate_limit("AUTH_SIGNIN_RATE_LIMIT", "10 per minute")


def _signin_rate_limit_key() -> str:
    return _remote_limit_scope(request.form.get("name"))


def _signup_rate_limit_value() -> str:
    return resolve_rate_limit("AUTH_SIGNUP_RATE_LIMIT", "5 per minute")


def _safe_next_url(candidate: Optional[str]) -> Optional[str]:
    """Return ``candidate`` when it is a same-site path, otherwise ``None``."""

    if candidate and candidate.startswith("/") and not candidate.startswith("//"):
        return candidate
    return None


@auth_bp.route("/signup", methods=["GET", "POST"])
@limiter.limit(_signup_rate_limit_value, methods=["POST"])
def signup() -> Union[str, Response]:
    """Register a new member.

    Required form fields:
        - loginname
        - email
        - pass
        - re_pass

    Returns:
        Renders ``sign/signup.html`` on GET or validation failure. Redirects
        to ``auth.signin`` on success.
    """
    if request.method == "POST":
        loginname = (request.form.get("loginname") or "").strip()
        email = (request.form.get("email") or "").strip().lower()
        user, error = register_user(
            loginname,
            email,
            request.form.get("pass", ""),
            request.form.get("re_pass", ""),
        )
        if error:
            flash(error, "warning")
            return render_template("sign/signup.html", loginname=loginname, email=email), 422
        flash("Welcome aboard! Please sign in.", "success")
        return redirect(url_for("auth.signin"))
    return render_template("sign/signup.html")


@auth_bp.route("/signin", methods=["GET", "POST"])
@limiter.limit(
    _signin_rate_limit_value, key_func=_signin_rate_limit_key, methods=["POST"]
)
def signin() -> Union[str, Response]:
    """Authenticate a member and start a session.

    Required form fields:
        - name (login name or email)
        - pass

    Returns:
        Renders ``sign/signin.html`` on GET or failed sign-in. Redirects to
        the ``next`` path or the index on success.
    """
    next_url = _safe_next_url(request.values.get("next"))
    if request.method == "POST":
        user, error = authenticate(
            request.form.get("name", ""), request.form.get("pass", "")
        )
        if user:
            login_user(user, remember=True)
            current_app.logger.info("signin successful for %s", user.loginname)
            return redirect(next_url or url_for("web.index"))
        flash(error or "Incorrect username or password.", "danger")
        return render_template("sign/signin.html", next_url=next_url), 403

    return render_template("sign/signin.html", next_url=next_url)


@auth_bp.route("/signout", methods=["POST"])
def signout() -> Response:
    """End the current session and clear the remember cookie."""
    logout_user()
    return redirect(url_for("web.index"))


@auth_bp.route("/setting", methods=["GET", "POST"])
@login_required
def setting() -> Union[str, Response]:
    """Let members maintain their profile, password and API access token.

    The submitted ``action`` selects the operation: ``change_setting``
    (default) updates the profile, ``change_password`` replaces the password
    after checking the old one, and ``refresh_token`` issues a new access
    token for the JSON API.

    Returns:
        Renders ``user/setting.html``; redirects back after a successful POST
        so refreshes do not resubmit form data.
    """

    user = cast(User, current_user._get_current_object())
    if request.method == "POST":
        action = request.form.get("action", "change_setting")
        if action == "refresh_token":
            user.refresh_access_token()
            db.session.commit()
            flash("Your access token has been refreshed.", "success")
            return redirect(url_for("auth.setting"))

        if action == "change_password":
            old_pass = request.form.get("old_pass", "")
            new_pass = request.form.get("new_pass", "")
            if not user.check_password(old_pass):
                flash("The current password is incorrect.", "warning")
            elif not is_valid_password(new_pass):
                flash(
                    f"Passwords need at least {MIN_PASSWORD_LENGTH} characters.",
                    "warning",
                )
            else:
                user.set_password(new_pass)
                db.session.commit()
                flash("Your password has been changed.", "success")
                return redirect(url_for("auth.setting"))
            return render_template("user/setting.html", user=user), 422

        email = (request.form.get("email") or "").strip().lower()
        if not is_valid_email(email):
            flash("Enter a valid email address.", "warning")
            return render_template("user/setting.html", user=user), 422
        existing = User.query.filter(
            db.func.lower(User.email) == email, User.id != user.id
        ).first()
        if existing:
            flash("Another account already uses that email address.", "warning")
            return render_template("user/setting.html", user=user), 422

        user.email = email
        user.name = (request.form.get("name") or "").strip() or user.loginname
        user.url = (request.form.get("url") or "").strip() or None
        user.location = (request.form.get("location") or "").strip() or None
        user.signature = (request.form.get("signature") or "").strip() or None
        db.session.commit()
        flash("Your profile has been saved.", "success")
        return redirect(url_for("auth.setting"))

    return render_template("user/setting.html", user=user)


@auth_bp.route("/auth/github")
def github_login() -> Response:
    """Start the GitHub OAuth flow."""

    client = get_github_client()
    if client is None:
        flash("GitHub sign-in is not available.", "warning")
        return redirect(url_for("auth.signin"))

    redirect_uri = current_app.config.get("GITHUB_CALLBACK_URL") or url_for(
        "auth.github_callback", _external=True
    )
    try:
        return client.authorize_redirect(redirect_uri)
    except OAuthError as exc:
        current_app.logger.exception("GitHub authorization redirect failed: %s", exc)
        flash("Failed to contact GitHub. Please try again.", "danger")
        return redirect(url_for("auth.signin"))


@auth_bp.route("/auth/github/callback")
def github_callback() -> Response:
    """Complete GitHub sign-in.

    A known ``github_id`` signs in its member after refreshing the stored
    GitHub details. A signed-in member without a GitHub link gets this
    account bound; an existing link is never replaced. Otherwise a new member is created from the GitHub profile;
    login name or email collisions send the visitor back to ``/signin``.
    """

    if not is_github_configured():
        flash("GitHub sign-in is not available.", "warning")
        return redirect(url_for("auth.signin"))

    client = get_github_client()
    if client is None:
        flash("GitHub sign-in is temporarily unavailable.", "danger")
        return redirect(url_for("auth.signin"))

    try:
        token = client.authorize_access_token()
        profile = fetch_github_profile(client, token)
    except OAuthError as exc:
        current_app.logger.exception("GitHub token exchange failed: %s", exc)
        flash("Could not complete GitHub sign-in. Please try again.", "danger")
        return redirect(url_for("auth.signin"))
    except Exception as exc:
        current_app.logger.exception("GitHub profile request failed: %s", exc)
        flash("GitHub sign-in is unavailable right now.", "danger")
        return redirect(url_for("auth.signin"))

    if not profile.get("id") or not profile.get("login"):
        flash("GitHub returned an incomplete profile.", "danger")
        return redirect(url_for("auth.signin"))

    user = User.query.filter_by(github_id=profile["id"]).first()
    if user is None and current_user.is_authenticated:
        member = cast(User, current_user._get_current_object())
        if member.github_id:
            flash("Your account is already linked to another GitHub account.", "warning")
            return redirect(url_for("auth.setting"))
        user = member
        user.github_id = profile["id"]

    if user is not None:
        user.github_username = profile["login"]
        user.github_access_token = profile.get("access_token")
        if profile.get("avatar_url"):
            user.avatar = profile["avatar_url"]
        db.session.commit()
    else:
        try:
            user = provision_user_from_github(
                github_id=profile["id"],
                github_username=profile["login"],
                email=profile.get("email", ""),
                avatar=profile.get("avatar_url"),
                access_token=profile.get("access_token"),
            )
        except ValueError as exc:
            flash(str(exc), "danger")
            return redirect(url_for("auth.signin"))

    if not user.is_active:
        flash("This account is disabled.", "danger")
        return redirect(url_for("auth.signin"))

    login_user(user, remember=True)
    return redirect(url_for("web.index"))
