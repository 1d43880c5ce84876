"""Authentication utilities."""

import logging
import re
import secrets
from typing import Optional, Tuple

from email_validator import EmailNotValidError, validate_email
from flask import current_app
from limits import parse as parse_rate_limit

from forum.models import db, User, get_user_by_loginname

LOGINNAME_PATTERN = re.compile(r"^[a-zA-Z0-9\-_]{5,20}$")
MIN_PASSWORD_LENGTH = 6
BLOCKED_MESSAGE = "You have been blocked by an administrator."

logger = logging.getLogger("forum.auth")


def validate_loginname(loginname: str) -> bool:
    """Return ``True`` for 5-20 characters of letters, digits, ``-`` or ``_``."""
    return bool(LOGINNAME_PATTERN.fullmatch(loginname or ""))


def is_valid_email(address: str) -> bool:
    """Return True if the email address is syntactically valid."""
    try:
        validate_email(address, check_deliverability=False)
        return True
    except EmailNotValidError:
        return False


def is_valid_password(password: str) -> bool:
    return len(password or "") >= MIN_PASSWORD_LENGTH


def authenticate(identifier: str, password: str) -> Tuple[Optional[User], Optional[str]]:
    """Return the :class:`forum.models.User` matching the provided credentials.

    ``identifier`` may be either a login name or an email address; the
    presence of ``@`` selects the email lookup. Both comparisons are
    case-insensitive.

    Args:
        identifier: Login name or email address submitted by the user.
        password: Plain-text password to validate with the stored hash.

    Returns:
        Tuple of ``(user, error_message)`` where ``user`` is the matching
        :class:`~forum.models.User` on success (``None`` on failure) and
        ``error_message`` describes the reason when authentication fails.
    """

    normalized = (identifier or "").strip().lower()
    if not normalized or not password:
        return None, "Incomplete information."

    if "@" in normalized:
        user = User.query.filter(db.func.lower(User.email) == normalized).first()
    else:
        user = get_user_by_loginname(normalized)
    if not user or not user.check_password(password):
        return None, "Incorrect username or password."
    if not user.is_active:
        return None, "This account has not been activated."
    return user, None


def register_user(
    loginname: str, email: str, password: str, confirm_password: str
) -> Tuple[Optional[User], Optional[str]]:
    """Create a forum account after validating the sign-up form.

    Args:
        loginname: Requested login name, validated by :func:`validate_loginname`.
        email: Contact address, validated by :func:`is_valid_email`.
        password: Plain-text password.
        confirm_password: Repeat of ``password``.

    Returns:
        Tuple whose first element is the created :class:`forum.models.User` on
        success and whose second element is an error message on failure.
    """

    loginname = (loginname or "").strip()
    email = (email or "").strip().lower()

    if not all([loginname, email, password, confirm_password]):
        return None, "Incomplete information."
    if not validate_loginname(loginname):
        return None, "Login names are 5-20 letters, digits, '-' or '_'."
    if not is_valid_email(email):
        return None, "Invalid email address."
    if password != confirm_password:
        return None, "Passwords do not match."
    if not is_valid_password(password):
        return None, f"Passwords need at least {MIN_PASSWORD_LENGTH} characters."

    if get_user_by_loginname(loginname):
        return None, "That login name is already taken."
    if User.query.filter(db.func.lower(User.email) == email).first():
        return None, "That email address is already registered."

    user = User(loginname=loginname, name=loginname, email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    logger.info("registered user %s", loginname)
    return user, None


def provision_user_from_github(
    *,
    github_id: str,
    github_username: str,
    email: str,
    avatar: Optional[str] = None,
    access_token: Optional[str] = None,
) -> User:
    """Create a member for a GitHub identity that has no local account yet.

    Raises:
        ValueError: When the GitHub login name or email already belongs to a
            different local account.

    External Dependencies:
        * Persists data using :data:`forum.models.db.session`.
        * Hashes a random password via :meth:`forum.models.User.set_password`
          to satisfy the non-null ``users.password_hash`` column.
    """

    normalized_email = (email or "").strip().lower()
    if not normalized_email:
        raise ValueError("GitHub did not return an email address.")
    if get_user_by_loginname(github_username):
        raise ValueError(
            "Your GitHub login name is already used by another account. "
            "Sign in with that account and bind GitHub from settings."
        )
    if User.query.filter(db.func.lower(User.email) == normalized_email).first():
        raise ValueError(
            "Your GitHub email is already registered. Sign in with that "
            "account and bind GitHub from settings."
        )

    user = User(
        loginname=github_username,
        name=github_username,
        email=normalized_email,
        avatar=avatar,
        github_id=str(github_id),
        github_username=github_username,
        github_access_token=access_token,
    )
    user.set_password(secrets.token_urlsafe(32))
    db.session.add(user)
    db.session.commit()
    return user


def find_user_by_access_token(token: Optional[str]) -> Optional[User]:
    """Return the member owning API ``token`` or ``None``."""

    candidate = (token or "").strip()
    if not candidate:
        return None
    return User.query.filter_by(access_token=candidate).first()


def is_blocked_request(user: Optional[User], method: str, path: str) -> bool:
    """Return whether ``user`` must be refused for this request.

    Blocked members keep read access; every state-changing request is refused
    except signing out.
    """

    if user is None or not getattr(user, "is_block", False):
        return False
    if path == "/signout":
        return False
    return method.upper() != "GET"


def resolve_rate_limit(config_key: str, default: str) -> str:
    """Return the rate limit configured under ``config_key``.

    The value is checked with :func:`limits.parse` so a typo in the
    environment cannot disable throttling. Invalid or empty values log a
    warning and fall back to ``default``.

    Args:
        config_key: Name of the setting in :data:`flask.current_app.config`.
        default: Limit string such as ``"10 per minute"``.

    Returns:
        A limit string accepted by :mod:`flask_limiter`.
    """

    limit_text = str(current_app.config.get(config_key) or default)
    try:
        parse_rate_limit(limit_text)
    except ValueError:
        logger.warning("Invalid %s %r; using %s", config_key, limit_text, default)
        return default
    return limit_text
