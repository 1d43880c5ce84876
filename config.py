import logging
import os
import re
from pathlib import Path
from secrets import token_urlsafe
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import quote_plus, urlparse

from sqlalchemy.engine import make_url

from server_config import resolve_debug_flag, resolve_port

# Capture configuration errors so the application can start in a safe
# maintenance mode instead of crashing during import time.
_CONFIG_ERRORS: List[str] = []

PROJECT_ROOT = Path(__file__).resolve().parent

DEFAULT_TABS: Tuple[Tuple[str, str], ...] = (
    ("share", "Share"),
    ("ask", "Q&A"),
    ("job", "Jobs"),
    ("dev", "Testing"),
)

DEFAULT_PROXY_ALLOWED_HOSTS: Tuple[str, ...] = (
    "avatars.githubusercontent.com",
    "www.gravatar.com",
    "gravatar.com",
)

_SIZE_UNITS = {
    "b": 1,
    "kb": 1 << 10,
    "mb": 1 << 20,
    "gb": 1 << 30,
    "tb": 1 << 40,
}
_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb|tb)?\s*$", re.IGNORECASE)


def _record_startup_error(message: str) -> None:
    """Record a configuration error that should block normal startup.

    Args:
        message: Human-readable description of the configuration failure.

    Returns:
        ``None``. Adds the message to the module-level error list and logs it.

    External Dependencies:
        Logs via :mod:`logging` to the ``forum.config`` logger.
    """

    logging.getLogger("forum.config").error(message)
    _CONFIG_ERRORS.append(message)


def _is_truthy_env(var_name: str, default: str = "false") -> bool:
    return os.getenv(var_name, default).strip().lower() in {
        "true",
        "1",
        "yes",
        "y",
        "on",
    }


def _is_production_environment() -> bool:
    """Return ``True`` when the configured runtime environment is production.

    The helper checks ``ENVIRONMENT`` first and then ``FLASK_ENV``. It treats
    ``production``, ``prod``, and ``live`` as production values after
    lowercasing the input.

    External Dependencies:
        Calls :func:`os.getenv` to read ``ENVIRONMENT`` and ``FLASK_ENV``.
    """

    raw_environment = os.getenv("ENVIRONMENT") or os.getenv("FLASK_ENV") or ""
    normalized = raw_environment.strip().lower()
    return normalized in {"production", "prod", "live"}


def parse_size(value: Union[str, int, None], default: int) -> int:
    """Return a byte count parsed from a human readable size string.

    Args:
        value: Raw size such as ``"1mb"``, ``"512KB"`` or ``2048``. Bare
            numbers are interpreted as bytes.
        default: Fallback byte count when ``value`` is empty or unparseable.

    Returns:
        int: Number of bytes represented by ``value``.
    """

    if value is None:
        return default
    if isinstance(value, int):
        return value if value >= 0 else default
    match = _SIZE_PATTERN.match(str(value))
    if not match:
        logging.getLogger("forum.config").warning(
            "Invalid size value %r; falling back to %s bytes.", value, default
        )
        return default
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[(unit or "b").lower()])


def _resolve_secret_key() -> Tuple[str, bool]:
    """Return the session secret and whether it was generated on the fly.

    Returns:
        Tuple[str, bool]: Configured ``SECRET_KEY`` (or ``SESSION_SECRET``)
        value and ``False``, or a generated token and ``True``. In production a
        missing key is recorded as a startup error so the app runs in
        maintenance mode.

    External Dependencies:
        Calls :func:`os.getenv` and :func:`secrets.token_urlsafe`.
    """

    configured = os.getenv("SECRET_KEY") or os.getenv("SESSION_SECRET")
    if configured:
        return configured, False

    if _is_production_environment():
        _record_startup_error(
            "SECRET_KEY must be set when ENVIRONMENT or FLASK_ENV indicates "
            "production."
        )
        logging.getLogger("forum.config").warning(
            "SECRET_KEY is missing in production; generated a temporary key "
            "so the app can start in maintenance mode."
        )
        return token_urlsafe(32), True

    logging.getLogger("forum.config").warning(
        "SECRET_KEY environment variable is not set; generated a one-time key."
    )
    return token_urlsafe(32), True


def _get_int_from_env(var_name: str, default: int) -> int:
    """Return an integer from the environment, falling back to a default.

    Args:
        var_name: Environment variable name to read.
        default: Fallback integer when the environment value is missing
            or invalid.

    Returns:
        int: Parsed integer value or the provided fallback.
    """

    raw_value = os.getenv(var_name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except ValueError:
        logging.getLogger("forum.config").warning(
            "Invalid %s value %r; falling back to %s.", var_name, raw_value, default
        )
        return default


def _split_env_list(var_name: str, default: Tuple[str, ...] = ()) -> Tuple[str, ...]:
    raw_value = os.getenv(var_name)
    if raw_value is None:
        return default
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


def _build_sqlalchemy_engine_options(
    database_uri: str, *, pool_recycle: int, max_overflow: int
) -> Dict[str, Union[int, bool]]:
    """Return SQLAlchemy engine options for connection pooling.

    SQLite engines ignore pool sizing, so only ``pool_pre_ping`` is returned
    for them.
    """

    if database_uri.startswith("sqlite"):
        return {"pool_pre_ping": True}
    return {
        "pool_pre_ping": True,
        "pool_recycle": pool_recycle,
        "max_overflow": max_overflow,
    }


def _rebuild_database_url(raw_url: Optional[str]) -> Optional[str]:
    """Return ``raw_url`` re-rendered by SQLAlchemy with the password escaped.

    Passwords containing URL delimiters such as ``:`` are quoted so the DSN
    parses the same way in Alembic and the application.
    """

    if not raw_url:
        return None

    try:
        return make_url(raw_url).render_as_string(hide_password=False)
    except Exception:
        return raw_url


def _is_postgres_dsn(database_uri: str) -> bool:
    return urlparse(database_uri).scheme.startswith("postgres")


def _select_database_uri(database_url: Optional[str]) -> str:
    """Return the database URI selected for this deployment.

    Args:
        database_url: DSN sourced from ``DATABASE_URL``.

    Returns:
        str: ``database_url`` when present, otherwise a SQLite file in the
        project directory. Production deployments without a PostgreSQL DSN
        record a startup error.
    """

    if database_url:
        if _is_production_environment() and not _is_postgres_dsn(database_url):
            _record_startup_error(
                "Production deployments require DATABASE_URL to point at "
                "PostgreSQL."
            )
        return database_url

    if _is_production_environment():
        _record_startup_error(
            "DATABASE_URL must be set when ENVIRONMENT or FLASK_ENV indicates "
            "production."
        )
    return f"sqlite:///{PROJECT_ROOT / 'forum.db'}"


def _resolve_hostname(host: str) -> str:
    """Return the bare hostname for ``host``.

    ``HOST`` may be a full URL (``http://forum.example.com``) or a plain host
    name. The parsed hostname wins when present; otherwise ``host`` is used
    unchanged.
    """

    return urlparse(host).hostname or host


def _resolve_session_type() -> Optional[str]:
    """Select the Flask-Session backend.

    An explicit ``SESSION_TYPE`` wins. Otherwise Redis is used whenever
    ``REDIS_HOST`` is configured and signed cookie sessions are kept when it
    is not.
    """

    configured = os.getenv("SESSION_TYPE")
    if configured:
        return configured.strip().lower()
    if os.getenv("REDIS_HOST"):
        return "redis"
    return None


def _resolve_ratelimit_storage_uri() -> str:
    """Determine where :mod:`flask_limiter` persists rate-limit counters.

    ``RATELIMIT_STORAGE_URI`` wins. When Redis is configured for sessions the
    limiter keeps its counters in the next Redis database; otherwise
    ``memory://`` scopes counters to each worker.
    """

    configured = os.getenv("RATELIMIT_STORAGE_URI")
    if configured:
        return configured

    redis_host = os.getenv("REDIS_HOST")
    if redis_host:
        port = _get_int_from_env("REDIS_PORT", 6379)
        db_index = _get_int_from_env("REDIS_DB", 0) + 1
        password = os.getenv("REDIS_PASSWORD")
        auth = f":{quote_plus(password)}@" if password else ""
        return f"redis://{auth}{redis_host}:{port}/{db_index}"

    return "memory://"


class Config:
    DEBUG = resolve_debug_flag()
    PORT = resolve_port()

    SITE_NAME = os.getenv("SITE_NAME", "Community Forum")
    SITE_DESCRIPTION = os.getenv(
        "SITE_DESCRIPTION", "A community for people who build things."
    )
    HOST = os.getenv("HOST", "localhost")
    HOSTNAME = _resolve_hostname(HOST)

    SECRET_KEY, SECRET_KEY_IS_TEMPORARY = _resolve_secret_key()
    AUTH_COOKIE_NAME = os.getenv("AUTH_COOKIE_NAME", "forum_auth")
    REMEMBER_COOKIE_NAME = AUTH_COOKIE_NAME
    SESSION_COOKIE_HTTPONLY = True
    ADMINS = frozenset(name.lower() for name in _split_env_list("ADMINS"))

    SQLALCHEMY_DATABASE_URI = _select_database_uri(
        _rebuild_database_url(os.getenv("DATABASE_URL"))
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = _build_sqlalchemy_engine_options(
        SQLALCHEMY_DATABASE_URI,
        pool_recycle=_get_int_from_env("DB_POOL_RECYCLE", 1800),
        max_overflow=_get_int_from_env("DB_POOL_MAX_OVERFLOW", 5),
    )

    SESSION_TYPE = _resolve_session_type()
    REDIS_HOST = os.getenv("REDIS_HOST", "127.0.0.1")
    REDIS_PORT = _get_int_from_env("REDIS_PORT", 6379)
    REDIS_DB = _get_int_from_env("REDIS_DB", 0)
    REDIS_PASSWORD = os.getenv("REDIS_PASSWORD") or None

    GITHUB_CLIENT_ID = os.getenv("GITHUB_CLIENT_ID")
    GITHUB_CLIENT_SECRET = os.getenv("GITHUB_CLIENT_SECRET")
    GITHUB_CALLBACK_URL = os.getenv("GITHUB_CALLBACK_URL")

    MINI_ASSETS = _is_truthy_env("MINI_ASSETS")
    ASSETS_MANIFEST = os.getenv(
        "ASSETS_MANIFEST", str(PROJECT_ROOT / "assets.json")
    )

    BODY_LIMIT = parse_size(os.getenv("BODY_LIMIT"), 1 << 20)
    FILE_LIMIT = parse_size(os.getenv("FILE_LIMIT"), 1 << 20)
    # Multipart bodies carry the file plus ordinary form fields.
    MAX_CONTENT_LENGTH = BODY_LIMIT + FILE_LIMIT
    UPLOAD_FOLDER = os.getenv(
        "UPLOAD_FOLDER", str(PROJECT_ROOT / "public" / "upload")
    )
    UPLOAD_URL_PREFIX = os.getenv("UPLOAD_URL_PREFIX", "/public/upload")
    UPLOAD_ALLOWED_EXTENSIONS = frozenset(
        _split_env_list(
            "UPLOAD_ALLOWED_EXTENSIONS", ("png", "jpg", "jpeg", "gif", "webp")
        )
    )

    LIST_TOPIC_COUNT = _get_int_from_env("LIST_TOPIC_COUNT", 20)
    TABS = DEFAULT_TABS
    PROXY_ALLOWED_HOSTS = _split_env_list(
        "PROXY_ALLOWED_HOSTS", DEFAULT_PROXY_ALLOWED_HOSTS
    )
    PROXY_TIMEOUT_SECONDS = _get_int_from_env("PROXY_TIMEOUT_SECONDS", 10)

    # CSRF protection guards browser forms outside debug mode only.
    WTF_CSRF_ENABLED = not DEBUG
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "")
    RATELIMIT_STORAGE_URI = _resolve_ratelimit_storage_uri()
    RATELIMIT_HEADERS_ENABLED = _is_truthy_env("RATELIMIT_HEADERS_ENABLED", "true")
    AUTH_SIGNIN_RATE_LIMIT = os.getenv("AUTH_SIGNIN_RATE_LIMIT", "10 per minute")
    AUTH_SIGNUP_RATE_LIMIT = os.getenv("AUTH_SIGNUP_RATE_LIMIT", "5 per minute")
    API_RATE_LIMIT = os.getenv("API_RATE_LIMIT", "60 per minute")

    LOG_DIR = os.getenv("LOG_DIR")
    HEALTHCHECK_REQUIRE_DB = os.getenv("HEALTHCHECK_REQUIRE_DB")

    CONFIG_ERRORS = list(_CONFIG_ERRORS)
