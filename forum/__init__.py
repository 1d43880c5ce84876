# forum/__init__.py
from flask import Flask, abort, current_app, g, jsonify, render_template, request
from flask_compress import Compress
from flask_cors import CORS
from flask_login import LoginManager, current_user
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_session import Session as FlaskSession
from flask_wtf.csrf import CSRFProtect, generate_csrf
from jinja2 import TemplateNotFound
from sqlalchemy import inspect, text
from typing import Any, Dict, List, Optional, Tuple, Union
from flask.typing import ResponseReturnValue
from werkzeug.middleware.proxy_fix import ProxyFix
import os
import redis as redispy

from .models import db, User, Topic, Reply
from forum.errors import register_error_handlers, render_error
from forum.logging_setup import configure_logging
from forum.middleware import (
    MethodOverrideMiddleware,
    install_body_limit,
    install_render_timing,
    install_request_log,
    install_request_timer,
    install_response_headers,
)
from forum.services.assets import asset_url, load_assets
from forum.services.auth_utils import BLOCKED_MESSAGE, is_blocked_request
from forum.services.github_client import init_github_oauth, is_github_configured
from forum.services.render_helper import register_render_helpers

login_manager = LoginManager()
login_manager.login_view = "auth.signin"
login_manager.login_message = "Please sign in first."
login_manager.login_message_category = "info"
csrf = CSRFProtect()
limiter = Limiter(key_func=get_remote_address)
compress = Compress()
cors = CORS()
TRUTHY_VALUES = {"1", "true", "t", "yes", "y", "on"}
DEFAULT_HEALTHCHECK_DB_TIMEOUT = 2.0
PRODUCTION_ENV_VALUES = {"production", "prod", "live"}
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))


def _is_truthy(value: Optional[Union[str, bool]]) -> bool:
    """Return whether a string or boolean represents a truthy value."""

    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY_VALUES


def _is_production_environment() -> bool:
    """Return whether ``ENVIRONMENT`` or ``FLASK_ENV`` marks production."""

    raw_environment = os.getenv("ENVIRONMENT") or os.getenv("FLASK_ENV") or ""
    return raw_environment.strip().lower() in PRODUCTION_ENV_VALUES


def _should_show_config_errors(app: Flask) -> bool:
    """Return whether configuration errors may be displayed to operators.

    ``SHOW_CONFIG_ERRORS`` forces the decision; otherwise errors are shown
    everywhere except production.
    """

    raw_flag = os.getenv("SHOW_CONFIG_ERRORS")
    if raw_flag is None:
        raw_flag = app.config.get("SHOW_CONFIG_ERRORS")
    if raw_flag is not None:
        return _is_truthy(raw_flag)
    return not _is_production_environment()


def _coerce_timeout_seconds(
    value: Optional[Union[str, float, int]],
    default: float = DEFAULT_HEALTHCHECK_DB_TIMEOUT,
) -> float:
    """Return a positive timeout value in seconds."""

    if value is None:
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if parsed <= 0:
        return default
    return parsed


def _resolve_healthcheck_db_settings(app: Flask) -> Tuple[bool, float]:
    """Return the database health check flag and timeout.

    Args:
        app: Application instance to read configuration defaults from.

    Returns:
        Tuple of ``(require_db_check, timeout_seconds)``.

    External dependencies:
        * Reads environment variables via :func:`os.getenv`.
    """

    raw_flag = os.getenv("HEALTHCHECK_REQUIRE_DB")
    if raw_flag is None:
        raw_flag = app.config.get("HEALTHCHECK_REQUIRE_DB")
    raw_timeout = os.getenv("HEALTHCHECK_DB_TIMEOUT_SECONDS")
    if raw_timeout is None:
        raw_timeout = app.config.get("HEALTHCHECK_DB_TIMEOUT_SECONDS")
    return _is_truthy(raw_flag), _coerce_timeout_seconds(raw_timeout)


def _check_database_connectivity(timeout_seconds: float) -> bool:
    """Return whether the database responds to a lightweight query.

    External dependencies:
        * Uses :data:`forum.models.db` for SQLAlchemy engine connectivity.
        * Executes SQL via :func:`sqlalchemy.text`.
    """

    timeout_ms = max(int(timeout_seconds * 1000), 1)
    try:
        with db.engine.connect() as connection:
            with connection.begin():
                if connection.dialect.name == "postgresql":
                    connection.execute(
                        text("SET LOCAL statement_timeout = :timeout_ms"),
                        {"timeout_ms": timeout_ms},
                    )
                connection.execute(text("SELECT 1"))
        return True
    except Exception as exc:  # pragma: no cover - depends on database state
        current_app.logger.warning("Health check database connectivity failed: %s", exc)
        return False


def _should_run_startup_db_checks(app: Flask, config_errors: List[str]) -> bool:
    """Return whether migrations and schema inspection should run at startup.

    ``STARTUP_DB_CHECKS`` forces the decision; otherwise checks run unless
    configuration errors were recorded.
    """

    raw_setting = os.getenv("STARTUP_DB_CHECKS")
    if raw_setting is None:
        raw_setting = app.config.get("STARTUP_DB_CHECKS")
    if raw_setting is not None:
        return _is_truthy(raw_setting)
    return not config_errors


@login_manager.user_loader
def load_user(user_id: str) -> Optional[User]:
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


def _verify_app_setup(app: Flask) -> List[str]:
    """Check for required database tables and templates.

    Args:
        app: The active :class:`~flask.Flask` application.

    Returns:
        A list of human-readable error messages describing missing
        resources.

    External dependencies:
        * Calls :func:`sqlalchemy.inspect` on :data:`forum.models.db.engine`.
        * Uses the Jinja loader to verify required templates are available.
    """
    errors: List[str] = []
    try:
        inspector = inspect(db.engine)
        existing_tables = set(inspector.get_table_names())
    except Exception as exc:  # pragma: no cover - depends on runtime database
        app.logger.warning("Startup database inspection failed: %s", exc)
        errors.append("Database unavailable; skipping table checks.")
    else:
        for table in (User.__tablename__, Topic.__tablename__, Reply.__tablename__):
            if table not in existing_tables:
                app.logger.error("SETUP_ERROR: Missing table: %s", table)
                errors.append(f"Missing table: {table}")

    for tmpl in ("layout.html", "index.html", "notify.html", "500.html"):
        try:
            app.jinja_env.get_or_select_template(tmpl)
        except TemplateNotFound:
            errors.append(f"Missing template: {tmpl}")

    return errors


def _init_session_store(app: Flask) -> None:
    """Move sessions into Redis when ``SESSION_TYPE`` is ``redis``.

    Falls back to Flask's signed cookie sessions when the Redis client cannot
    be created, so a misconfigured store degrades instead of failing startup.

    External dependencies:
        * Builds a :class:`redis.Redis` client from ``REDIS_*`` settings.
        * Initialises :class:`flask_session.Session`.
    """

    sess_type = (app.config.get("SESSION_TYPE") or "").lower()
    if sess_type != "redis":
        return
    try:
        redis_conn = app.config.get("SESSION_REDIS")
        if redis_conn is None:
            redis_conn = redispy.Redis(
                host=app.config.get("REDIS_HOST", "127.0.0.1"),
                port=int(app.config.get("REDIS_PORT", 6379)),
                db=int(app.config.get("REDIS_DB", 0)),
                password=app.config.get("REDIS_PASSWORD"),
            )
        app.config["SESSION_TYPE"] = "redis"
        app.config["SESSION_REDIS"] = redis_conn
        FlaskSession(app)
        app.logger.info("Server-side sessions enabled via Redis.")
    except Exception as exc:  # pragma: no cover - operational fallback
        app.config["SESSION_TYPE"] = None
        app.logger.exception(
            "Redis session init failed, falling back to cookie sessions: %s", exc
        )


def _install_auth_hooks(app: Flask) -> None:
    """Load the signed-in member and refuse writes from blocked members."""

    @app.before_request
    def _auth_user() -> None:
        if request.endpoint == "static":
            g.current_user = None
            return
        g.current_user = current_user if current_user.is_authenticated else None

    @app.before_request
    def _block_user() -> Optional[ResponseReturnValue]:
        if is_blocked_request(g.get("current_user"), request.method, request.path):
            return render_error(BLOCKED_MESSAGE, 403)
        return None


def _install_template_locals(app: Flask) -> None:
    """Expose site settings, assets and the CSRF token to templates."""

    app.jinja_env.globals.update(asset_url=asset_url)

    @app.context_processor
    def _forum_locals() -> Dict[str, Any]:
        csrf_token = ""
        if app.config.get("WTF_CSRF_ENABLED", True):
            csrf_token = generate_csrf()
        return {
            "csrf": csrf_token,
            "assets": app.config.get("ASSETS", {}),
            "site_name": app.config.get("SITE_NAME"),
            "tabs": app.config.get("TABS", ()),
            "github_enabled": is_github_configured(app),
        }


def create_app(config_class: Union[str, type] = "config.Config") -> Flask:
    """Application factory for the forum.

    Args:
        config_class: Import path or class used to configure the app.

    Returns:
        A fully initialized :class:`~flask.Flask` application.

    The request pipeline is assembled in a fixed order: proxy trust and
    method override wrap the WSGI app; then request logging, debug render
    timing, static files under ``/public``, the ``/agent`` proxy, response
    headers, body limits, compression, sessions, OAuth, member loading, the
    blocked-member guard, CSRF protection, template locals, error pages and
    finally the ``/api/v1`` and web routers.

    External dependencies:
        * Initializes Flask extensions (SQLAlchemy, Flask-Login, Flask-WTF,
          Flask-Limiter, Flask-Compress, Flask-CORS, Flask-Session, Authlib).
        * Calls :func:`forum.database.ensure_database_schema` when
          ``MIGRATE_ON_STARTUP`` is enabled.
    """

    app = Flask(
        __name__,
        template_folder=os.path.join(PROJECT_ROOT, "templates"),
        static_folder=os.path.join(PROJECT_ROOT, "public"),
        static_url_path="/public",
    )
    app.config.from_object(config_class)
    app.debug = bool(app.config.get("DEBUG"))

    # Trust X-Forwarded-* from the reverse proxy in front of the app.
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)
    app.wsgi_app = MethodOverrideMiddleware(app.wsgi_app)

    configure_logging(app)

    raw_config_errors = list(app.config.get("CONFIG_ERRORS", []))
    show_config_errors = _should_show_config_errors(app)
    app.config["SHOW_CONFIG_ERRORS"] = show_config_errors
    if raw_config_errors:
        app.logger.error("CONFIG_ERRORS: %s", raw_config_errors)
    config_errors = raw_config_errors
    if config_errors and not _is_production_environment():
        app.logger.info(
            "Ignoring startup configuration errors because ENVIRONMENT/FLASK_ENV "
            "is not production."
        )
        config_errors = []

    install_request_timer(app)
    install_request_log(app)
    if app.debug:
        install_render_timing(app)

    from forum.services.proxy import proxy_bp

    app.register_blueprint(proxy_bp, url_prefix="/agent")

    install_response_headers(app)
    install_body_limit(app)
    compress.init_app(app)
    _init_session_store(app)

    db.init_app(app)
    init_github_oauth(app)
    login_manager.init_app(app)
    _install_auth_hooks(app)
    csrf.init_app(app)

    load_assets(app)
    register_render_helpers(app)
    _install_template_locals(app)
    register_error_handlers(app)

    from forum.database import ensure_database_schema

    setup_errors: List[str] = list(config_errors)
    with app.app_context():
        if _should_run_startup_db_checks(app, config_errors):
            if _is_truthy(os.getenv("MIGRATE_ON_STARTUP", app.config.get("MIGRATE_ON_STARTUP"))):
                try:
                    ensure_database_schema(db.engine)
                except Exception as exc:  # pragma: no cover - depends on database
                    app.logger.warning("Startup database migration failed: %s", exc)
                    setup_errors.append("Database unavailable; skipping migrations.")
            setup_errors.extend(_verify_app_setup(app))

    limiter.init_app(app)

    if setup_errors:
        app.logger.error("Application setup failed: %s", "; ".join(setup_errors))

        def _setup_failed() -> Optional[ResponseReturnValue]:
            """Answer every request with the maintenance page.

            ``/healthz/config`` stays reachable so operators can read the
            diagnostics.
            """

            if request.path == "/healthz/config":
                return None
            error_details = setup_errors if show_config_errors else None
            return (
                render_template(
                    "500.html",
                    message="The forum is misconfigured.",
                    error_details=error_details,
                ),
                500,
            )

        # Runs ahead of the member-loading hooks, which need the database.
        app.before_request_funcs.setdefault(None, []).insert(0, _setup_failed)

    from forum.api import api_bp
    from forum.auth import auth_bp
    from forum.web import web_bp

    csrf.exempt(api_bp)
    cors.init_app(app, resources={r"/api/v1/*": {"origins": "*"}})
    app.register_blueprint(api_bp, url_prefix="/api/v1")
    app.register_blueprint(auth_bp)
    app.register_blueprint(web_bp)

    @app.route("/healthz", methods=["GET"])
    def healthz() -> ResponseReturnValue:
        """Return ``ok`` for infrastructure probes.

        When ``HEALTHCHECK_REQUIRE_DB`` is set the database must also answer
        within ``HEALTHCHECK_DB_TIMEOUT_SECONDS``; otherwise
        ``("db unavailable", 500)`` is returned.
        """

        require_db, timeout_seconds = _resolve_healthcheck_db_settings(app)
        if require_db and not _check_database_connectivity(timeout_seconds):
            return "db unavailable", 500
        return "ok", 200

    @app.route("/healthz/config", methods=["GET"])
    def healthz_config() -> ResponseReturnValue:
        """Return startup errors as JSON when diagnostics are allowed, else 404."""

        if not show_config_errors:
            abort(404)
        return jsonify({"errors": setup_errors})

    return app
