"""Request pipeline hooks installed by :func:`forum.create_app`.

Each ``install_*`` helper registers one concern on the application. The
factory calls them in a fixed order because Flask runs ``before_request``
hooks in registration order and ``after_request`` hooks in reverse.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, Optional

from flask import Flask, Response, g, request
from flask import before_render_template, template_rendered
from flask.typing import ResponseReturnValue
from werkzeug.exceptions import RequestEntityTooLarge

request_logger = logging.getLogger("forum.request")
render_logger = logging.getLogger("forum.render")

STATIC_PREFIX = "/public"
OVERRIDE_HEADER = "X-HTTP-Method-Override"
OVERRIDABLE_METHODS = frozenset({"PUT", "PATCH", "DELETE"})
BODY_LIMITED_MIMETYPES = frozenset({"application/json", "application/x-www-form-urlencoded"})


class MethodOverrideMiddleware:
    """WSGI middleware honouring ``X-HTTP-Method-Override`` on POST requests.

    HTML forms can only submit GET and POST, so clients tunnel PUT, PATCH and
    DELETE through a POST carrying the override header. Any other method or
    override value leaves the request untouched.
    """

    def __init__(self, wsgi_app: Callable[..., Iterable[bytes]]) -> None:
        self.wsgi_app = wsgi_app

    def __call__(self, environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        if environ.get("REQUEST_METHOD", "").upper() == "POST":
            override = environ.get("HTTP_X_HTTP_METHOD_OVERRIDE", "").strip().upper()
            if override in OVERRIDABLE_METHODS:
                environ["forum.original_method"] = "POST"
                environ["REQUEST_METHOD"] = override
        return self.wsgi_app(environ, start_response)


def _is_static_path(path: str) -> bool:
    return path == STATIC_PREFIX or path.startswith(STATIC_PREFIX + "/")


def _elapsed_ms() -> Optional[float]:
    started = g.get("request_started_at")
    if started is None:
        return None
    return (time.perf_counter() - started) * 1000


def install_request_timer(app: Flask) -> None:
    """Record when each request starts so later hooks can measure it."""

    @app.before_request
    def _start_timer() -> None:
        g.request_started_at = time.perf_counter()


def install_request_log(app: Flask) -> None:
    """Log the start and completion of every non-static request.

    External dependencies:
        * Writes to the ``forum.request`` logger.
    """

    @app.before_request
    def _log_request_start() -> None:
        if _is_static_path(request.path):
            return
        request_logger.info(
            "Started %s %s for %s", request.method, request.full_path.rstrip("?"), request.remote_addr
        )

    @app.after_request
    def _log_request_end(response: Response) -> Response:
        if not _is_static_path(request.path):
            elapsed = _elapsed_ms()
            request_logger.info(
                "Completed %s (%dms)", response.status_code, int(elapsed or 0)
            )
        return response


def install_render_timing(app: Flask) -> None:
    """Log how long each template takes to render (debug mode only)."""

    def _before_render(sender: Flask, template: Any, context: dict, **extra: Any) -> None:
        g.setdefault("render_started", {})[template.name] = time.perf_counter()

    def _after_render(sender: Flask, template: Any, context: dict, **extra: Any) -> None:
        started = g.get("render_started", {}).pop(template.name, None)
        if started is not None:
            render_logger.debug(
                "Render %s (%.3fms)", template.name, (time.perf_counter() - started) * 1000
            )

    before_render_template.connect(_before_render, app)
    template_rendered.connect(_after_render, app)


def install_response_headers(app: Flask) -> None:
    """Add ``X-Response-Time`` and ``X-Frame-Options`` to every response."""

    @app.after_request
    def _set_headers(response: Response) -> Response:
        elapsed = _elapsed_ms()
        if elapsed is not None:
            response.headers["X-Response-Time"] = f"{elapsed:.3f}ms"
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        return response


def install_body_limit(app: Flask) -> None:
    """Reject JSON and urlencoded bodies larger than ``BODY_LIMIT``.

    Multipart uploads are bounded separately by ``FILE_LIMIT``.
    """

    @app.before_request
    def _enforce_body_limit() -> Optional[ResponseReturnValue]:
        limit = app.config.get("BODY_LIMIT")
        if not limit or request.mimetype not in BODY_LIMITED_MIMETYPES:
            return None
        if request.content_length is not None and request.content_length > limit:
            raise RequestEntityTooLarge()
        return None
