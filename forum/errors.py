"""Error pages and the application-wide error handlers."""

from __future__ import annotations

import logging

from flask import Flask, jsonify, render_template, request
from flask.typing import ResponseReturnValue
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException, NotFound, RequestEntityTooLarge

logger = logging.getLogger("forum.errors")

API_PREFIX = "/api/"


def wants_json() -> bool:
    """Return ``True`` for requests served by the JSON API."""

    return request.path.startswith(API_PREFIX)


def json_error(message: str, status: int) -> ResponseReturnValue:
    return jsonify({"success": False, "error_msg": message}), status


def render_error(message: str, status: int = 403) -> ResponseReturnValue:
    """Render ``notify.html`` with ``message`` and the given status code."""

    if wants_json():
        return json_error(message, status)
    return render_template("notify.html", error=message), status


def render_not_found(message: str = "This page does not exist.") -> ResponseReturnValue:
    return render_error(message, 404)


def register_error_handlers(app: Flask) -> None:
    """Install error pages and, outside debug mode, the catch-all handler.

    Debug mode leaves unexpected exceptions to propagate so the Werkzeug
    debugger can display them. Otherwise they are logged and answered with a
    plain ``500 status`` body.
    """

    @app.errorhandler(NotFound)
    def _not_found(error: NotFound) -> ResponseReturnValue:
        return render_not_found()

    @app.errorhandler(RequestEntityTooLarge)
    def _too_large(error: RequestEntityTooLarge) -> ResponseReturnValue:
        return render_error("The request body is too large.", 413)

    @app.errorhandler(CSRFError)
    def _csrf_failed(error: CSRFError) -> ResponseReturnValue:
        logger.warning("CSRF validation failed for %s: %s", request.path, error.description)
        return render_error("The form has expired. Refresh the page and try again.", 403)

    if app.debug:
        return

    @app.errorhandler(Exception)
    def _unhandled(error: Exception) -> ResponseReturnValue:
        if isinstance(error, HTTPException):
            return error
        app.logger.error("Unhandled error on %s %s", request.method, request.path, exc_info=error)
        return "500 status", 500
