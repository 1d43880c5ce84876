"""Tests for the request pipeline hooks in :mod:`forum.middleware`."""

from __future__ import annotations

import json
import logging

import pytest
from flask import Flask, request

from forum.middleware import (
    MethodOverrideMiddleware,
    install_body_limit,
    install_request_log,
    install_request_timer,
    install_response_headers,
)


def _build_pipeline_app(body_limit: int = 64) -> Flask:
    """Create a bare Flask app with the timing, header and body-limit hooks.

    Args:
        body_limit: Value assigned to ``BODY_LIMIT``.

    Returns:
        Flask: App exposing ``/echo`` which reports the dispatched method.
    """

    app = Flask("middleware-test")
    app.config["BODY_LIMIT"] = body_limit
    app.wsgi_app = MethodOverrideMiddleware(app.wsgi_app)
    install_request_timer(app)
    install_request_log(app)
    install_response_headers(app)
    install_body_limit(app)

    @app.route("/echo", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    def echo() -> str:
        return request.method

    return app


@pytest.mark.parametrize("override", ["PUT", "patch", "DELETE"])
def test_method_override_tunnels_through_post(override: str) -> None:
    client = _build_pipeline_app().test_client()

    response = client.post("/echo", headers={"X-HTTP-Method-Override": override})

    assert response.get_data(as_text=True) == override.upper()


def test_method_override_ignores_get_and_unknown_methods() -> None:
    client = _build_pipeline_app().test_client()

    assert client.get("/echo", headers={"X-HTTP-Method-Override": "DELETE"}).get_data(
        as_text=True
    ) == "GET"
    assert client.post("/echo", headers={"X-HTTP-Method-Override": "TRACE"}).get_data(
        as_text=True
    ) == "POST"


def test_response_headers_are_added() -> None:
    response = _build_pipeline_app().test_client().get("/echo")

    assert response.headers["X-Response-Time"].endswith("ms")
    assert response.headers["X-Frame-Options"] == "SAMEORIGIN"


def test_oversized_json_body_is_rejected() -> None:
    """JSON bodies above ``BODY_LIMIT`` answer 413 before reaching the view."""

    client = _build_pipeline_app(body_limit=16).test_client()

    response = client.post(
        "/echo",
        data=json.dumps({"content": "x" * 64}),
        content_type="application/json",
    )

    assert response.status_code == 413


def test_small_form_body_is_accepted() -> None:
    client = _build_pipeline_app(body_limit=64).test_client()

    response = client.post("/echo", data={"a": "b"})

    assert response.status_code == 200


def test_request_log_records_start_and_completion(caplog: pytest.LogCaptureFixture) -> None:
    client = _build_pipeline_app().test_client()

    with caplog.at_level(logging.INFO, logger="forum.request"):
        client.get("/echo?x=1")

    messages = [record.getMessage() for record in caplog.records if record.name == "forum.request"]
    assert any(message.startswith("Started GET /echo?x=1") for message in messages)
    assert any(message.startswith("Completed 200") for message in messages)


def test_request_log_skips_static_files(caplog: pytest.LogCaptureFixture) -> None:
    client = _build_pipeline_app().test_client()

    with caplog.at_level(logging.INFO, logger="forum.request"):
        client.get("/public/stylesheets/missing.css")

    assert not [record for record in caplog.records if record.name == "forum.request"]


def test_forum_app_sets_headers_and_limits_api_bodies(app: Flask, client) -> None:
    """The assembled app answers oversized API bodies with the JSON envelope."""

    app.config["BODY_LIMIT"] = 32

    response = client.post(
        "/api/v1/topics",
        data=json.dumps({"accesstoken": "x" * 64}),
        content_type="application/json",
    )

    assert response.status_code == 413
    assert response.get_json() == {
        "success": False,
        "error_msg": "The request body is too large.",
    }
    assert response.headers["X-Frame-Options"] == "SAMEORIGIN"
