"""Blueprint exposing the JSON API endpoints under ``/api/v1``.

Successful responses carry ``{"success": true, ...}``; failures carry
``{"success": false, "error_msg": "..."}`` with a 4xx status. Write endpoints
authenticate with the member's ``accesstoken`` (shown on ``/setting``).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from flask import Blueprint, jsonify, request
from flask.typing import ResponseReturnValue
from flask_limiter.util import get_remote_address

from forum import limiter
from forum.errors import json_error
from forum.models import Reply, Topic, User, get_user_by_loginname
from forum.services import topics as topic_service
from forum.services.auth_utils import (
    BLOCKED_MESSAGE,
    find_user_by_access_token,
    resolve_rate_limit,
)
from forum.services.render_helper import render_content

api_bp = Blueprint("api", __name__)

WRONG_TOKEN_MESSAGE = "wrong accessToken"
MISSING_TOPIC_MESSAGE = "topic not found"
MAX_PAGE_SIZE = 100


def _request_value(name: str) -> Optional[str]:
    """Return ``name`` from the JSON body, form body or query string."""

    payload = request.get_json(silent=True)
    if isinstance(payload, dict) and payload.get(name) is not None:
        return str(payload[name])
    value = request.form.get(name)
    if value is None:
        value = request.args.get(name)
    return value


def _api_rate_limit_value() -> str:
    """Return the configured rate limit string for API requests.

    External dependencies:
        Calls :func:`forum.services.auth_utils.resolve_rate_limit` for
        ``API_RATE_LIMIT``.
    """

    return resolve_rate_limit("API_RATE_LIMIT", "60 per minute")


def _api_rate_limit_key() -> str:
    """Scope API rate limits by caller IP address and access token."""

    remote_addr = request.remote_addr or get_remote_address()
    token = _request_value("accesstoken")
    if token:
        return f"{remote_addr}:{token.strip()}"
    return remote_addr


def _authorize_api_request() -> Tuple[Optional[User], Optional[ResponseReturnValue]]:
    """Resolve the member behind ``accesstoken``.

    Returns:
        ``(user, None)`` when the token is valid, otherwise ``(None, response)``
        with a 401 for unknown tokens or a 403 for blocked members.

    External dependencies:
        Calls :func:`forum.services.auth_utils.find_user_by_access_token`.
    """

    user = find_user_by_access_token(_request_value("accesstoken"))
    if user is None:
        return None, json_error(WRONG_TOKEN_MESSAGE, 401)
    if user.is_block or not user.is_active:
        return None, json_error(BLOCKED_MESSAGE, 403)
    return user, None


def _wants_markdown_render() -> bool:
    return (request.args.get("mdrender") or "true").strip().lower() != "false"


def _serialize_author(user: Optional[User]) -> Dict[str, Any]:
    if user is None:
        return {"loginname": None, "avatar_url": None}
    return {"loginname": user.loginname, "avatar_url": user.avatar_url}


def _format_content(text: Optional[str], render: bool) -> str:
    return str(render_content(text)) if render else (text or "")


def _iso(moment: Any) -> Optional[str]:
    return moment.isoformat() if moment is not None else None


def _serialize_topic(topic: Topic, render: bool) -> Dict[str, Any]:
    """Return the public fields of ``topic`` for :func:`flask.jsonify`."""

    return {
        "id": topic.id,
        "author_id": topic.author_id,
        "tab": topic.tab,
        "content": _format_content(topic.content, render),
        "title": topic.title,
        "last_reply_at": _iso(topic.last_reply_at),
        "good": bool(topic.good),
        "top": bool(topic.top),
        "lock": bool(topic.lock),
        "reply_count": topic.reply_count or 0,
        "visit_count": topic.visit_count or 0,
        "create_at": _iso(topic.created_at),
        "author": _serialize_author(topic.author),
    }


def _serialize_reply(reply: Reply, render: bool) -> Dict[str, Any]:
    return {
        "id": reply.id,
        "author": _serialize_author(reply.author),
        "content": _format_content(reply.content, render),
        "ups": reply.up_user_ids(),
        "create_at": _iso(reply.created_at),
        "reply_id": reply.reply_id,
    }


def _brief_topic(topic: Topic) -> Dict[str, Any]:
    return {
        "id": topic.id,
        "author": _serialize_author(topic.author),
        "title": topic.title,
        "last_reply_at": _iso(topic.last_reply_at),
    }


@api_bp.get("/topics")
@limiter.limit(_api_rate_limit_value, key_func=_api_rate_limit_key)
def api_list_topics() -> ResponseReturnValue:
    """Return one page of topics.

    Query parameters ``page``, ``tab``, ``limit`` and ``mdrender`` mirror the
    web listing; ``limit`` is capped at 100.
    """

    limit = None
    if "limit" in request.args:
        limit = min(topic_service.normalize_page(request.args["limit"]), MAX_PAGE_SIZE)
    listing = topic_service.list_topics(
        request.args.get("tab"), request.args.get("page", 1), limit=limit
    )
    render = _wants_markdown_render()
    return jsonify(
        {"success": True, "data": [_serialize_topic(t, render) for t in listing.topics]}
    )


@api_bp.get("/topic/<int:topic_id>")
@limiter.limit(_api_rate_limit_value, key_func=_api_rate_limit_key)
def api_get_topic(topic_id: int) -> ResponseReturnValue:
    """Return a topic with its replies and count the visit."""

    topic = topic_service.get_topic(topic_id)
    if topic is None:
        return json_error(MISSING_TOPIC_MESSAGE, 404)
    topic_service.record_visit(topic)
    render = _wants_markdown_render()
    data = _serialize_topic(topic, render)
    data["replies"] = [
        _serialize_reply(reply, render) for reply in topic_service.visible_replies(topic)
    ]
    return jsonify({"success": True, "data": data})


@api_bp.post("/topics")
@limiter.limit(_api_rate_limit_value, key_func=_api_rate_limit_key)
def api_create_topic() -> ResponseReturnValue:
    """Create a topic from ``title``, ``tab`` and ``content``.

    Returns:
        ``{"success": true, "topic_id": ...}`` on success, or a 400 with the
        validation message.
    """

    user, failure = _authorize_api_request()
    if failure is not None:
        return failure
    topic, error = topic_service.create_topic(
        user,
        _request_value("title"),
        _request_value("tab"),
        _request_value("content"),
    )
    if error:
        return json_error(error, 400)
    return jsonify({"success": True, "topic_id": topic.id})


@api_bp.post("/topics/update")
@limiter.limit(_api_rate_limit_value, key_func=_api_rate_limit_key)
def api_update_topic() -> ResponseReturnValue:
    """Update ``topic_id``; only its author or an admin may do so."""

    user, failure = _authorize_api_request()
    if failure is not None:
        return failure
    topic = topic_service.get_topic(_request_value("topic_id"))
    if topic is None:
        return json_error(MISSING_TOPIC_MESSAGE, 404)
    if not topic_service.can_edit(user, topic):
        return json_error("You cannot edit this topic.", 403)
    error = topic_service.update_topic(
        topic,
        _request_value("title"),
        _request_value("tab"),
        _request_value("content"),
    )
    if error:
        return json_error(error, 400)
    return jsonify({"success": True, "topic_id": topic.id})


@api_bp.post("/topic/<int:topic_id>/replies")
@limiter.limit(_api_rate_limit_value, key_func=_api_rate_limit_key)
def api_create_reply(topic_id: int) -> ResponseReturnValue:
    user, failure = _authorize_api_request()
    if failure is not None:
        return failure
    topic = topic_service.get_topic(topic_id)
    if topic is None:
        return json_error(MISSING_TOPIC_MESSAGE, 404)
    reply, error = topic_service.add_reply(
        topic, user, _request_value("content"), _request_value("reply_id")
    )
    if error:
        status = 403 if topic.lock else 400
        return json_error(error, status)
    return jsonify({"success": True, "reply_id": reply.id})


@api_bp.post("/reply/<int:reply_id>/ups")
@limiter.limit(_api_rate_limit_value, key_func=_api_rate_limit_key)
def api_toggle_up(reply_id: int) -> ResponseReturnValue:
    """Toggle the caller's up-vote and report ``action`` ``up`` or ``down``."""

    user, failure = _authorize_api_request()
    if failure is not None:
        return failure
    reply = topic_service.get_reply(reply_id)
    if reply is None:
        return json_error("reply not found", 404)
    action, error = topic_service.toggle_up(reply, user)
    if error:
        return json_error(error, 400)
    return jsonify({"success": True, "action": action})


@api_bp.get("/user/<loginname>")
@limiter.limit(_api_rate_limit_value, key_func=_api_rate_limit_key)
def api_get_user(loginname: str) -> ResponseReturnValue:
    """Return a member's public profile with recent topics and replies."""

    user = get_user_by_loginname(loginname)
    if user is None:
        return json_error("user not found", 404)
    recent_topics: List[Dict[str, Any]] = [
        _brief_topic(topic) for topic in topic_service.recent_topics(user)
    ]
    recent_replies: List[Dict[str, Any]] = [
        _brief_topic(topic) for topic in topic_service.recent_replied_topics(user)
    ]
    return jsonify(
        {
            "success": True,
            "data": {
                "loginname": user.loginname,
                "avatar_url": user.avatar_url,
                "githubUsername": user.github_username,
                "create_at": _iso(user.created_at),
                "score": user.score or 0,
                "recent_topics": recent_topics,
                "recent_replies": recent_replies,
            },
        }
    )


@api_bp.post("/accesstoken")
@limiter.limit(_api_rate_limit_value, key_func=_api_rate_limit_key)
def api_verify_token() -> ResponseReturnValue:
    """Confirm ``accesstoken`` and identify its member."""

    user, failure = _authorize_api_request()
    if failure is not None:
        return failure
    return jsonify(
        {
            "success": True,
            "loginname": user.loginname,
            "avatar_url": user.avatar_url,
            "id": user.id,
        }
    )
