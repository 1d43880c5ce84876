"""Route tests for the server-rendered forum pages."""

from __future__ import annotations

import io
import re
from pathlib import Path

import pytest
from flask import Flask
from flask.testing import FlaskClient

from forum.models import Reply, Topic, User, db


def _create_topic(app: Flask, author_id: int, title: str = "Hello forum", **fields) -> int:
    with app.app_context():
        topic = Topic(
            title=title,
            content="Some *content* for @alice01",
            tab=fields.pop("tab", "share"),
            author_id=author_id,
            **fields,
        )
        db.session.add(topic)
        db.session.commit()
        return topic.id


def test_index_lists_topics(app: Flask, client: FlaskClient, make_user) -> None:
    author = make_user()
    _create_topic(app, author.id, "Visible topic")
    _create_topic(app, author.id, "Hidden testing topic", tab="dev")

    response = client.get("/")

    body = response.get_data(as_text=True)
    assert response.status_code == 200
    assert "Visible topic" in body
    assert "Hidden testing topic" not in body
    assert "Hidden testing topic" in client.get("/?tab=dev").get_data(as_text=True)


def test_about_page_renders(client: FlaskClient) -> None:
    response = client.get("/about")

    assert response.status_code == 200
    assert "About Community Forum" in response.get_data(as_text=True)


def test_unknown_page_uses_not_found_template(client: FlaskClient) -> None:
    response = client.get("/no/such/page")

    assert response.status_code == 404
    assert "This page does not exist." in response.get_data(as_text=True)


def test_topic_page_renders_content_and_counts_visit(app: Flask, client: FlaskClient, make_user) -> None:
    author = make_user()
    topic_id = _create_topic(app, author.id)

    response = client.get(f"/topic/{topic_id}")

    body = response.get_data(as_text=True)
    assert response.status_code == 200
    assert '<a href="/user/alice01">@alice01</a>' in body
    with app.app_context():
        assert db.session.get(Topic, topic_id).visit_count == 1


def test_missing_topic_is_404(client: FlaskClient) -> None:
    response = client.get("/topic/999")

    assert response.status_code == 404
    assert "This topic does not exist" in response.get_data(as_text=True)


def test_create_topic_requires_sign_in(client: FlaskClient) -> None:
    response = client.get("/topic/create")

    assert response.status_code == 302
    assert "/signin" in response.headers["Location"]


def test_create_topic_flow(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    make_user()
    sign_in(client, "alice01")

    assert client.get("/topic/create").status_code == 200
    response = client.post(
        "/topic/create",
        data={"title": "My first topic", "tab": "ask", "t_content": "Question body"},
    )

    assert response.status_code == 302
    with app.app_context():
        topic = Topic.query.filter_by(title="My first topic").one()
        assert response.headers["Location"].endswith(f"/topic/{topic.id}")
        assert topic.author.topic_count == 1


def test_create_topic_reports_validation_errors(client: FlaskClient, make_user, sign_in) -> None:
    make_user()
    sign_in(client, "alice01")

    response = client.post("/topic/create", data={"title": "", "tab": "ask", "t_content": "x"})

    assert response.status_code == 422
    assert "The title cannot be empty." in response.get_data(as_text=True)


def test_form_posts_need_a_csrf_token(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    """With CSRF protection on, forms only succeed with the rendered token."""

    make_user()
    sign_in(client, "alice01")
    app.config["WTF_CSRF_ENABLED"] = True
    form = {"title": "Protected topic", "tab": "ask", "t_content": "Question body"}

    rejected = client.post("/topic/create", data=form)

    assert rejected.status_code == 403
    assert "The form has expired" in rejected.get_data(as_text=True)
    with app.app_context():
        assert Topic.query.filter_by(title="Protected topic").first() is None

    page = client.get("/topic/create").get_data(as_text=True)
    token = re.search(r'name="csrf_token" value="([^"]+)"', page).group(1)
    accepted = client.post("/topic/create", data={**form, "csrf_token": token})

    assert accepted.status_code == 302
    with app.app_context():
        assert Topic.query.filter_by(title="Protected topic").one()


def test_only_author_can_edit_topic(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    author = make_user()
    make_user("bobby99")
    topic_id = _create_topic(app, author.id)

    sign_in(client, "bobby99")
    assert client.get(f"/topic/{topic_id}/edit").status_code == 403

    client.post("/signout")
    sign_in(client, "alice01")
    response = client.post(
        f"/topic/{topic_id}/edit",
        data={"title": "Edited title", "tab": "share", "t_content": "new body"},
    )
    assert response.status_code == 302
    with app.app_context():
        assert db.session.get(Topic, topic_id).title == "Edited title"


def test_delete_topic_soft_deletes(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    author = make_user()
    topic_id = _create_topic(app, author.id)
    sign_in(client, "alice01")

    response = client.post(f"/topic/{topic_id}/delete")

    assert response.status_code == 302
    assert client.get(f"/topic/{topic_id}").status_code == 404


@pytest.mark.parametrize("flag", ["top", "good", "lock"])
def test_moderation_flags_are_admin_only(app: Flask, client: FlaskClient, make_user, sign_in, flag: str) -> None:
    author = make_user()
    make_user("moderator")
    topic_id = _create_topic(app, author.id)

    sign_in(client, "alice01")
    assert client.post(f"/topic/{topic_id}/{flag}").status_code == 403

    client.post("/signout")
    sign_in(client, "moderator")
    assert client.post(f"/topic/{topic_id}/{flag}").status_code == 302
    with app.app_context():
        assert getattr(db.session.get(Topic, topic_id), flag) is True


def test_reply_and_delete_reply(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    author = make_user()
    topic_id = _create_topic(app, author.id)
    sign_in(client, "alice01")

    response = client.post(f"/{topic_id}/reply", data={"r_content": "Nice topic"})

    assert response.status_code == 302
    with app.app_context():
        reply = Reply.query.filter_by(topic_id=topic_id).one()
        reply_id = reply.id
        assert response.headers["Location"].endswith(f"/topic/{topic_id}#{reply_id}")

    assert "Nice topic" in client.get(f"/topic/{topic_id}").get_data(as_text=True)
    assert client.post(f"/reply/{reply_id}/delete").status_code == 302
    with app.app_context():
        assert db.session.get(Reply, reply_id).deleted is True


def test_reply_to_locked_topic_is_refused(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    author = make_user()
    topic_id = _create_topic(app, author.id, lock=True)
    sign_in(client, "alice01")

    response = client.post(f"/{topic_id}/reply", data={"r_content": "Too late"})

    assert response.status_code == 422
    assert "This topic is locked." in response.get_data(as_text=True)


def test_user_profile_page(app: Flask, client: FlaskClient, make_user) -> None:
    author = make_user(signature="Ship it")
    _create_topic(app, author.id, "Profile topic")

    response = client.get("/user/ALICE01")

    body = response.get_data(as_text=True)
    assert response.status_code == 200
    assert "Ship it" in body
    assert "Profile topic" in body
    assert client.get("/user/nobody00").status_code == 404


def test_upload_stores_image(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    user = make_user()
    sign_in(client, "alice01")

    response = client.post(
        "/upload",
        data={"file": (io.BytesIO(b"\x89PNG data"), "avatar.png")},
        content_type="multipart/form-data",
    )

    payload = response.get_json()
    assert response.status_code == 200
    assert payload["success"] is True
    assert payload["url"].startswith(f"/public/upload/{user.id}/")
    stored = Path(app.config["UPLOAD_FOLDER"]) / str(user.id) / payload["url"].rsplit("/", 1)[-1]
    assert stored.read_bytes() == b"\x89PNG data"


def test_upload_rejects_disallowed_types(client: FlaskClient, make_user, sign_in) -> None:
    make_user()
    sign_in(client, "alice01")

    response = client.post(
        "/upload",
        data={"file": (io.BytesIO(b"#!/bin/sh"), "run.sh")},
        content_type="multipart/form-data",
    )

    assert response.status_code == 400
    assert response.get_json() == {"success": False, "msg": "This file type is not allowed."}


def test_upload_enforces_file_limit(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    make_user()
    sign_in(client, "alice01")
    app.config["FILE_LIMIT"] = 4

    response = client.post(
        "/upload",
        data={"file": (io.BytesIO(b"0123456789"), "big.png")},
        content_type="multipart/form-data",
    )

    assert response.status_code == 400
    assert response.get_json()["msg"] == "Files must be smaller than 4 bytes."


def test_blocked_member_can_read_but_not_write(app: Flask, client: FlaskClient, make_user, sign_in) -> None:
    author = make_user(is_block=True)
    topic_id = _create_topic(app, author.id)
    sign_in_response = sign_in(client, "alice01")
    assert sign_in_response.status_code == 302

    assert client.get(f"/topic/{topic_id}").status_code == 200
    response = client.post(f"/{topic_id}/reply", data={"r_content": "Let me in"})
    assert response.status_code == 403
    assert "You have been blocked by an administrator." in response.get_data(as_text=True)
    assert client.post("/signout").status_code == 302
    with app.app_context():
        assert User.query.filter_by(loginname="alice01").one().reply_count == 0
