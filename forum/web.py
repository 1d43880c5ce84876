# forum/web.py
"""Server-rendered pages for browsing and writing topics.

Every mutating route requires a signed-in member via
:func:`flask_login.login_required`. Moderation routes (``top``, ``good`` and
``lock``) are limited to members named in the ``ADMINS`` setting.
"""

from typing import Union, cast

from flask import (
    Blueprint,
    Response,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)
from flask.typing import ResponseReturnValue
from flask_login import current_user, login_required

from forum.errors import render_error, render_not_found
from forum.models import User, get_user_by_loginname
from forum.services.topics import (
    add_reply,
    can_edit,
    create_topic,
    delete_reply,
    delete_topic,
    get_reply,
    get_topic,
    list_topics,
    recent_replied_topics,
    recent_topics,
    record_visit,
    tab_keys,
    toggle_flag,
    update_topic,
    visible_replies,
)
from forum.services.uploads import save_upload

web_bp = Blueprint("web", __name__)

NO_PERMISSION_MESSAGE = "You do not have permission to do that."
MISSING_TOPIC_MESSAGE = "This topic does not exist or has been deleted."


def _member() -> User:
    return cast(User, current_user._get_current_object())


@web_bp.route("/")
def index() -> str:
    """Render the paginated topic listing for ``?tab=`` and ``?page=``."""

    listing = list_topics(request.args.get("tab"), request.args.get("page", 1))
    return render_template("index.html", listing=listing)


@web_bp.route("/about")
def about() -> str:
    return render_template("about.html")


@web_bp.route("/user/<loginname>")
def user_index(loginname: str) -> ResponseReturnValue:
    """Render a member's public profile with their recent activity."""

    user = get_user_by_loginname(loginname)
    if user is None:
        return render_not_found("This member does not exist.")
    return render_template(
        "user/index.html",
        user=user,
        recent_topics=recent_topics(user),
        recent_replies=recent_replied_topics(user),
    )


@web_bp.route("/topic/create", methods=["GET", "POST"])
@login_required
def topic_create() -> ResponseReturnValue:
    """Show the topic form or publish a new topic.

    Required form fields:
        - title
        - tab
        - t_content
    """

    if request.method == "POST":
        title = request.form.get("title", "")
        tab = request.form.get("tab", "")
        content = request.form.get("t_content", "")
        topic, error = create_topic(_member(), title, tab, content)
        if error:
            flash(error, "warning")
            return (
                render_template(
                    "topic/edit.html", action="create", title=title, tab=tab, content=content
                ),
                422,
            )
        return redirect(url_for("web.topic_show", topic_id=topic.id))

    keys = tab_keys()
    return render_template(
        "topic/edit.html",
        action="create",
        title="",
        tab=keys[0] if keys else "",
        content="",
    )


@web_bp.route("/topic/<int:topic_id>")
def topic_show(topic_id: int) -> ResponseReturnValue:
    """Render a topic with its replies and count the visit."""

    topic = get_topic(topic_id)
    if topic is None:
        return render_not_found(MISSING_TOPIC_MESSAGE)
    record_visit(topic)
    viewer = _member() if current_user.is_authenticated else None
    return render_template(
        "topic/show.html",
        topic=topic,
        replies=visible_replies(topic),
        can_edit=can_edit(viewer, topic),
        is_admin=bool(viewer and viewer.is_admin),
    )


@web_bp.route("/topic/<int:topic_id>/edit", methods=["GET", "POST"])
@login_required
def topic_edit(topic_id: int) -> ResponseReturnValue:
    topic = get_topic(topic_id)
    if topic is None:
        return render_not_found(MISSING_TOPIC_MESSAGE)
    if not can_edit(_member(), topic):
        return render_error(NO_PERMISSION_MESSAGE, 403)

    if request.method == "POST":
        title = request.form.get("title", "")
        tab = request.form.get("tab", "")
        content = request.form.get("t_content", "")
        error = update_topic(topic, title, tab, content)
        if error:
            flash(error, "warning")
            return (
                render_template(
                    "topic/edit.html",
                    action="edit",
                    topic_id=topic.id,
                    title=title,
                    tab=tab,
                    content=content,
                ),
                422,
            )
        return redirect(url_for("web.topic_show", topic_id=topic.id))

    return render_template(
        "topic/edit.html",
        action="edit",
        topic_id=topic.id,
        title=topic.title,
        tab=topic.tab,
        content=topic.content,
    )


@web_bp.route("/topic/<int:topic_id>/delete", methods=["POST"])
@login_required
def topic_delete(topic_id: int) -> ResponseReturnValue:
    topic = get_topic(topic_id)
    if topic is None:
        return render_not_found(MISSING_TOPIC_MESSAGE)
    if not can_edit(_member(), topic):
        return render_error(NO_PERMISSION_MESSAGE, 403)
    delete_topic(topic)
    flash("The topic has been deleted.", "success")
    return redirect(url_for("web.index"))


@web_bp.route("/topic/<int:topic_id>/<any(top, good, lock):flag>", methods=["POST"])
@login_required
def topic_flag(topic_id: int, flag: str) -> ResponseReturnValue:
    """Toggle the ``top``, ``good`` or ``lock`` flag of a topic (admins only)."""

    if not _member().is_admin:
        return render_error(NO_PERMISSION_MESSAGE, 403)
    topic = get_topic(topic_id)
    if topic is None:
        return render_not_found(MISSING_TOPIC_MESSAGE)
    toggle_flag(topic, flag)
    return redirect(url_for("web.topic_show", topic_id=topic.id))


@web_bp.route("/<int:topic_id>/reply", methods=["POST"])
@login_required
def reply_create(topic_id: int) -> ResponseReturnValue:
    """Append a reply from the ``r_content`` field, optionally to ``reply_id``."""

    topic = get_topic(topic_id)
    if topic is None:
        return render_not_found(MISSING_TOPIC_MESSAGE)
    reply, error = add_reply(
        topic, _member(), request.form.get("r_content"), request.form.get("reply_id")
    )
    if error:
        return render_error(error, 422)
    return redirect(url_for("web.topic_show", topic_id=topic.id) + f"#{reply.id}")


@web_bp.route("/reply/<int:reply_id>/delete", methods=["POST"])
@login_required
def reply_delete(reply_id: int) -> ResponseReturnValue:
    reply = get_reply(reply_id)
    if reply is None:
        return render_not_found("This reply does not exist or has been deleted.")
    member = _member()
    if reply.author_id != member.id and not member.is_admin:
        return render_error(NO_PERMISSION_MESSAGE, 403)
    topic_id = reply.topic_id
    delete_reply(reply)
    return redirect(url_for("web.topic_show", topic_id=topic_id))


@web_bp.route("/upload", methods=["POST"])
@login_required
def upload() -> Union[Response, ResponseReturnValue]:
    """Store an image posted in the ``file`` field.

    Returns:
        JSON ``{"success": true, "url": ...}`` or
        ``{"success": false, "msg": ...}`` with status 400.
    """

    url, error = save_upload(request.files.get("file"), _member().id)
    if error:
        return jsonify({"success": False, "msg": error}), 400
    return jsonify({"success": True, "url": url})
