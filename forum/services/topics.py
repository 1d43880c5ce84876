"""Topic and reply persistence helpers shared by the web and API routers.

Mutating helpers follow the ``(result, error_message)`` convention used by
:mod:`forum.services.auth_utils`: validation failures return ``None`` and a
human-readable message instead of raising.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from flask import current_app

from forum.models import Reply, ReplyUp, Topic, User, db

logger = logging.getLogger("forum.topics")

TITLE_MIN_LENGTH = 5
TITLE_MAX_LENGTH = 100
TOPIC_SCORE = 5
REPLY_SCORE = 5
# Tabs hidden from the default "all" listing.
HIDDEN_FROM_ALL = ("dev",)


@dataclass(frozen=True)
class TopicPage:
    """One page of a topic listing."""

    topics: List[Topic]
    page: int
    pages: int
    tab: str


def normalize_page(raw_page: object) -> int:
    """Return a 1-based page number; anything unparseable becomes ``1``."""

    try:
        page = int(str(raw_page))
    except (TypeError, ValueError):
        return 1
    return page if page > 0 else 1


def tab_keys() -> Tuple[str, ...]:
    return tuple(key for key, _label in current_app.config.get("TABS", ()))


def normalize_tab(raw_tab: Optional[str]) -> str:
    """Return ``raw_tab`` when it names a listing, otherwise ``"all"``."""

    tab = (raw_tab or "").strip().lower()
    if tab == "good" or tab in tab_keys():
        return tab
    return "all"


def _listing_query(tab: str):
    query = Topic.query.filter(Topic.deleted.is_(False))
    if tab == "good":
        query = query.filter(Topic.good.is_(True))
    elif tab == "all":
        query = query.filter(
            db.or_(Topic.tab.is_(None), Topic.tab.notin_(HIDDEN_FROM_ALL))
        )
    else:
        query = query.filter(Topic.tab == tab)
    return query


def list_topics(tab: Optional[str], page: object, limit: Optional[int] = None) -> TopicPage:
    """Return the topics shown on ``page`` of the ``tab`` listing.

    Pinned (``top``) topics come first, then the most recently replied-to.
    """

    tab_value = normalize_tab(tab)
    page_number = normalize_page(page)
    per_page = limit or current_app.config.get("LIST_TOPIC_COUNT", 20)

    query = _listing_query(tab_value)
    total = query.count()
    topics = (
        query.order_by(Topic.top.desc(), Topic.last_reply_at.desc(), Topic.id.desc())
        .offset((page_number - 1) * per_page)
        .limit(per_page)
        .all()
    )
    pages = max(1, math.ceil(total / per_page)) if per_page else 1
    return TopicPage(topics=topics, page=page_number, pages=pages, tab=tab_value)


def get_topic(topic_id: object) -> Optional[Topic]:
    """Return the non-deleted topic ``topic_id`` or ``None``."""

    try:
        key = int(str(topic_id))
    except (TypeError, ValueError):
        return None
    topic = db.session.get(Topic, key)
    if topic is None or topic.deleted:
        return None
    return topic


def visible_replies(topic: Topic) -> List[Reply]:
    return topic.replies.filter(Reply.deleted.is_(False)).all()


def record_visit(topic: Topic) -> None:
    topic.visit_count = (topic.visit_count or 0) + 1
    db.session.commit()


def validate_topic_fields(
    title: Optional[str], tab: Optional[str], content: Optional[str]
) -> Optional[str]:
    """Return an error message for invalid topic fields or ``None``."""

    title = (title or "").strip()
    if not title:
        return "The title cannot be empty."
    if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
        return f"Titles need {TITLE_MIN_LENGTH}-{TITLE_MAX_LENGTH} characters."
    if (tab or "") not in tab_keys():
        return "Choose a section for the topic."
    if not (content or "").strip():
        return "The content cannot be empty."
    return None


def create_topic(
    author: User, title: Optional[str], tab: Optional[str], content: Optional[str]
) -> Tuple[Optional[Topic], Optional[str]]:
    """Persist a new topic and credit its author."""

    error = validate_topic_fields(title, tab, content)
    if error:
        return None, error

    topic = Topic(
        title=(title or "").strip(),
        tab=tab,
        content=(content or "").strip(),
        author_id=author.id,
        last_reply_at=datetime.utcnow(),
    )
    author.topic_count = (author.topic_count or 0) + 1
    author.score = (author.score or 0) + TOPIC_SCORE
    db.session.add(topic)
    db.session.commit()
    logger.info("topic %s created by %s", topic.id, author.loginname)
    return topic, None


def can_edit(user: Optional[User], topic: Topic) -> bool:
    return bool(user) and (user.id == topic.author_id or user.is_admin)


def update_topic(
    topic: Topic, title: Optional[str], tab: Optional[str], content: Optional[str]
) -> Optional[str]:
    """Apply edited fields to ``topic``; return an error message or ``None``."""

    error = validate_topic_fields(title, tab, content)
    if error:
        return error
    topic.title = (title or "").strip()
    topic.tab = tab
    topic.content = (content or "").strip()
    topic.updated_at = datetime.utcnow()
    db.session.commit()
    return None


def delete_topic(topic: Topic) -> None:
    """Soft-delete ``topic`` and reverse its author's topic credit."""

    topic.deleted = True
    author = topic.author
    if author is not None:
        author.topic_count = max(0, (author.topic_count or 0) - 1)
        author.score = max(0, (author.score or 0) - TOPIC_SCORE)
    db.session.commit()


def toggle_flag(topic: Topic, flag: str) -> bool:
    """Flip ``top``, ``good`` or ``lock`` on ``topic`` and return the new value."""

    if flag not in {"top", "good", "lock"}:
        raise ValueError(f"Unknown topic flag: {flag}")
    value = not bool(getattr(topic, flag))
    setattr(topic, flag, value)
    db.session.commit()
    return value


def add_reply(
    topic: Topic,
    author: User,
    content: Optional[str],
    parent_reply_id: Optional[object] = None,
) -> Tuple[Optional[Reply], Optional[str]]:
    """Persist a reply on ``topic``.

    Locked topics refuse replies. ``parent_reply_id`` must name a reply of the
    same topic; anything else is ignored.
    """

    text = (content or "").strip()
    if not text:
        return None, "The reply cannot be empty."
    if topic.lock:
        return None, "This topic is locked."

    parent_id = None
    if parent_reply_id not in (None, ""):
        parent = get_reply(parent_reply_id)
        if parent is not None and parent.topic_id == topic.id:
            parent_id = parent.id

    now = datetime.utcnow()
    reply = Reply(content=text, topic_id=topic.id, author_id=author.id, reply_id=parent_id)
    db.session.add(reply)
    db.session.flush()

    topic.reply_count = (topic.reply_count or 0) + 1
    topic.last_reply_id = reply.id
    topic.last_reply_at = now
    author.reply_count = (author.reply_count or 0) + 1
    author.score = (author.score or 0) + REPLY_SCORE
    db.session.commit()
    return reply, None


def get_reply(reply_id: object) -> Optional[Reply]:
    try:
        key = int(str(reply_id))
    except (TypeError, ValueError):
        return None
    reply = db.session.get(Reply, key)
    if reply is None or reply.deleted:
        return None
    return reply


def delete_reply(reply: Reply) -> None:
    """Soft-delete ``reply`` and reverse its author's reply credit."""

    reply.deleted = True
    topic = reply.topic
    if topic is not None:
        topic.reply_count = max(0, (topic.reply_count or 0) - 1)
    author = reply.author
    if author is not None:
        author.reply_count = max(0, (author.reply_count or 0) - 1)
        author.score = max(0, (author.score or 0) - REPLY_SCORE)
    db.session.commit()


def toggle_up(reply: Reply, user: User) -> Tuple[Optional[str], Optional[str]]:
    """Add or remove ``user``'s up-vote on ``reply``.

    Returns:
        ``("up", None)`` or ``("down", None)`` describing the new state, or
        ``(None, error)`` when ``user`` wrote the reply.
    """

    if reply.author_id == user.id:
        return None, "You cannot up-vote your own reply."
    existing = ReplyUp.query.filter_by(reply_id=reply.id, user_id=user.id).first()
    if existing is not None:
        db.session.delete(existing)
        db.session.commit()
        return "down", None
    db.session.add(ReplyUp(reply_id=reply.id, user_id=user.id))
    db.session.commit()
    return "up", None


def recent_topics(user: User, limit: int = 5) -> List[Topic]:
    return (
        user.topics.filter(Topic.deleted.is_(False))
        .order_by(Topic.created_at.desc())
        .limit(limit)
        .all()
    )


def recent_replied_topics(user: User, limit: int = 5) -> List[Topic]:
    """Return the topics ``user`` most recently replied to, newest first."""

    rows: Sequence[Reply] = (
        user.replies.filter(Reply.deleted.is_(False))
        .order_by(Reply.created_at.desc())
        .limit(limit * 4)
        .all()
    )
    seen: List[int] = []
    topics: List[Topic] = []
    for reply in rows:
        topic = reply.topic
        if topic is None or topic.deleted or topic.id in seen:
            continue
        seen.append(topic.id)
        topics.append(topic)
        if len(topics) >= limit:
            break
    return topics
