"""SQLAlchemy models for forum users, topics and replies."""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime
from typing import Optional

from flask import current_app, has_app_context
from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import check_password_hash, generate_password_hash

db = SQLAlchemy()


def _new_access_token() -> str:
    return str(uuid.uuid4())


class User(UserMixin, db.Model):
    """Registered forum member.

    ``is_admin`` is not stored; it is derived from the ``ADMINS`` setting so
    operators can grant or revoke moderation rights through configuration.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    loginname = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120))
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    avatar = db.Column(db.String(500))
    url = db.Column(db.String(500))
    location = db.Column(db.String(120))
    signature = db.Column(db.String(255))
    score = db.Column(db.Integer, nullable=False, default=0)
    topic_count = db.Column(db.Integer, nullable=False, default=0)
    reply_count = db.Column(db.Integer, nullable=False, default=0)
    is_block = db.Column(db.Boolean, nullable=False, default=False)
    active = db.Column(db.Boolean, nullable=False, default=True)
    github_id = db.Column(db.String(50), unique=True)
    github_username = db.Column(db.String(100))
    github_access_token = db.Column(db.String(255))
    access_token = db.Column(
        db.String(36), unique=True, nullable=False, default=_new_access_token
    )
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    topics = db.relationship("Topic", back_populates="author", lazy="dynamic")
    replies = db.relationship("Reply", back_populates="author", lazy="dynamic")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def is_active(self) -> bool:  # type: ignore[override]
        return bool(self.active)

    @property
    def is_admin(self) -> bool:
        """Return whether ``loginname`` is listed in ``ADMINS``."""

        if not has_app_context():
            return False
        admins = current_app.config.get("ADMINS") or ()
        return (self.loginname or "").lower() in {str(a).lower() for a in admins}

    @property
    def avatar_url(self) -> str:
        """Return the stored avatar or a Gravatar derived from ``email``."""

        if self.avatar:
            return self.avatar
        digest = hashlib.md5((self.email or "").strip().lower().encode("utf-8")).hexdigest()
        return f"https://www.gravatar.com/avatar/{digest}?size=48"

    def refresh_access_token(self) -> str:
        self.access_token = _new_access_token()
        return self.access_token


class Topic(db.Model):
    __tablename__ = "topics"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    tab = db.Column(db.String(20), index=True)
    top = db.Column(db.Boolean, nullable=False, default=False)
    good = db.Column(db.Boolean, nullable=False, default=False)
    lock = db.Column(db.Boolean, nullable=False, default=False)
    deleted = db.Column(db.Boolean, nullable=False, default=False)
    reply_count = db.Column(db.Integer, nullable=False, default=0)
    visit_count = db.Column(db.Integer, nullable=False, default=0)
    last_reply_id = db.Column(db.Integer)
    last_reply_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    author = db.relationship("User", back_populates="topics")
    replies = db.relationship(
        "Reply",
        back_populates="topic",
        foreign_keys="Reply.topic_id",
        order_by="Reply.created_at",
        lazy="dynamic",
    )


class Reply(db.Model):
    __tablename__ = "replies"

    id = db.Column(db.Integer, primary_key=True)
    content = db.Column(db.Text, nullable=False)
    topic_id = db.Column(db.Integer, db.ForeignKey("topics.id"), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    # Parent reply when answering another reply in the same topic.
    reply_id = db.Column(db.Integer, db.ForeignKey("replies.id"))
    deleted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    topic = db.relationship("Topic", back_populates="replies", foreign_keys=[topic_id])
    author = db.relationship("User", back_populates="replies")
    ups = db.relationship(
        "ReplyUp", back_populates="reply", cascade="all, delete-orphan"
    )

    def up_user_ids(self) -> list[int]:
        return [up.user_id for up in self.ups]


class ReplyUp(db.Model):
    """One member's up-vote on a reply."""

    __tablename__ = "reply_ups"
    __table_args__ = (db.UniqueConstraint("reply_id", "user_id", name="uq_reply_ups"),)

    id = db.Column(db.Integer, primary_key=True)
    reply_id = db.Column(db.Integer, db.ForeignKey("replies.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    reply = db.relationship("Reply", back_populates="ups")


def get_user_by_loginname(loginname: str) -> Optional[User]:
    """Return the user whose login name matches ``loginname`` case-insensitively."""

    normalized = (loginname or "").strip().lower()
    if not normalized:
        return None
    return User.query.filter(db.func.lower(User.loginname) == normalized).first()
