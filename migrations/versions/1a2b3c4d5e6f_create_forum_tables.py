"""create forum tables

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "1a2b3c4d5e6f"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("loginname", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=120)),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("avatar", sa.String(length=500)),
        sa.Column("url", sa.String(length=500)),
        sa.Column("location", sa.String(length=120)),
        sa.Column("signature", sa.String(length=255)),
        sa.Column("score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("topic_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reply_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_block", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("github_id", sa.String(length=50), unique=True),
        sa.Column("github_username", sa.String(length=100)),
        sa.Column("github_access_token", sa.String(length=255)),
        sa.Column("access_token", sa.String(length=36), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_loginname", "users", ["loginname"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "topics",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tab", sa.String(length=20)),
        sa.Column("top", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("good", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("lock", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reply_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("visit_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reply_id", sa.Integer()),
        sa.Column("last_reply_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_topics_author_id", "topics", ["author_id"])
    op.create_index("ix_topics_tab", "topics", ["tab"])
    op.create_index("ix_topics_last_reply_at", "topics", ["last_reply_at"])

    op.create_table(
        "replies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("topic_id", sa.Integer(), sa.ForeignKey("topics.id"), nullable=False),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reply_id", sa.Integer(), sa.ForeignKey("replies.id")),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_replies_topic_id", "replies", ["topic_id"])
    op.create_index("ix_replies_author_id", "replies", ["author_id"])

    op.create_table(
        "reply_ups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("reply_id", sa.Integer(), sa.ForeignKey("replies.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("reply_id", "user_id", name="uq_reply_ups"),
    )
    op.create_index("ix_reply_ups_reply_id", "reply_ups", ["reply_id"])


def downgrade() -> None:
    """Downgrade schema."""

    op.drop_table("reply_ups")
    op.drop_table("replies")
    op.drop_table("topics")
    op.drop_table("users")
