"""initial: users, friend_requests, blocked_users, chats, chat_members, messages

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19 10:00:00.000000

Описание:
- Канонические пары (user_min, user_max) у заявок и блокировок.
- Частичный уникальный индекс: одна pending/accepted заявка на пару.
- chats.pair_key уникален - один приватный чат на пару.
"""

from __future__ import annotations

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_WHERE = "status IN ('pending', 'accepted')"


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("avatar_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_name", "users", ["name"])

    op.create_table(
        "friend_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("sender_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("receiver_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_min", sa.String(36), nullable=False),
        sa.Column("user_max", sa.String(36), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("user_min < user_max", name="ck_friend_requests_min_lt_max"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'blocked')", name="ck_friend_requests_status"
        ),
    )
    op.create_index(
        "uq_friend_requests_active_pair",
        "friend_requests",
        ["user_min", "user_max"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_WHERE),
        sqlite_where=sa.text(ACTIVE_WHERE),
    )
    op.create_index("ix_friend_requests_sender", "friend_requests", ["sender_id", "status"])
    op.create_index("ix_friend_requests_receiver", "friend_requests", ["receiver_id", "status"])

    op.create_table(
        "blocked_users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("blocker_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("blocked_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_min", sa.String(36), nullable=False),
        sa.Column("user_max", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_min", "user_max", name="uq_blocked_users_pair"),
        sa.CheckConstraint("user_min < user_max", name="ck_blocked_users_min_lt_max"),
    )
    op.create_index("ix_blocked_users_blocker_id", "blocked_users", ["blocker_id"])
    op.create_index("ix_blocked_users_blocked_id", "blocked_users", ["blocked_id"])

    op.create_table(
        "chats",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("is_group", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("pair_key", sa.String(80), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "chat_members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("chat_id", sa.String(36), sa.ForeignKey("chats.id"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.UniqueConstraint("chat_id", "user_id", name="uq_chat_members_chat_user"),
    )
    op.create_index("ix_chat_members_chat_id", "chat_members", ["chat_id"])
    op.create_index("ix_chat_members_user_id", "chat_members", ["user_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("chat_id", sa.String(36), sa.ForeignKey("chats.id"), nullable=False),
        sa.Column("sender_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_messages_chat_sent", "messages", ["chat_id", "sent_at", "id"])


def downgrade() -> None:
    op.drop_index("ix_messages_chat_sent", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_chat_members_user_id", table_name="chat_members")
    op.drop_index("ix_chat_members_chat_id", table_name="chat_members")
    op.drop_table("chat_members")
    op.drop_table("chats")
    op.drop_index("ix_blocked_users_blocked_id", table_name="blocked_users")
    op.drop_index("ix_blocked_users_blocker_id", table_name="blocked_users")
    op.drop_table("blocked_users")
    op.drop_index("ix_friend_requests_receiver", table_name="friend_requests")
    op.drop_index("ix_friend_requests_sender", table_name="friend_requests")
    op.drop_index("uq_friend_requests_active_pair", table_name="friend_requests")
    op.drop_table("friend_requests")
    op.drop_index("ix_users_name", table_name="users")
    op.drop_table("users")
