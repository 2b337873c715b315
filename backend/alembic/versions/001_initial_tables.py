"""Create initial tables

Revision ID: 001_initial_tables
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("username", sa.String(20), unique=True, nullable=False, index=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("display_name", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="offline"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), onupdate=sa.func.now()),
    )

    # ------------------------------------------------------------------
    # Communities, roles, membership
    # ------------------------------------------------------------------
    op.create_table(
        "servers",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("icon_url", sa.String(500), nullable=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("invite_code", sa.String(32), unique=True, nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("server_id", sa.Integer(), sa.ForeignKey("servers.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("color", sa.String(7), nullable=False, server_default="#99aab5"),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mentionable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), onupdate=sa.func.now()),
    )

    op.create_table(
        "server_memberships",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("server_id", sa.Integer(), sa.ForeignKey("servers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("roles_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("server_id", "user_id", name="unique_server_member"),
    )

    op.create_table(
        "member_roles",
        sa.Column(
            "membership_id",
            sa.Integer(),
            sa.ForeignKey("server_memberships.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    )

    # ------------------------------------------------------------------
    # Moderation records
    # ------------------------------------------------------------------
    op.create_table(
        "server_bans",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("server_id", sa.Integer(), sa.ForeignKey("servers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("banned_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("banned_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("server_id", "user_id", name="unique_server_ban"),
    )

    op.create_table(
        "server_timeouts",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("server_id", sa.Integer(), sa.ForeignKey("servers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("timed_out_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("timeout_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("timeout_until", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "server_warnings",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("server_id", sa.Integer(), sa.ForeignKey("servers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("warned_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("warned_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "audit_log_entries",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("server_id", sa.Integer(), sa.ForeignKey("servers.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("action", sa.String(40), nullable=False),
        sa.Column("executor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------
    op.create_table(
        "channels",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("topic", sa.String(500), nullable=True),
        sa.Column("type", sa.String(10), nullable=False, server_default="text"),
        sa.Column("server_id", sa.Integer(), sa.ForeignKey("servers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("server_id", "name", name="unique_channel_per_server"),
    )

    op.create_table(
        "channel_messages",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("content", sa.String(2000), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "channel_id", sa.Integer(), sa.ForeignKey("channels.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.false()),
    )

    # ------------------------------------------------------------------
    # Direct messages
    # ------------------------------------------------------------------
    # last_message_id points into dm_messages, which points back at
    # dm_conversations; the FK is added once both tables exist.
    op.create_table(
        "dm_conversations",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("user1_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("user2_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("last_message_id", sa.Integer(), nullable=True),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user1_id", "user2_id", name="unique_dm_pair"),
        sa.CheckConstraint("user1_id < user2_id", name="dm_pair_ordered"),
    )

    op.create_table(
        "dm_messages",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column(
            "conversation_id",
            sa.Integer(),
            sa.ForeignKey("dm_conversations.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.String(2000), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_edited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_foreign_key(
        "fk_dm_conversation_last_message",
        "dm_conversations",
        "dm_messages",
        ["last_message_id"],
        ["id"],
    )

    # ------------------------------------------------------------------
    # Voice sessions
    # ------------------------------------------------------------------
    op.create_table(
        "voice_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("session_key", sa.String(100), unique=True, nullable=False, index=True),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column(
            "channel_id", sa.Integer(), sa.ForeignKey("channels.id", ondelete="SET NULL"), nullable=True, index=True
        ),
        sa.Column("server_id", sa.Integer(), sa.ForeignKey("servers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("participant1_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("participant2_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_video_call", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column("max_participants", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index(
        "uq_voice_active_channel",
        "voice_sessions",
        ["channel_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active"),
    )

    op.create_table(
        "voice_participants",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column(
            "session_id", sa.Integer(), sa.ForeignKey("voice_sessions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_muted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_deafened", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_video_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_screen_sharing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("peer_id", sa.String(200), nullable=True),
        sa.Column("socket_id", sa.String(200), nullable=True),
        sa.UniqueConstraint("session_id", "user_id", name="unique_voice_participant"),
    )

    # ------------------------------------------------------------------
    # Social graph
    # ------------------------------------------------------------------
    op.create_table(
        "friendships",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("friend_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "friend_id", name="unique_friendship"),
    )

    op.create_table(
        "friend_requests",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("from_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "to_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("status", sa.String(10), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "user_blocks",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column(
            "blocker_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("blocked_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("blocker_id", "blocked_id", name="unique_user_block"),
    )


def downgrade() -> None:
    op.drop_table("user_blocks")
    op.drop_table("friend_requests")
    op.drop_table("friendships")
    op.drop_table("voice_participants")
    op.drop_table("voice_sessions")
    op.drop_constraint("fk_dm_conversation_last_message", "dm_conversations", type_="foreignkey")
    op.drop_table("dm_messages")
    op.drop_table("dm_conversations")
    op.drop_table("channel_messages")
    op.drop_table("channels")
    op.drop_table("audit_log_entries")
    op.drop_table("server_warnings")
    op.drop_table("server_timeouts")
    op.drop_table("server_bans")
    op.drop_table("member_roles")
    op.drop_table("server_memberships")
    op.drop_table("roles")
    op.drop_table("servers")
    op.drop_table("users")
