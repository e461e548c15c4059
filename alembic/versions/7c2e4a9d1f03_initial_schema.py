"""Initial CozyCore schema

Revision ID: 7c2e4a9d1f03
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7c2e4a9d1f03"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

SNOWFLAKE = sa.String(32)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def _guild_id(primary_key: bool = False) -> sa.Column:
    return sa.Column(
        "guild_id",
        SNOWFLAKE,
        sa.ForeignKey("guilds.id", ondelete="CASCADE"),
        primary_key=primary_key,
        nullable=False,
    )


def _jsonb(name: str) -> sa.Column:
    return sa.Column(name, postgresql.JSONB(), nullable=False)


def _template(prefix: str) -> list[sa.Column]:
    """Title, description and alternate descriptions for one notification."""
    return [
        sa.Column(f"{prefix}_embed_title", sa.Text(), nullable=False),
        sa.Column(f"{prefix}_embed_description", sa.Text(), nullable=False),
        _jsonb(f"{prefix}_embed_descriptions"),
    ]


def upgrade() -> None:
    """Create every CozyCore table."""
    op.create_table(
        "guilds",
        sa.Column("id", SNOWFLAKE, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("icon", sa.String(100)),
        sa.Column("owner_id", SNOWFLAKE, nullable=False),
        sa.Column("bot_joined_at", sa.DateTime(timezone=True)),
        _jsonb("settings"),
        *_timestamps(),
    )

    op.create_table(
        "level_config",
        _guild_id(primary_key=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        # Message XP
        sa.Column("min_xp_per_message", sa.Integer(), nullable=False),
        sa.Column("max_xp_per_message", sa.Integer(), nullable=False),
        sa.Column("cooldown_seconds", sa.Integer(), nullable=False),
        sa.Column("max_xp_per_hour", sa.Integer()),
        sa.Column("max_xp_per_hour_enabled", sa.Boolean(), nullable=False),
        sa.Column("max_xp_per_day", sa.Integer()),
        sa.Column("max_xp_per_day_enabled", sa.Boolean(), nullable=False),
        sa.Column("min_message_length", sa.Integer(), nullable=False),
        sa.Column("similarity_severity", sa.String(10), nullable=False),
        _jsonb("whitelisted_channels"),
        # Forum thread XP
        sa.Column("forum_xp_enabled", sa.Boolean(), nullable=False),
        sa.Column("xp_on_thread_close", sa.Integer(), nullable=False),
        sa.Column("helper_bonus_xp", sa.Integer(), nullable=False),
        sa.Column("auto_archive_hours", sa.Integer(), nullable=False),
        sa.Column("fast_resolution_enabled", sa.Boolean(), nullable=False),
        sa.Column("fast_resolution_threshold_hours", sa.Integer(), nullable=False),
        sa.Column("fast_resolution_bonus_xp", sa.Integer(), nullable=False),
        _jsonb("whitelisted_forums"),
        sa.Column("auto_remove_previous_role", sa.Boolean(), nullable=False),
        # Notification channels and templates
        sa.Column("congrats_channel_id", SNOWFLAKE),
        sa.Column("demotion_channel_id", SNOWFLAKE),
        sa.Column("log_channel_id", SNOWFLAKE),
        *_template("promotion"),
        *_template("demotion"),
        *_template("role_loss"),
        # Roles overview embed
        sa.Column("roles_embed_channel_id", SNOWFLAKE),
        sa.Column("roles_embed_message_id", SNOWFLAKE),
        sa.Column("roles_embed_title", sa.Text(), nullable=False),
        sa.Column("roles_embed_description", sa.Text(), nullable=False),
        # Helper recognition and fast resolution
        sa.Column("helper_recognition_channel_id", SNOWFLAKE),
        *_template("helper_recognition"),
        sa.Column("fast_resolution_channel_id", SNOWFLAKE),
        *_template("fast_resolution"),
        # Booster thank-you
        sa.Column("booster_enabled", sa.Boolean(), nullable=False),
        sa.Column("booster_channel_id", SNOWFLAKE),
        sa.Column("booster_xp_multiplier", sa.Float(), nullable=False),
        sa.Column("booster_bonus_xp_per_message", sa.Integer(), nullable=False),
        sa.Column("booster_helper_bonus_multiplier", sa.Float(), nullable=False),
        *_template("booster"),
        # Monthly top helper
        sa.Column("monthly_top_helper_enabled", sa.Boolean(), nullable=False),
        sa.Column("monthly_top_helper_channel_id", SNOWFLAKE),
        sa.Column("monthly_top_helper_day", sa.Integer(), nullable=False),
        sa.Column("monthly_top_helper_hour", sa.Integer(), nullable=False),
        sa.Column("monthly_top_helper_first_xp", sa.Integer(), nullable=False),
        sa.Column("monthly_top_helper_second_xp", sa.Integer(), nullable=False),
        sa.Column("monthly_top_helper_third_xp", sa.Integer(), nullable=False),
        *_template("monthly_top_helper"),
        sa.Column("last_monthly_top_helper_run", sa.DateTime(timezone=True)),
        sa.Column("force_monthly_top_helper_run", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "level_roles",
        sa.Column("id", sa.String(36), primary_key=True),
        _guild_id(),
        sa.Column("role_id", SNOWFLAKE, nullable=False),
        sa.Column("xp_required", sa.Integer(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("guild_id", "role_id", name="uq_level_roles_guild_role"),
    )
    op.create_index("ix_level_roles_guild_xp", "level_roles", ["guild_id", "xp_required"])

    op.create_table(
        "member_xp",
        sa.Column("id", sa.String(36), primary_key=True),
        _guild_id(),
        sa.Column("user_id", SNOWFLAKE, nullable=False),
        sa.Column("total_xp", sa.Integer(), nullable=False),
        sa.Column("current_role_id", SNOWFLAKE),
        sa.Column("last_message_at", sa.DateTime(timezone=True)),
        sa.Column("xp_earned_today", sa.Integer(), nullable=False),
        sa.Column("xp_earned_this_hour", sa.Integer(), nullable=False),
        sa.Column("last_hour_reset", sa.DateTime(timezone=True)),
        sa.Column("last_day_reset", sa.DateTime(timezone=True)),
        sa.Column("monthly_helper_count", sa.Integer(), nullable=False),
        sa.Column("last_helper_count_reset", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.UniqueConstraint("guild_id", "user_id", name="uq_member_xp_guild_user"),
    )
    op.create_index("ix_member_xp_guild_total", "member_xp", ["guild_id", "total_xp"])

    op.create_table(
        "onboarding_config",
        _guild_id(primary_key=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("welcome_channel_id", SNOWFLAKE),
        _jsonb("roles_on_join"),
        sa.Column("thread_auto_delete", sa.String(4), nullable=False),
        sa.Column("typing_delay", sa.Integer(), nullable=False),
        sa.Column("show_typing_indicator", sa.Boolean(), nullable=False),
        sa.Column("thread_name_template", sa.String(200), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "welcome_messages",
        sa.Column("id", sa.String(36), primary_key=True),
        _guild_id(),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        _jsonb("selectable_roles"),
        *_timestamps(),
    )
    op.create_index(
        "ix_welcome_messages_guild_order", "welcome_messages", ["guild_id", "order"],
    )

    op.create_table(
        "onboarding_threads",
        sa.Column("thread_id", SNOWFLAKE, primary_key=True),
        _guild_id(),
        sa.Column("user_id", SNOWFLAKE, nullable=False),
        sa.Column("delete_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_onboarding_threads_delete_at", "onboarding_threads", ["delete_at"])

    op.create_table(
        "saved_embed_messages",
        sa.Column("id", sa.String(36), primary_key=True),
        _guild_id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("channel_id", SNOWFLAKE),
        sa.Column("discord_message_id", SNOWFLAKE),
        sa.Column("content", sa.Text()),
        _jsonb("embeds"),
        _jsonb("buttons"),
        *_timestamps(),
    )

    op.create_table(
        "oauth_states",
        sa.Column("state", sa.String(128), primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_oauth_states_created_at", "oauth_states", ["created_at"])

    op.create_table(
        "admin_rate_limit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("admin_id", sa.String(64), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_admin_rate_limit_admin_ts", "admin_rate_limit_events", ["admin_id", "timestamp"],
    )
    op.create_index("ix_admin_rate_limit_ts", "admin_rate_limit_events", ["timestamp"])


def downgrade() -> None:
    """Drop every CozyCore table."""
    op.drop_index("ix_admin_rate_limit_ts", table_name="admin_rate_limit_events")
    op.drop_index("ix_admin_rate_limit_admin_ts", table_name="admin_rate_limit_events")
    op.drop_table("admin_rate_limit_events")
    op.drop_index("ix_oauth_states_created_at", table_name="oauth_states")
    op.drop_table("oauth_states")
    op.drop_table("saved_embed_messages")
    op.drop_index("ix_onboarding_threads_delete_at", table_name="onboarding_threads")
    op.drop_table("onboarding_threads")
    op.drop_index("ix_welcome_messages_guild_order", table_name="welcome_messages")
    op.drop_table("welcome_messages")
    op.drop_table("onboarding_config")
    op.drop_index("ix_member_xp_guild_total", table_name="member_xp")
    op.drop_table("member_xp")
    op.drop_index("ix_level_roles_guild_xp", table_name="level_roles")
    op.drop_table("level_roles")
    op.drop_table("level_config")
    op.drop_table("guilds")
