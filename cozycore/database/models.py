"""
cozycore.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- guilds                 — Guilds the bot is installed in (tenant boundary)
- level_config           — Per-guild leveling configuration and templates
- level_roles            — XP thresholds that unlock Discord roles
- member_xp              — Per-guild-per-user XP ledger and rate counters
- onboarding_config      — Per-guild welcome-thread settings
- welcome_messages       — Ordered messages played back in welcome threads
- onboarding_threads     — Welcome threads scheduled for deletion
- saved_embed_messages   — Dashboard-composed embed messages
- oauth_states           — One-time OAuth2 state tokens
- admin_rate_limit_events — Sliding-window log of dashboard mutations

Discord snowflakes are stored as strings so they survive JSON round trips
to the dashboard without precision loss.  Every per-guild table cascades
from ``guilds``: removing the bot from a server wipes its data.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

SNOWFLAKE = String(32)


def _new_id() -> str:
    return str(uuid.uuid4())


def _guild_fk() -> ForeignKey:
    return ForeignKey("guilds.id", ondelete="CASCADE")


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all CozyCore ORM models."""


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ---------------------------------------------------------------------------
# Guilds — one row per server the bot is in
# ---------------------------------------------------------------------------
class Guild(TimestampMixin, Base):
    __tablename__ = "guilds"

    id: Mapped[str] = mapped_column(SNOWFLAKE, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(100), default=None)
    owner_id: Mapped[str] = mapped_column(SNOWFLAKE, nullable=False)
    bot_joined_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    settings: Mapped[dict] = mapped_column(JSONB, default=dict)

    def __repr__(self) -> str:
        return f"<Guild id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# LevelConfig — per-guild leveling rules and notification templates
# ---------------------------------------------------------------------------
class LevelConfig(TimestampMixin, Base):
    """Everything an admin can tune about the XP system for one guild.

    Template columns come in triples: a title, a main description, and a
    list of alternate descriptions picked at random by the notifier.
    """
    __tablename__ = "level_config"

    guild_id: Mapped[str] = mapped_column(SNOWFLAKE, _guild_fk(), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    # Message XP
    min_xp_per_message: Mapped[int] = mapped_column(Integer, default=4)
    max_xp_per_message: Mapped[int] = mapped_column(Integer, default=10)
    cooldown_seconds: Mapped[int] = mapped_column(Integer, default=60)
    max_xp_per_hour: Mapped[int | None] = mapped_column(Integer, default=None)
    max_xp_per_hour_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    max_xp_per_day: Mapped[int | None] = mapped_column(Integer, default=None)
    max_xp_per_day_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    min_message_length: Mapped[int] = mapped_column(Integer, default=5)
    similarity_severity: Mapped[str] = mapped_column(String(10), default="medium")
    whitelisted_channels: Mapped[list] = mapped_column(JSONB, default=list)

    # Forum thread XP
    forum_xp_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    xp_on_thread_close: Mapped[int] = mapped_column(Integer, default=25)
    helper_bonus_xp: Mapped[int] = mapped_column(Integer, default=15)
    auto_archive_hours: Mapped[int] = mapped_column(Integer, default=24)
    fast_resolution_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    fast_resolution_threshold_hours: Mapped[int] = mapped_column(Integer, default=2)
    fast_resolution_bonus_xp: Mapped[int] = mapped_column(Integer, default=10)
    whitelisted_forums: Mapped[list] = mapped_column(JSONB, default=list)

    # Role progression
    auto_remove_previous_role: Mapped[bool] = mapped_column(Boolean, default=True)

    # Notification channels
    congrats_channel_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)
    demotion_channel_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)
    log_channel_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)

    # Role change templates
    promotion_embed_title: Mapped[str] = mapped_column(Text, default="🎉 Level Up!")
    promotion_embed_description: Mapped[str] = mapped_column(
        Text, default="Congratulations {user}, you just earned the {role} role!"
    )
    promotion_embed_descriptions: Mapped[list] = mapped_column(JSONB, default=list)
    demotion_embed_title: Mapped[str] = mapped_column(Text, default="⚠️ Role Change")
    demotion_embed_description: Mapped[str] = mapped_column(
        Text, default="{user} moved from {oldRole} to {newRole}."
    )
    demotion_embed_descriptions: Mapped[list] = mapped_column(JSONB, default=list)
    role_loss_embed_title: Mapped[str] = mapped_column(Text, default="📉 Role Removed")
    role_loss_embed_description: Mapped[str] = mapped_column(
        Text, default="{user} lost the {role} role."
    )
    role_loss_embed_descriptions: Mapped[list] = mapped_column(JSONB, default=list)

    # Roles overview embed
    roles_embed_channel_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)
    roles_embed_message_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)
    roles_embed_title: Mapped[str] = mapped_column(Text, default="🏆 Level Roles")
    roles_embed_description: Mapped[str] = mapped_column(
        Text, default="Earn XP by chatting to unlock these roles!"
    )

    # Helper recognition
    helper_recognition_channel_id: Mapped[str | None] = mapped_column(
        SNOWFLAKE, default=None
    )
    helper_recognition_embed_title: Mapped[str] = mapped_column(
        Text, default="⭐ Helper of the Thread"
    )
    helper_recognition_embed_description: Mapped[str] = mapped_column(
        Text,
        default=(
            "{helper} was marked as the most helpful in this thread! 🙌\n\n"
            "Thanks for taking the time to share your knowledge and solve "
            "{asker}'s problem. The community grows stronger with members "
            "like you!\n\n**Reward:** +{xp} XP"
        ),
    )
    helper_recognition_embed_descriptions: Mapped[list] = mapped_column(
        JSONB, default=list
    )

    # Fast resolution
    fast_resolution_channel_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)
    fast_resolution_embed_title: Mapped[str] = mapped_column(
        Text, default="⚡ Lightning Fast!"
    )
    fast_resolution_embed_description: Mapped[str] = mapped_column(
        Text,
        default=(
            "Wow! {helper} solved this issue in under {hours} hours! 🚀\n\n"
            "Quick, accurate, and incredibly helpful. This is what great "
            "support looks like!\n\n**Bonus Reward:** +{xp} XP"
        ),
    )
    fast_resolution_embed_descriptions: Mapped[list] = mapped_column(
        JSONB, default=list
    )

    # Booster thank-you
    booster_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    booster_channel_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)
    booster_xp_multiplier: Mapped[float] = mapped_column(Float, default=1.5)
    booster_bonus_xp_per_message: Mapped[int] = mapped_column(Integer, default=5)
    booster_helper_bonus_multiplier: Mapped[float] = mapped_column(Float, default=2.0)
    booster_embed_title: Mapped[str] = mapped_column(
        Text, default="💗 Thank You for Boosting!"
    )
    booster_embed_description: Mapped[str] = mapped_column(
        Text,
        default=(
            "{user} just boosted the server! 🎉\n\n"
            "Your support helps keep the server running smoothly and unlocks "
            "awesome perks for everyone. You're amazing!\n\n"
            "**Your Perks:**\n"
            "- {multiplier} XP multiplier on all messages\n"
            "- +{bonusXp} bonus XP per message\n"
            "- {helperBonus} helper recognition bonus\n\n"
            "Thank you for believing in our community! 🌸"
        ),
    )
    booster_embed_descriptions: Mapped[list] = mapped_column(JSONB, default=list)

    # Monthly top helper
    monthly_top_helper_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    monthly_top_helper_channel_id: Mapped[str | None] = mapped_column(
        SNOWFLAKE, default=None
    )
    monthly_top_helper_day: Mapped[int] = mapped_column(Integer, default=1)
    monthly_top_helper_hour: Mapped[int] = mapped_column(Integer, default=12)
    monthly_top_helper_first_xp: Mapped[int] = mapped_column(Integer, default=250)
    monthly_top_helper_second_xp: Mapped[int] = mapped_column(Integer, default=150)
    monthly_top_helper_third_xp: Mapped[int] = mapped_column(Integer, default=100)
    monthly_top_helper_embed_title: Mapped[str] = mapped_column(
        Text, default="🌟 Monthly MVP: Top Helpers!"
    )
    monthly_top_helper_embed_description: Mapped[str] = mapped_column(
        Text,
        default=(
            "Let's celebrate {month}'s most helpful community members! 👏\n\n"
            "🥇 **1st Place:** {first} - {count1} threads solved\n"
            "🥈 **2nd Place:** {second} - {count2} threads solved\n"
            "🥉 **3rd Place:** {third} - {count3} threads solved\n\n"
            "**Rewards:**\n"
            "- 1st: +{firstXp} XP\n"
            "- 2nd: +{secondXp} XP\n"
            "- 3rd: +{thirdXp} XP\n\n"
            "Thank you for making this such a supportive place to learn "
            "and grow! 💚"
        ),
    )
    monthly_top_helper_embed_descriptions: Mapped[list] = mapped_column(
        JSONB, default=list
    )
    last_monthly_top_helper_run: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    force_monthly_top_helper_run: Mapped[bool] = mapped_column(Boolean, default=False)

    def __repr__(self) -> str:
        return f"<LevelConfig guild={self.guild_id} enabled={self.enabled}>"


# ---------------------------------------------------------------------------
# LevelRole — XP threshold → Discord role
# ---------------------------------------------------------------------------
class LevelRole(TimestampMixin, Base):
    __tablename__ = "level_roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    guild_id: Mapped[str] = mapped_column(SNOWFLAKE, _guild_fk(), nullable=False)
    role_id: Mapped[str] = mapped_column(SNOWFLAKE, nullable=False)
    xp_required: Mapped[int] = mapped_column(Integer, nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("guild_id", "role_id", name="uq_level_roles_guild_role"),
        Index("ix_level_roles_guild_xp", "guild_id", "xp_required"),
    )

    def __repr__(self) -> str:
        return f"<LevelRole role={self.role_id} xp={self.xp_required}>"


# ---------------------------------------------------------------------------
# MemberXp — the ledger
# ---------------------------------------------------------------------------
class MemberXp(TimestampMixin, Base):
    """Per-guild-per-user XP ledger.

    Created lazily on the first XP event, never deleted except through the
    guild cascade or a dashboard level reset.
    """
    __tablename__ = "member_xp"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    guild_id: Mapped[str] = mapped_column(SNOWFLAKE, _guild_fk(), nullable=False)
    user_id: Mapped[str] = mapped_column(SNOWFLAKE, nullable=False)
    total_xp: Mapped[int] = mapped_column(Integer, default=0)
    current_role_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    xp_earned_today: Mapped[int] = mapped_column(Integer, default=0)
    xp_earned_this_hour: Mapped[int] = mapped_column(Integer, default=0)
    last_hour_reset: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_day_reset: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    monthly_helper_count: Mapped[int] = mapped_column(Integer, default=0)
    last_helper_count_reset: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        UniqueConstraint("guild_id", "user_id", name="uq_member_xp_guild_user"),
        Index("ix_member_xp_guild_total", "guild_id", "total_xp"),
    )

    def __repr__(self) -> str:
        return f"<MemberXp guild={self.guild_id} user={self.user_id} xp={self.total_xp}>"


# ---------------------------------------------------------------------------
# Onboarding
# ---------------------------------------------------------------------------
class OnboardingConfig(TimestampMixin, Base):
    __tablename__ = "onboarding_config"

    guild_id: Mapped[str] = mapped_column(SNOWFLAKE, _guild_fk(), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    welcome_channel_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)
    roles_on_join: Mapped[list] = mapped_column(JSONB, default=list)
    thread_auto_delete: Mapped[str] = mapped_column(String(4), default="1d")
    typing_delay: Mapped[int] = mapped_column(Integer, default=1500)  # ms
    show_typing_indicator: Mapped[bool] = mapped_column(Boolean, default=True)
    thread_name_template: Mapped[str] = mapped_column(
        String(200), default="Welcome {username}"
    )


class WelcomeMessage(TimestampMixin, Base):
    __tablename__ = "welcome_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    guild_id: Mapped[str] = mapped_column(SNOWFLAKE, _guild_fk(), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0)
    selectable_roles: Mapped[list] = mapped_column(JSONB, default=list)

    __table_args__ = (
        Index("ix_welcome_messages_guild_order", "guild_id", "order"),
    )


class OnboardingThread(Base):
    __tablename__ = "onboarding_threads"

    thread_id: Mapped[str] = mapped_column(SNOWFLAKE, primary_key=True)
    guild_id: Mapped[str] = mapped_column(SNOWFLAKE, _guild_fk(), nullable=False)
    user_id: Mapped[str] = mapped_column(SNOWFLAKE, nullable=False)
    delete_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_onboarding_threads_delete_at", "delete_at"),
    )


# ---------------------------------------------------------------------------
# SavedEmbedMessage — dashboard embed composer
# ---------------------------------------------------------------------------
class SavedEmbedMessage(TimestampMixin, Base):
    """A message (content + embeds + link buttons) composed in the dashboard.

    ``embeds`` and ``buttons`` keep the dashboard's camelCase JSON shape;
    :mod:`cozycore.services.embed_service` converts them to Discord payloads.
    """
    __tablename__ = "saved_embed_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    guild_id: Mapped[str] = mapped_column(SNOWFLAKE, _guild_fk(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    channel_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)
    discord_message_id: Mapped[str | None] = mapped_column(SNOWFLAKE, default=None)
    content: Mapped[str | None] = mapped_column(Text, default=None)
    embeds: Mapped[list] = mapped_column(JSONB, default=list)
    buttons: Mapped[list] = mapped_column(JSONB, default=list)


# ---------------------------------------------------------------------------
# Auth plumbing
# ---------------------------------------------------------------------------
class OAuthState(Base):
    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_oauth_states_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OAuthState state={self.state[:8]!r}...>"


class AdminRateLimitEvent(Base):
    __tablename__ = "admin_rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    admin_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_admin_rate_limit_admin_ts", "admin_id", "timestamp"),
        Index("ix_admin_rate_limit_ts", "timestamp"),
    )
