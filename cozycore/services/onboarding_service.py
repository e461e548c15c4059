"""
cozycore.services.onboarding_service — Welcome threads
=======================================================

Config and message storage for the onboarding flow, the placeholder
rendering used for thread names and welcome messages, and the tracking
records the cleanup job uses to delete expired threads.

Placeholders: ``{user}`` (mention), ``{username}``, ``{server}``,
``{memberCount}``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Engine, delete, func, select, update

from cozycore.constants import THREAD_NAME_MAX_LENGTH, THREAD_RETENTION_DAYS
from cozycore.database.engine import get_session
from cozycore.database.models import OnboardingConfig, OnboardingThread, WelcomeMessage
from cozycore.services.notifier import render_template, user_mention

logger = logging.getLogger(__name__)

DEFAULT_WELCOME_CONTENT = "Welcome to the server!"
DEFAULT_THREAD_NAME = "Welcome {username}"


class WelcomeMessageNotFound(LookupError):
    pass


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class NewcomerContext:
    user_id: str
    username: str
    server_name: str
    member_count: int


def render_welcome(template: str, ctx: NewcomerContext) -> str:
    return render_template(
        template,
        {
            "user": user_mention(ctx.user_id),
            "server": ctx.server_name,
            "memberCount": ctx.member_count,
            "username": ctx.username,
        },
    )


def thread_name(template: str | None, ctx: NewcomerContext) -> str:
    return render_welcome(template or DEFAULT_THREAD_NAME, ctx)[:THREAD_NAME_MAX_LENGTH]


def retention(thread_auto_delete: str | None) -> timedelta:
    """Unknown values fall back to one day."""
    return timedelta(days=THREAD_RETENTION_DAYS.get(thread_auto_delete or "", 1))


# ---------------------------------------------------------------------------
# Role select menu
# ---------------------------------------------------------------------------
def role_selection_diff(
    selected: list[str], menu_roles: list[str], held: set[str]
) -> tuple[list[str], list[str]]:
    """``(to_add, to_remove)`` so the member holds exactly the selected
    roles out of those offered by the menu."""
    to_add = [r for r in selected if r not in held]
    to_remove = [r for r in menu_roles if r not in selected and r in held]
    return to_add, to_remove


def selection_summary(added: list[str], removed: list[str]) -> str:
    parts = []
    if added:
        parts.append("✅ Added: " + ", ".join(f"**{name}**" for name in added))
    if removed:
        parts.append("🔴 Removed: " + ", ".join(f"**{name}**" for name in removed))
    return "\n".join(parts) or "✨ Your roles are already up to date!"


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def serialize_config(config: OnboardingConfig | None, guild_id: str) -> dict[str, Any]:
    if config is None:
        return {
            "guildId": guild_id,
            "enabled": False,
            "welcomeChannelId": None,
            "rolesOnJoin": [],
            "threadAutoDelete": "1d",
            "typingDelay": 1500,
            "showTypingIndicator": True,
            "threadNameTemplate": DEFAULT_THREAD_NAME,
        }
    return {
        "guildId": config.guild_id,
        "enabled": config.enabled,
        "welcomeChannelId": config.welcome_channel_id,
        "rolesOnJoin": config.roles_on_join or [],
        "threadAutoDelete": config.thread_auto_delete,
        "typingDelay": config.typing_delay,
        "showTypingIndicator": config.show_typing_indicator,
        "threadNameTemplate": config.thread_name_template,
    }


def serialize_message(message: WelcomeMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "guildId": message.guild_id,
        "content": message.content,
        "order": message.order,
        "selectableRoles": message.selectable_roles or [],
    }


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
def get_onboarding(engine: Engine, guild_id: str) -> dict[str, Any]:
    with get_session(engine) as session:
        config = session.get(OnboardingConfig, guild_id)
        messages = session.scalars(
            select(WelcomeMessage)
            .where(WelcomeMessage.guild_id == guild_id)
            .order_by(WelcomeMessage.order)
        ).all()
        return {
            "config": serialize_config(config, guild_id),
            "messages": [serialize_message(m) for m in messages],
        }


def update_onboarding(engine: Engine, guild_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    """Upsert the config; omitted fields keep their stored or default value."""
    if "thread_auto_delete" in changes and changes["thread_auto_delete"] not in THREAD_RETENTION_DAYS:
        raise ValueError("threadAutoDelete must be one of " + ", ".join(THREAD_RETENTION_DAYS))
    if (changes.get("typing_delay") or 0) < 0:
        raise ValueError("typingDelay must not be negative")

    with get_session(engine) as session:
        config = session.get(OnboardingConfig, guild_id)
        if config is None:
            config = OnboardingConfig(
                guild_id=guild_id,
                enabled=False,
                roles_on_join=[],
                thread_auto_delete="1d",
                typing_delay=1500,
                show_typing_indicator=True,
                thread_name_template=DEFAULT_THREAD_NAME,
            )
            session.add(config)
        for key, value in changes.items():
            setattr(config, key, value)
        session.flush()
        logger.info("Onboarding config updated for guild %s", guild_id)
        return serialize_config(config, guild_id)


def load_for_newcomer(
    engine: Engine, guild_id: str
) -> tuple[OnboardingConfig, list[WelcomeMessage]] | None:
    """Config and ordered messages, or ``None`` if onboarding is off."""
    with get_session(engine) as session:
        config = session.get(OnboardingConfig, guild_id)
        if config is None or not config.enabled or not config.welcome_channel_id:
            return None
        messages = session.scalars(
            select(WelcomeMessage)
            .where(WelcomeMessage.guild_id == guild_id)
            .order_by(WelcomeMessage.order)
        ).all()
        return config, list(messages)


# ---------------------------------------------------------------------------
# Welcome messages
# ---------------------------------------------------------------------------
def create_message(
    engine: Engine,
    guild_id: str,
    content: str | None = None,
    order: int | None = None,
    selectable_roles: list[str] | None = None,
) -> dict[str, Any]:
    with get_session(engine) as session:
        if order is None:
            max_order = session.scalar(
                select(func.max(WelcomeMessage.order)).where(WelcomeMessage.guild_id == guild_id)
            )
            order = (max_order + 1) if max_order is not None else 0
        message = WelcomeMessage(
            guild_id=guild_id,
            content=content or DEFAULT_WELCOME_CONTENT,
            order=order,
            selectable_roles=selectable_roles or [],
        )
        session.add(message)
        session.flush()
        return serialize_message(message)


def update_message(
    engine: Engine, guild_id: str, message_id: str, changes: dict[str, Any]
) -> dict[str, Any]:
    with get_session(engine) as session:
        message = session.get(WelcomeMessage, message_id)
        if message is None or message.guild_id != guild_id:
            raise WelcomeMessageNotFound("Message not found")
        for key, value in changes.items():
            setattr(message, key, value)
        session.flush()
        return serialize_message(message)


def delete_message(engine: Engine, guild_id: str, message_id: str) -> None:
    with get_session(engine) as session:
        message = session.get(WelcomeMessage, message_id)
        if message is None or message.guild_id != guild_id:
            raise WelcomeMessageNotFound("Message not found")
        session.delete(message)


def reorder_messages(engine: Engine, guild_id: str, orders: list[tuple[str, int]]) -> None:
    """Apply ``(message_id, order)`` pairs; ids from other guilds are ignored."""
    with get_session(engine) as session:
        for message_id, order in orders:
            session.execute(
                update(WelcomeMessage)
                .where(WelcomeMessage.id == message_id, WelcomeMessage.guild_id == guild_id)
                .values(order=order)
            )


# ---------------------------------------------------------------------------
# Thread tracking
# ---------------------------------------------------------------------------
def record_thread(
    engine: Engine,
    guild_id: str,
    user_id: str,
    thread_id: str,
    thread_auto_delete: str | None,
    now: datetime | None = None,
) -> datetime:
    """Track a new welcome thread and return when it should be deleted."""
    now = now or datetime.now(UTC)
    delete_at = now + retention(thread_auto_delete)
    with get_session(engine) as session:
        session.add(OnboardingThread(
            thread_id=thread_id, guild_id=guild_id, user_id=user_id, delete_at=delete_at,
        ))
    return delete_at


def expired_threads(engine: Engine, now: datetime | None = None) -> list[tuple[str, str]]:
    """``(guild_id, thread_id)`` for every thread past its deletion time."""
    now = now or datetime.now(UTC)
    with get_session(engine) as session:
        rows = session.execute(
            select(OnboardingThread.guild_id, OnboardingThread.thread_id)
            .where(OnboardingThread.delete_at < now)
        ).all()
        return [(r.guild_id, r.thread_id) for r in rows]


def delete_thread_records(engine: Engine, thread_ids: list[str]) -> int:
    if not thread_ids:
        return 0
    with get_session(engine) as session:
        result = session.execute(
            delete(OnboardingThread).where(OnboardingThread.thread_id.in_(thread_ids))
        )
        return result.rowcount
