"""
cozycore.services.forum_service — Forum thread close rewards
=============================================================

When a forum thread is closed with ``/close thread``:

* the owner earns ``xp_on_thread_close`` once somebody else took part,
* the owner may pick one participant as the helper, who earns
  ``helper_bonus_xp`` plus ``fast_resolution_bonus_xp`` when the thread was
  solved within ``fast_resolution_threshold_hours``,
* the helper's monthly counter goes up, and the recognition (and
  fast-resolution) embeds are posted in the thread itself.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from cozycore.database.engine import run_db
from cozycore.engine.caps import as_utc
from cozycore.services.embeds import build_fast_resolution_embed, build_helper_embed
from cozycore.services.level_service import (
    XpSource,
    award_xp,
    fetch_member_quietly,
    increment_helper_count,
)
from cozycore.services.notifier import deliver

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from cozycore.database.models import LevelConfig
    from cozycore.services.gateway import GuildGateway

logger = logging.getLogger(__name__)

MAX_HELPER_OPTIONS = 25


def forum_rewards_apply(config: LevelConfig | None, forum_id: str) -> bool:
    """Whether closing a thread in *forum_id* earns XP at all."""
    if config is None or not config.forum_xp_enabled:
        return False
    whitelist = [str(f) for f in config.whitelisted_forums or []]
    return not whitelist or forum_id in whitelist


def collect_participants(
    authors: Iterable[tuple[str, str, bool]], owner_id: str | None
) -> dict[str, str]:
    """``{user_id: name}`` for every human author except the thread owner.

    *authors* yields ``(user_id, name, is_bot)`` newest first; the first
    name seen for a user wins.
    """
    participants: dict[str, str] = {}
    for user_id, name, is_bot in authors:
        if is_bot or user_id == owner_id:
            continue
        participants.setdefault(user_id, name)
    return participants


def hours_open(created_at: datetime | None, now: datetime) -> float | None:
    if created_at is None:
        return None
    return (now - as_utc(created_at)).total_seconds() / 3600


@dataclass(frozen=True, slots=True)
class HelperBonus:
    total: int
    fast: bool
    hours: float | None


def helper_bonus(config: LevelConfig, hours: float | None) -> HelperBonus:
    fast = (
        config.fast_resolution_enabled
        and hours is not None
        and hours <= config.fast_resolution_threshold_hours
    )
    total = config.helper_bonus_xp + (config.fast_resolution_bonus_xp if fast else 0)
    return HelperBonus(total=total, fast=bool(fast), hours=hours)


async def reward_helper(
    engine: Engine,
    gateway: GuildGateway,
    config: LevelConfig,
    *,
    helper_id: str,
    asker_id: str,
    thread_id: str,
    thread_name: str,
    hours: float | None,
) -> HelperBonus:
    """Pay the helper, count the pick and post the recognition embeds."""
    bonus = helper_bonus(config, hours)
    result = await award_xp(engine, gateway, helper_id, bonus.total, XpSource.HELPER)
    await run_db(increment_helper_count, engine, gateway.guild_id, helper_id)

    helper = await fetch_member_quietly(gateway, helper_id)
    await deliver(
        gateway, thread_id,
        build_helper_embed(config, helper_id, asker_id, thread_name, bonus.total, helper),
    )
    if bonus.fast and bonus.hours is not None:
        await deliver(
            gateway, thread_id,
            build_fast_resolution_embed(
                config, helper_id, asker_id, thread_name, bonus.hours,
                config.fast_resolution_bonus_xp, helper,
            ),
        )
    await result.wait_notifications()
    logger.info(
        "Helper %s rewarded %d XP in guild %s (fast=%s)",
        helper_id, bonus.total, gateway.guild_id, bonus.fast,
    )
    return bonus
