"""
cozycore.services.monthly_helper — Monthly Top Helper job
==========================================================

Once a month (configured day-of-month and hour, UTC) every guild with the
feature enabled celebrates its three most-picked forum helpers: each gets a
configured XP reward through the award engine, an announcement embed goes
out, and everyone's helper counter starts again from zero.

The scheduler polls :func:`check_all` every minute.  :func:`should_run`
keeps the payout to once per calendar month unless the dashboard forced a
run with :func:`request_force_run`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update

from cozycore.constants import MONTH_NAMES
from cozycore.database.engine import get_session, run_db
from cozycore.database.models import LevelConfig
from cozycore.engine.caps import as_utc
from cozycore.services import level_service
from cozycore.services.embeds import build_monthly_embed
from cozycore.services.level_service import XpSource, award_xp
from cozycore.services.notifier import deliver

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from cozycore.services.gateway import GuildGateway

logger = logging.getLogger(__name__)

FORCE_RUN_SENTINEL = datetime(2000, 1, 1, tzinfo=UTC)


class MonthlyHelperUnavailable(ValueError):
    """The guild cannot run the monthly announcement as configured."""


# ---------------------------------------------------------------------------
# Scheduling decision (pure)
# ---------------------------------------------------------------------------
def should_run(config: LevelConfig, now: datetime) -> bool:
    """Return True if *config*'s announcement is due at *now* (UTC)."""
    if config.force_monthly_top_helper_run:
        return True
    if config.monthly_top_helper_day != now.day:
        return False
    if config.monthly_top_helper_hour != now.hour:
        return False
    last_run = as_utc(config.last_monthly_top_helper_run)
    return not (
        last_run is not None
        and (last_run.year, last_run.month) == (now.year, now.month)
    )


# ---------------------------------------------------------------------------
# Sync DB helpers (run via run_db)
# ---------------------------------------------------------------------------
def enabled_configs(engine: Engine) -> list[LevelConfig]:
    with get_session(engine) as session:
        return list(session.scalars(
            select(LevelConfig).where(LevelConfig.monthly_top_helper_enabled.is_(True))
        ).all())


def close_month(engine: Engine, guild_id: str, now: datetime) -> list[tuple[str, int]]:
    """Snapshot the top three helpers, zero the counters and stamp the run.

    Commits before any reward is paid.
    """
    with get_session(engine) as session:
        helpers = level_service.select_top_helpers(session, guild_id, 3)
        level_service.clear_helper_counts(session, guild_id, now)
        session.execute(
            update(LevelConfig)
            .where(LevelConfig.guild_id == guild_id)
            .values(last_monthly_top_helper_run=now, force_monthly_top_helper_run=False)
        )
    return helpers


def request_force_run(engine: Engine, guild_id: str, now: datetime | None = None) -> None:
    """Make the next scheduler tick announce immediately.

    Raises :class:`MonthlyHelperUnavailable` when the feature is disabled or
    has no announcement channel.
    """
    now = now or datetime.now(UTC)
    with get_session(engine) as session:
        config = session.get(LevelConfig, guild_id)
        if config is None or not config.monthly_top_helper_enabled:
            raise MonthlyHelperUnavailable("Monthly Top Helper is not enabled")
        if not config.monthly_top_helper_channel_id:
            raise MonthlyHelperUnavailable("No announcement channel configured")
        config.force_monthly_top_helper_run = True
        config.last_monthly_top_helper_run = FORCE_RUN_SENTINEL
        config.monthly_top_helper_day = now.day
        config.monthly_top_helper_hour = now.hour
    logger.info("Monthly top helper run forced for guild %s", guild_id)


# ---------------------------------------------------------------------------
# Announcement
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MonthlyRun:
    guild_id: str
    helpers: list[tuple[str, int]]
    announced: bool


async def run_for_guild(
    engine: Engine,
    gateway: GuildGateway,
    config: LevelConfig,
    now: datetime | None = None,
) -> MonthlyRun | None:
    """Pay out and announce this month's top helpers for one guild.

    Returns ``None`` (and leaves the schedule untouched) when there is no
    announcement channel.
    """
    now = now or datetime.now(UTC)
    guild_id = config.guild_id
    channel_id = config.monthly_top_helper_channel_id
    if not channel_id:
        logger.warning("Monthly top helper enabled without a channel in guild %s", guild_id)
        return None

    helpers = await run_db(close_month, engine, guild_id, now)
    if not helpers:
        logger.info("No helpers this month in guild %s", guild_id)
        return MonthlyRun(guild_id, [], announced=False)

    rewards = [
        config.monthly_top_helper_first_xp,
        config.monthly_top_helper_second_xp,
        config.monthly_top_helper_third_xp,
    ]
    for (user_id, _count), reward in zip(helpers, rewards, strict=False):
        if reward and reward > 0:
            result = await award_xp(engine, gateway, user_id, reward, XpSource.HELPER)
            await result.wait_notifications()

    embed = build_monthly_embed(config, helpers, rewards, MONTH_NAMES[now.month - 1])
    announced = await deliver(gateway, channel_id, embed)
    logger.info(
        "Monthly top helpers announced for guild %s: %s",
        guild_id, ", ".join(uid for uid, _ in helpers),
    )
    return MonthlyRun(guild_id, helpers, announced=announced)


async def check_all(
    engine: Engine,
    gateway_for: Callable[[str], GuildGateway | None],
    now: datetime | None = None,
) -> list[MonthlyRun]:
    """Run every due guild.  One guild failing does not stop the others.

    *gateway_for* maps a guild id to a gateway, or ``None`` when the bot is
    no longer in that guild.
    """
    now = now or datetime.now(UTC)
    runs: list[MonthlyRun] = []
    for config in await run_db(enabled_configs, engine):
        if not should_run(config, now):
            continue
        gateway = gateway_for(config.guild_id)
        if gateway is None:
            continue
        try:
            run = await run_for_guild(engine, gateway, config, now)
        except Exception:
            logger.exception("Monthly top helper run failed for guild %s", config.guild_id)
            continue
        if run is not None:
            runs.append(run)
    return runs
