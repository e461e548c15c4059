"""
cozycore.services.level_service — XP Award Engine & Member Ledger
==================================================================

Shared service module callable by both the bot and the dashboard.

The award flow (:func:`award_xp`):

1. **Ledger write** — get-or-create the member row and apply the delta with
   a single ``UPDATE member_xp SET total_xp = total_xp + :delta``.  The
   dashboard path clamps the result at zero in the same statement.  Because
   the increment happens in the database, two awards racing for the same
   member cannot overwrite each other.
2. **Log** — an embed in the guild's log channel, when one is configured.
3. **Role progression** — :func:`cozycore.engine.progression.resolve_role`
   decides; :func:`apply_role_change` adds the new role, removes the old one
   (best-effort) and persists ``current_role_id``.
4. **Notification** — promotion to the congrats channel, demotion and role
   loss to the demotion channel.

Notifications are scheduled with :func:`cozycore.services.notifier.notify`
and returned on :class:`AwardResult` so callers choose whether to wait.
Hourly / daily cap bookkeeping belongs to the message path
(:func:`load_message_context`, :func:`record_message_award`), not here.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import discord
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session

from cozycore.database.engine import get_session, run_db
from cozycore.database.models import LevelConfig, LevelRole, MemberXp
from cozycore.engine.caps import CapBuckets, roll_buckets
from cozycore.engine.progression import (
    RoleResolution,
    RoleStep,
    TransitionKind,
    resolve_role,
)
from cozycore.services.embeds import (
    build_adjust_log_embed,
    build_log_embed,
    build_role_embed,
)
from cozycore.services.notifier import notify

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from cozycore.services.gateway import GuildGateway, MemberProfile

logger = logging.getLogger(__name__)


class XpSource(enum.StrEnum):
    MESSAGE = "message"
    THREAD = "thread"
    HELPER = "helper"
    DASHBOARD = "dashboard"


# ---------------------------------------------------------------------------
# Get-or-create with an explicit outcome
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Existing:
    member: MemberXp


@dataclass(frozen=True, slots=True)
class Created:
    member: MemberXp


def get_or_create_member(session: Session, guild_id: str, user_id: str) -> Existing | Created:
    """Fetch the ledger row, inserting a zeroed one on first use."""
    member = session.scalar(
        select(MemberXp).where(MemberXp.guild_id == guild_id, MemberXp.user_id == user_id)
    )
    if member is not None:
        return Existing(member)
    member = MemberXp(
        guild_id=guild_id,
        user_id=user_id,
        total_xp=0,
        xp_earned_today=0,
        xp_earned_this_hour=0,
        monthly_helper_count=0,
    )
    session.add(member)
    session.flush()
    return Created(member)


# ---------------------------------------------------------------------------
# Sync reads (run via run_db)
# ---------------------------------------------------------------------------
def load_level_config(engine: Engine, guild_id: str) -> LevelConfig | None:
    with get_session(engine) as session:
        return session.get(LevelConfig, guild_id)


def load_role_steps(session: Session, guild_id: str) -> list[RoleStep]:
    rows = session.scalars(
        select(LevelRole)
        .where(LevelRole.guild_id == guild_id)
        .order_by(LevelRole.xp_required, LevelRole.order)
    ).all()
    return [RoleStep(r.role_id, r.xp_required, r.order or 0) for r in rows]


def get_member(engine: Engine, guild_id: str, user_id: str) -> MemberXp | None:
    with get_session(engine) as session:
        return session.scalar(
            select(MemberXp).where(
                MemberXp.guild_id == guild_id, MemberXp.user_id == user_id
            )
        )


# ---------------------------------------------------------------------------
# Ledger write
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LedgerChange:
    old_xp: int
    new_xp: int
    current_role_id: str | None
    created: bool
    config: LevelConfig | None
    roles: list[RoleStep]


def apply_xp_delta(
    engine: Engine,
    guild_id: str,
    user_id: str,
    amount: int,
    *,
    clamp: bool = False,
) -> LedgerChange:
    """Add *amount* to the member's total in one statement.

    With *clamp* the stored total never drops below zero.
    """
    with get_session(engine) as session:
        config = session.get(LevelConfig, guild_id)
        roles = load_role_steps(session, guild_id)
        lookup = get_or_create_member(session, guild_id, user_id)
        member = lookup.member
        old_xp = member.total_xp or 0

        total = MemberXp.total_xp + amount
        if clamp:
            total = case((total < 0, 0), else_=total)
        session.execute(
            update(MemberXp)
            .where(MemberXp.id == member.id)
            .values(total_xp=total)
            .execution_options(synchronize_session=False)
        )
        new_xp = session.scalar(select(MemberXp.total_xp).where(MemberXp.id == member.id))
        if not clamp:
            old_xp = new_xp - amount

        return LedgerChange(
            old_xp=old_xp,
            new_xp=new_xp,
            current_role_id=member.current_role_id,
            created=isinstance(lookup, Created),
            config=config,
            roles=roles,
        )


def set_current_role(engine: Engine, guild_id: str, user_id: str, role_id: str | None) -> None:
    with get_session(engine) as session:
        session.execute(
            update(MemberXp)
            .where(MemberXp.guild_id == guild_id, MemberXp.user_id == user_id)
            .values(current_role_id=role_id)
        )


# ---------------------------------------------------------------------------
# Role mutation
# ---------------------------------------------------------------------------
async def _remove_role_quietly(gateway: GuildGateway, user_id: str, role_id: str) -> None:
    try:
        await gateway.remove_role(user_id, role_id)
    except discord.HTTPException as exc:
        logger.warning(
            "Could not remove role %s from %s in guild %s: %s",
            role_id, user_id, gateway.guild_id, exc,
        )
    except Exception:
        logger.exception(
            "Could not remove role %s from %s in guild %s",
            role_id, user_id, gateway.guild_id,
        )


async def fetch_member_quietly(gateway: GuildGateway, user_id: str) -> MemberProfile | None:
    try:
        return await gateway.fetch_member(user_id)
    except Exception:
        logger.exception("Failed to fetch member %s in guild %s", user_id, gateway.guild_id)
        return None


async def apply_role_change(
    engine: Engine,
    gateway: GuildGateway,
    user_id: str,
    resolution: RoleResolution,
    *,
    auto_remove_previous: bool = True,
) -> bool:
    """Carry out *resolution* on Discord and the ledger.

    The new role is added before the old one is removed, and a failed
    removal never undoes the add.  Returns True when the member's level role
    actually changed.
    """
    guild_id = gateway.guild_id
    previous = resolution.previous_role_id

    if resolution.kind is TransitionKind.UNCHANGED:
        return False

    if resolution.kind is TransitionKind.ROLE_LOSS:
        await run_db(set_current_role, engine, guild_id, user_id, None)
        if auto_remove_previous and previous:
            await _remove_role_quietly(gateway, user_id, previous)
        logger.info("Member %s lost level role %s in guild %s", user_id, previous, guild_id)
        return True

    target = resolution.target
    assert target is not None

    if await fetch_member_quietly(gateway, user_id) is None:
        logger.info("Member %s not in guild %s; role change skipped", user_id, guild_id)
        return False

    try:
        await gateway.add_role(user_id, target.role_id)
    except Exception:
        logger.exception(
            "Failed to assign role %s to %s in guild %s", target.role_id, user_id, guild_id,
        )
        return False
    logger.info("Assigned level role %s to %s in guild %s", target.role_id, user_id, guild_id)

    if auto_remove_previous and previous:
        await _remove_role_quietly(gateway, user_id, previous)

    await run_db(set_current_role, engine, guild_id, user_id, target.role_id)
    return True


# ---------------------------------------------------------------------------
# Award engine
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class AwardResult:
    old_xp: int
    new_xp: int
    role_changed: bool
    resolution: RoleResolution
    notifications: list[asyncio.Task] = field(default_factory=list)

    async def wait_notifications(self) -> list[bool]:
        return list(await asyncio.gather(*self.notifications))


def _role_channel(config: LevelConfig, resolution: RoleResolution) -> str | None:
    if resolution.is_promotion:
        return config.congrats_channel_id
    return config.demotion_channel_id


async def award_xp(
    engine: Engine,
    gateway: GuildGateway,
    user_id: str,
    amount: int,
    source: XpSource | str,
    *,
    admin_name: str | None = None,
    reason: str | None = None,
    rng: random.Random | None = None,
) -> AwardResult:
    """Add *amount* XP to a member and run role progression.

    ``source`` is one of :class:`XpSource`.  Only the dashboard may pass a
    negative amount; its result is clamped at zero.  Ledger failures
    propagate; Discord side effects are best-effort.
    """
    source = XpSource(source)
    user_id = str(user_id)
    clamp = source is XpSource.DASHBOARD

    change = await run_db(
        apply_xp_delta, engine, gateway.guild_id, user_id, amount, clamp=clamp,
    )
    config = change.config
    result = AwardResult(
        old_xp=change.old_xp,
        new_xp=change.new_xp,
        role_changed=False,
        resolution=resolve_role(change.roles, change.current_role_id, change.new_xp),
    )
    logger.info(
        "Awarded %+d XP to %s in guild %s via %s (%d → %d)",
        amount, user_id, gateway.guild_id, source, change.old_xp, change.new_xp,
    )

    log_channel = config.log_channel_id if config else None
    if log_channel and source is not XpSource.DASHBOARD:
        result.notifications.append(notify(
            gateway, log_channel,
            build_log_embed(user_id, amount, change.old_xp, change.new_xp, source, rng=rng),
        ))

    if config is None and source is not XpSource.DASHBOARD:
        return result

    resolution = result.resolution
    result.role_changed = await apply_role_change(
        engine,
        gateway,
        user_id,
        resolution,
        auto_remove_previous=config.auto_remove_previous_role if config else True,
    )

    if result.role_changed and config is not None:
        channel_id = _role_channel(config, resolution)
        if channel_id:
            member = await fetch_member_quietly(gateway, user_id)
            result.notifications.append(notify(
                gateway, channel_id,
                build_role_embed(config, resolution, user_id, member, rng=rng),
            ))

    if log_channel and source is XpSource.DASHBOARD:
        result.notifications.append(notify(
            gateway, log_channel,
            build_adjust_log_embed(
                user_id, amount, change.old_xp, change.new_xp,
                admin_name=admin_name or "Unknown",
                reason=reason,
                resolution=resolution,
                role_changed=result.role_changed,
                rng=rng,
            ),
        ))
    return result


# ---------------------------------------------------------------------------
# Message path bookkeeping
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MessageContext:
    config: LevelConfig
    buckets: CapBuckets


def load_message_context(
    engine: Engine, guild_id: str, user_id: str, now: datetime
) -> MessageContext | None:
    """Config plus the member's cap buckets, rolled forward to *now*.

    Returns ``None`` when leveling is not configured or disabled.
    """
    with get_session(engine) as session:
        config = session.get(LevelConfig, guild_id)
        if config is None or not config.enabled:
            return None
        member = session.scalar(
            select(MemberXp).where(
                MemberXp.guild_id == guild_id, MemberXp.user_id == user_id
            )
        )
        return MessageContext(config, roll_buckets(CapBuckets.from_member(member), now))


def record_message_award(
    engine: Engine,
    guild_id: str,
    user_id: str,
    buckets: CapBuckets,
    now: datetime,
) -> None:
    """Persist post-award cap counters and the last-message stamp."""
    with get_session(engine) as session:
        member = get_or_create_member(session, guild_id, user_id).member
        member.xp_earned_this_hour = buckets.xp_this_hour
        member.xp_earned_today = buckets.xp_today
        member.last_hour_reset = buckets.last_hour_reset
        member.last_day_reset = buckets.last_day_reset
        member.last_message_at = now


# ---------------------------------------------------------------------------
# Helper counters
# ---------------------------------------------------------------------------
def increment_helper_count(engine: Engine, guild_id: str, user_id: str) -> None:
    with get_session(engine) as session:
        member = get_or_create_member(session, guild_id, user_id).member
        session.execute(
            update(MemberXp)
            .where(MemberXp.id == member.id)
            .values(monthly_helper_count=MemberXp.monthly_helper_count + 1)
            .execution_options(synchronize_session=False)
        )


def select_top_helpers(session: Session, guild_id: str, limit: int = 3) -> list[tuple[str, int]]:
    rows = session.execute(
        select(MemberXp.user_id, MemberXp.monthly_helper_count)
        .where(MemberXp.guild_id == guild_id, MemberXp.monthly_helper_count > 0)
        .order_by(MemberXp.monthly_helper_count.desc())
        .limit(limit)
    ).all()
    return [(r.user_id, r.monthly_helper_count) for r in rows]


def clear_helper_counts(session: Session, guild_id: str, now: datetime) -> None:
    session.execute(
        update(MemberXp)
        .where(MemberXp.guild_id == guild_id)
        .values(monthly_helper_count=0, last_helper_count_reset=now)
    )


def top_helpers(engine: Engine, guild_id: str, limit: int = 3) -> list[tuple[str, int]]:
    """Members with the most helper picks this month, best first."""
    with get_session(engine) as session:
        return select_top_helpers(session, guild_id, limit)


def reset_helper_counts(engine: Engine, guild_id: str, now: datetime) -> None:
    with get_session(engine) as session:
        clear_helper_counts(session, guild_id, now)


# ---------------------------------------------------------------------------
# Leaderboard & resets
# ---------------------------------------------------------------------------
def leaderboard_page(
    engine: Engine,
    guild_id: str,
    page: int = 1,
    page_size: int = 25,
    user_ids: list[str] | None = None,
) -> tuple[list[tuple[int, MemberXp]], int]:
    """Return ``([(rank, member), ...], total)`` ordered by XP.

    *user_ids* restricts the page to matching members (search); ranks are
    still positions within the filtered result.
    """
    page = max(1, page)
    offset = (page - 1) * page_size
    with get_session(engine) as session:
        query = select(MemberXp).where(MemberXp.guild_id == guild_id)
        count_query = select(func.count()).select_from(MemberXp).where(
            MemberXp.guild_id == guild_id
        )
        if user_ids is not None:
            query = query.where(MemberXp.user_id.in_(user_ids))
            count_query = count_query.where(MemberXp.user_id.in_(user_ids))

        total = session.scalar(count_query) or 0
        rows = session.scalars(
            query.order_by(MemberXp.total_xp.desc(), MemberXp.user_id)
            .offset(offset)
            .limit(page_size)
        ).all()
        return [(offset + i + 1, row) for i, row in enumerate(rows)], total


def reset_guild_levels(engine: Engine, guild_id: str) -> int:
    """Delete every ledger row and level role for the guild.

    Returns the number of member rows removed.
    """
    with get_session(engine) as session:
        removed = session.execute(delete(MemberXp).where(MemberXp.guild_id == guild_id))
        session.execute(delete(LevelRole).where(LevelRole.guild_id == guild_id))
    logger.info("Reset levels for guild %s (%d members)", guild_id, removed.rowcount)
    return removed.rowcount
