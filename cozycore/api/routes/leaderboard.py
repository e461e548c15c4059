"""
cozycore.api.routes.leaderboard — Ranked members & manual XP adjustment
========================================================================

Manual adjustments go through the same award engine as the bot, so role
progression, notifications and the log channel behave identically; the
only difference is that the dashboard may subtract XP (clamped at zero).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from cozycore.api.deps import (
    get_current_user,
    get_engine,
    get_optional_rest_client,
    get_rest_client,
    ok,
    require_guild_manager,
    require_installed_guild,
)
from cozycore.api.discord_client import DiscordApiError, DiscordRestClient, RestGuildGateway
from cozycore.api.rate_limit import rate_limited_admin
from cozycore.database.engine import run_db
from cozycore.database.models import MemberXp
from cozycore.services.level_service import XpSource, award_xp, get_member, leaderboard_page

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/guilds/{guild_id}/leaderboard",
    tags=["leaderboard"],
    dependencies=[Depends(rate_limited_admin)],
)

MAX_PAGE_SIZE = 100


class XpAdjust(BaseModel):
    amount: int
    reason: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def serialize_member(row: MemberXp) -> dict[str, Any]:
    return {
        "id": row.id,
        "guildId": row.guild_id,
        "userId": row.user_id,
        "totalXp": row.total_xp,
        "currentRoleId": row.current_role_id,
        "xpEarnedToday": row.xp_earned_today,
        "xpEarnedThisHour": row.xp_earned_this_hour,
        "monthlyHelperCount": row.monthly_helper_count,
        "lastMessageAt": row.last_message_at.isoformat() if row.last_message_at else None,
    }


async def _discord_user(client: DiscordRestClient | None, user_id: str) -> dict[str, Any] | None:
    if client is None:
        return None
    try:
        return await client.get_user(user_id)
    except DiscordApiError:
        return None


async def _matching_user_ids(
    client: DiscordRestClient | None, guild_id: str, search: str
) -> list[str]:
    """Members whose name matches *search*; without a bot token only an exact id matches."""
    if client is None:
        return [search]
    try:
        members = await client.search_members(guild_id, search)
    except DiscordApiError:
        return [search]
    return [str(m["user"]["id"]) for m in members if m.get("user")] + [search]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("")
async def get_leaderboard(
    guild_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=MAX_PAGE_SIZE, alias="pageSize"),
    search: str = "",
    guild: dict = Depends(require_guild_manager),
    engine=Depends(get_engine),
    client: DiscordRestClient | None = Depends(get_optional_rest_client),
):
    user_ids = await _matching_user_ids(client, guild_id, search.strip()) if search.strip() else None
    rows, total = await run_db(leaderboard_page, engine, guild_id, page, page_size, user_ids)
    profiles = await asyncio.gather(*(_discord_user(client, row.user_id) for _, row in rows))

    users = []
    for (rank, row), profile in zip(rows, profiles):
        profile = profile or {}
        users.append({
            "rank": rank,
            "userId": row.user_id,
            "username": profile.get("username", "Unknown"),
            "displayName": profile.get("global_name") or profile.get("username", "Unknown"),
            "avatar": profile.get("avatar"),
            "currentRoleId": row.current_role_id,
            "totalXp": row.total_xp,
        })
    return ok({"users": users, "total": total, "page": page, "pageSize": page_size})


@router.get("/{user_id}")
async def get_member_xp(
    guild_id: str,
    user_id: str,
    guild: dict = Depends(require_guild_manager),
    engine=Depends(get_engine),
):
    row = await run_db(get_member, engine, guild_id, user_id)
    if row is None:
        raise HTTPException(404, "User not found")
    return ok(serialize_member(row))


@router.patch("/{user_id}")
async def adjust_member_xp(
    guild_id: str,
    user_id: str,
    body: XpAdjust,
    guild: dict = Depends(require_installed_guild),
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
    client: DiscordRestClient = Depends(get_rest_client),
):
    """Add or subtract XP and run role progression."""
    result = await award_xp(
        engine,
        RestGuildGateway(guild_id, client),
        user_id,
        body.amount,
        XpSource.DASHBOARD,
        admin_name=user.get("username") or "Unknown",
        reason=body.reason,
    )
    await result.wait_notifications()
    logger.info(
        "Dashboard XP adjust by %s: %s %+d in guild %s", user["sub"], user_id, body.amount, guild_id,
    )
    return ok({"oldXp": result.old_xp, "newXp": result.new_xp, "roleChanged": result.role_changed})
