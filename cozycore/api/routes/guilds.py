"""
cozycore.api.routes.guilds — Guild list, summary & Discord resources
=====================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from cozycore.api.deps import (
    get_engine,
    get_rest_client,
    get_user_guilds,
    ok,
    require_guild_manager,
    require_installed_guild,
)
from cozycore.api.discord_client import DiscordApiError, DiscordRestClient
from cozycore.api.rate_limit import rate_limited_admin
from cozycore.constants import has_manage_guild_permission
from cozycore.database.engine import run_db
from cozycore.services import guild_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/guilds", tags=["guilds"], dependencies=[Depends(rate_limited_admin)])

# Text, announcement and forum channels
RESOURCE_CHANNEL_TYPES = frozenset({0, 5, 15})
MEMBER_SEARCH_LIMIT = 25


class GuildSettingsUpdate(BaseModel):
    settings: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def filter_channels(channels: list[dict[str, Any]]) -> list[dict[str, Any]]:
    rows = [
        {"id": c["id"], "name": c.get("name"), "type": c["type"], "position": c.get("position", 0)}
        for c in channels
        if c.get("type") in RESOURCE_CHANNEL_TYPES
    ]
    return sorted(rows, key=lambda c: c["position"])


def filter_roles(roles: list[dict[str, Any]]) -> list[dict[str, Any]]:
    rows = [
        {
            "id": r["id"],
            "name": r["name"],
            "color": r.get("color", 0),
            "position": r.get("position", 0),
            "managed": False,
        }
        for r in roles
        if r.get("name") != "@everyone" and not r.get("managed")
    ]
    return sorted(rows, key=lambda r: r["position"], reverse=True)


def member_summary(member: dict[str, Any]) -> dict[str, Any]:
    user = member["user"]
    return {
        "id": user["id"],
        "username": user.get("username", "Unknown"),
        "displayName": member.get("nick") or user.get("global_name") or user.get("username", "Unknown"),
        "avatar": user.get("avatar"),
    }


# ---------------------------------------------------------------------------
# Guilds
# ---------------------------------------------------------------------------
@router.get("")
async def list_guilds(
    user_guilds: list[dict[str, Any]] = Depends(get_user_guilds),
    engine=Depends(get_engine),
):
    """Guilds the user can manage, flagged with whether the bot is in them."""
    manageable = [g for g in user_guilds if has_manage_guild_permission(g.get("permissions"))]
    installed = await run_db(guild_service.installed_ids, engine, [str(g["id"]) for g in manageable])
    return ok([
        {
            "id": str(g["id"]),
            "name": g.get("name"),
            "icon": g.get("icon"),
            "owner": bool(g.get("owner")),
            "permissions": g.get("permissions"),
            "botInstalled": str(g["id"]) in installed,
        }
        for g in manageable
    ])


@router.get("/{guild_id}")
async def get_guild(
    guild_id: str,
    guild: dict[str, Any] = Depends(require_guild_manager),
    engine=Depends(get_engine),
):
    row = await run_db(guild_service.get_guild, engine, guild_id)
    return ok({
        "id": guild_id,
        "name": guild.get("name"),
        "icon": guild.get("icon"),
        "isOwner": bool(guild.get("owner")),
        "botInstalled": row is not None,
        "settings": (row.settings if row is not None else None) or {},
    })


@router.patch("/{guild_id}")
async def update_guild(
    guild_id: str,
    body: GuildSettingsUpdate,
    guild: dict[str, Any] = Depends(require_installed_guild),
    engine=Depends(get_engine),
):
    row = await run_db(guild_service.update_settings, engine, guild_id, body.settings)
    if row is None:
        raise HTTPException(400, "Bot is not installed in this server")
    return ok(guild_service.serialize_guild(row, is_owner=bool(guild.get("owner"))))


# ---------------------------------------------------------------------------
# Discord resources
# ---------------------------------------------------------------------------
@router.get("/{guild_id}/resources")
async def get_resources(
    guild_id: str,
    guild: dict[str, Any] = Depends(require_installed_guild),
    client: DiscordRestClient = Depends(get_rest_client),
):
    """Channels and assignable roles for the dashboard pickers."""
    try:
        channels, roles = await asyncio.gather(
            client.get_channels(guild_id), client.get_roles(guild_id),
        )
    except DiscordApiError:
        raise HTTPException(500, "Failed to fetch guild resources")
    return ok({"channels": filter_channels(channels), "roles": filter_roles(roles)})


@router.get("/{guild_id}/members")
async def search_members(
    guild_id: str,
    search: str = "",
    guild: dict[str, Any] = Depends(require_guild_manager),
    client: DiscordRestClient = Depends(get_rest_client),
):
    try:
        members = await client.search_members(guild_id, search.lower(), MEMBER_SEARCH_LIMIT)
    except DiscordApiError:
        raise HTTPException(500, "Failed to search members")
    return ok([member_summary(m) for m in members if m.get("user")])
