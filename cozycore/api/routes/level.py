"""
cozycore.api.routes.level — Level config, level roles & roles embed
====================================================================
"""

from __future__ import annotations

import logging
from typing import Literal

import httpx
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import Engine

from cozycore.api.deps import (
    get_engine,
    get_optional_rest_client,
    get_rest_client,
    ok,
    require_guild_manager,
    require_installed_guild,
)
from cozycore.api.discord_client import DiscordApiError, DiscordRestClient
from cozycore.api.rate_limit import rate_limited_admin
from cozycore.database.engine import run_db
from cozycore.services import level_config_service, monthly_helper
from cozycore.services.embeds import build_roles_embed
from cozycore.services.level_service import reset_guild_levels

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/guilds/{guild_id}/level",
    tags=["level"],
    dependencies=[Depends(rate_limited_admin)],
)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LevelConfigUpdate(_CamelModel):
    """Partial update; only fields present in the body are applied."""

    enabled: bool | None = None

    min_xp_per_message: int | None = Field(default=None, ge=0)
    max_xp_per_message: int | None = Field(default=None, ge=0)
    cooldown_seconds: int | None = Field(default=None, ge=0)
    max_xp_per_hour: int | None = Field(default=None, ge=0)
    max_xp_per_hour_enabled: bool | None = None
    max_xp_per_day: int | None = Field(default=None, ge=0)
    max_xp_per_day_enabled: bool | None = None
    min_message_length: int | None = Field(default=None, ge=0)
    similarity_severity: Literal["off", "low", "medium", "high", "strict"] | None = None
    whitelisted_channels: list[str] | None = None

    forum_xp_enabled: bool | None = None
    xp_on_thread_close: int | None = Field(default=None, ge=0)
    helper_bonus_xp: int | None = Field(default=None, ge=0)
    auto_archive_hours: int | None = Field(default=None, ge=0)
    fast_resolution_enabled: bool | None = None
    fast_resolution_threshold_hours: int | None = Field(default=None, ge=0)
    fast_resolution_bonus_xp: int | None = Field(default=None, ge=0)
    whitelisted_forums: list[str] | None = None

    auto_remove_previous_role: bool | None = None

    congrats_channel_id: str | None = None
    demotion_channel_id: str | None = None
    log_channel_id: str | None = None

    promotion_embed_title: str | None = None
    promotion_embed_description: str | None = None
    promotion_embed_descriptions: list[str] | None = None
    demotion_embed_title: str | None = None
    demotion_embed_description: str | None = None
    demotion_embed_descriptions: list[str] | None = None
    role_loss_embed_title: str | None = None
    role_loss_embed_description: str | None = None
    role_loss_embed_descriptions: list[str] | None = None

    roles_embed_title: str | None = None
    roles_embed_description: str | None = None

    helper_recognition_channel_id: str | None = None
    helper_recognition_embed_title: str | None = None
    helper_recognition_embed_description: str | None = None
    helper_recognition_embed_descriptions: list[str] | None = None

    fast_resolution_channel_id: str | None = None
    fast_resolution_embed_title: str | None = None
    fast_resolution_embed_description: str | None = None
    fast_resolution_embed_descriptions: list[str] | None = None

    booster_enabled: bool | None = None
    booster_channel_id: str | None = None
    booster_xp_multiplier: float | None = Field(default=None, ge=0)
    booster_bonus_xp_per_message: int | None = Field(default=None, ge=0)
    booster_helper_bonus_multiplier: float | None = Field(default=None, ge=0)
    booster_embed_title: str | None = None
    booster_embed_description: str | None = None
    booster_embed_descriptions: list[str] | None = None

    monthly_top_helper_enabled: bool | None = None
    monthly_top_helper_channel_id: str | None = None
    monthly_top_helper_day: int | None = Field(default=None, ge=1, le=28)
    monthly_top_helper_hour: int | None = Field(default=None, ge=0, le=23)
    monthly_top_helper_first_xp: int | None = Field(default=None, ge=0)
    monthly_top_helper_second_xp: int | None = Field(default=None, ge=0)
    monthly_top_helper_third_xp: int | None = Field(default=None, ge=0)
    monthly_top_helper_embed_title: str | None = None
    monthly_top_helper_embed_description: str | None = None
    monthly_top_helper_embed_descriptions: list[str] | None = None


class LevelRoleCreate(_CamelModel):
    role_id: str | None = None
    xp_required: int | None = None


class LevelRoleUpdate(_CamelModel):
    xp_required: int | None = None
    order: int | None = None


class RolesEmbedPost(_CamelModel):
    channel_id: str | None = None


# ---------------------------------------------------------------------------
# Roles embed publishing
# ---------------------------------------------------------------------------
async def publish_roles_embed(
    engine: Engine, client: DiscordRestClient, guild_id: str, channel_id: str | None = None
) -> dict[str, str]:
    """Edit the stored roles embed in place, or post a new one."""
    try:
        config, roles = await run_db(level_config_service.load_roles_embed_source, engine, guild_id)
    except LookupError:
        raise HTTPException(404, "Level config not found")

    channel_id = channel_id or config.roles_embed_channel_id
    if not channel_id:
        raise HTTPException(400, "No channel specified")

    payload = {"embeds": [build_roles_embed(config, roles).to_dict()]}
    message_id = None
    if config.roles_embed_message_id and config.roles_embed_channel_id == channel_id:
        try:
            await client.edit_message(channel_id, config.roles_embed_message_id, payload)
            message_id = config.roles_embed_message_id
        except DiscordApiError:
            logger.info("Stored roles embed is gone in guild %s; posting a new one", guild_id)

    if message_id is None:
        try:
            message = await client.send_message(channel_id, payload)
        except DiscordApiError:
            raise HTTPException(500, "Failed to send embed")
        message_id = str(message["id"])

    await run_db(
        level_config_service.set_roles_embed_reference, engine, guild_id, channel_id, message_id,
    )
    return {"channelId": channel_id, "messageId": message_id}


async def refresh_roles_embed(
    engine: Engine, client: DiscordRestClient | None, guild_id: str
) -> bool:
    """Re-render a published roles embed after the role list changed."""
    if client is None:
        return False
    try:
        config, roles = await run_db(level_config_service.load_roles_embed_source, engine, guild_id)
        if not (config.roles_embed_channel_id and config.roles_embed_message_id):
            return False
        await client.edit_message(
            config.roles_embed_channel_id,
            config.roles_embed_message_id,
            {"embeds": [build_roles_embed(config, roles).to_dict()]},
        )
        return True
    except LookupError:
        return False
    except (DiscordApiError, httpx.HTTPError) as exc:
        logger.warning("Could not refresh roles embed in guild %s: %s", guild_id, exc)
        return False


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
@router.get("")
async def get_level(
    guild_id: str,
    guild: dict = Depends(require_guild_manager),
    engine=Depends(get_engine),
):
    return ok(await run_db(level_config_service.get_config_with_roles, engine, guild_id))


@router.patch("")
async def update_level(
    guild_id: str,
    body: LevelConfigUpdate,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
):
    changes = body.model_dump(exclude_unset=True)
    try:
        config = await run_db(level_config_service.update_config, engine, guild_id, changes)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return ok(config)


@router.delete("")
async def reset_level(
    guild_id: str,
    guild: dict = Depends(require_guild_manager),
    engine=Depends(get_engine),
):
    """Wipe every member's XP and all level roles."""
    removed = await run_db(reset_guild_levels, engine, guild_id)
    return ok({"message": "Level system reset successfully", "membersRemoved": removed})


# ---------------------------------------------------------------------------
# Level roles
# ---------------------------------------------------------------------------
@router.post("/roles")
async def create_level_role(
    guild_id: str,
    body: LevelRoleCreate,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
    client: DiscordRestClient | None = Depends(get_optional_rest_client),
):
    try:
        role = await run_db(
            level_config_service.create_role, engine, guild_id, body.role_id, body.xp_required,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    await refresh_roles_embed(engine, client, guild_id)
    return ok(role)


@router.patch("/roles/{level_role_id}")
async def update_level_role(
    guild_id: str,
    level_role_id: str,
    body: LevelRoleUpdate,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
    client: DiscordRestClient | None = Depends(get_optional_rest_client),
):
    try:
        role = await run_db(
            level_config_service.update_role, engine, guild_id, level_role_id,
            body.model_dump(exclude_unset=True),
        )
    except level_config_service.LevelRoleNotFound as exc:
        raise HTTPException(404, str(exc))
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    await refresh_roles_embed(engine, client, guild_id)
    return ok(role)


@router.delete("/roles/{level_role_id}")
async def delete_level_role(
    guild_id: str,
    level_role_id: str,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
    client: DiscordRestClient | None = Depends(get_optional_rest_client),
):
    try:
        await run_db(level_config_service.delete_role, engine, guild_id, level_role_id)
    except level_config_service.LevelRoleNotFound as exc:
        raise HTTPException(404, str(exc))
    await refresh_roles_embed(engine, client, guild_id)
    return ok()


# ---------------------------------------------------------------------------
# Roles embed
# ---------------------------------------------------------------------------
@router.post("/roles-embed")
async def post_roles_embed(
    guild_id: str,
    body: RolesEmbedPost | None = None,
    guild: dict = Depends(require_installed_guild),
    client: DiscordRestClient = Depends(get_rest_client),
    engine=Depends(get_engine),
):
    channel_id = body.channel_id if body is not None else None
    return ok(await publish_roles_embed(engine, client, guild_id, channel_id))


@router.delete("/roles-embed")
async def delete_roles_embed(
    guild_id: str,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
):
    """Forget the published roles embed; the Discord message is left alone."""
    try:
        await run_db(level_config_service.set_roles_embed_reference, engine, guild_id, None, None)
    except LookupError:
        raise HTTPException(404, "Level config not found")
    return ok()


# ---------------------------------------------------------------------------
# Monthly Top Helper
# ---------------------------------------------------------------------------
@router.post("/monthly-helper")
async def force_monthly_helper(
    guild_id: str,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
):
    """Ask the bot to announce on its next scheduler tick."""
    try:
        await run_db(monthly_helper.request_force_run, engine, guild_id)
    except monthly_helper.MonthlyHelperUnavailable as exc:
        raise HTTPException(400, str(exc))
    return ok({"message": "Monthly helper announcement will run on the bot's next check"})
