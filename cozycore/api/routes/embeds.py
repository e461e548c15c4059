"""
cozycore.api.routes.embeds — Saved embed composer
==================================================

CRUD for saved messages and ``POST .../send``, which posts the message to
its channel, or edits the previously posted copy unless ``forceNew``.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from cozycore.api.deps import (
    get_engine,
    get_rest_client,
    ok,
    require_guild_manager,
    require_installed_guild,
)
from cozycore.api.discord_client import DiscordApiError, DiscordRestClient
from cozycore.api.rate_limit import rate_limited_admin
from cozycore.database.engine import run_db
from cozycore.services import embed_service

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/guilds/{guild_id}/embeds",
    tags=["embeds"],
    dependencies=[Depends(rate_limited_admin)],
)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmbedCreate(_CamelModel):
    name: str | None = None
    channel_id: str | None = None
    content: str | None = None
    embeds: list[dict[str, Any]] | None = None
    buttons: list[dict[str, Any]] | None = None


class EmbedUpdate(EmbedCreate):
    pass


class EmbedSend(_CamelModel):
    force_new: bool = False


def _send_error(exc: DiscordApiError) -> HTTPException:
    if exc.status == 403:
        return HTTPException(403, "Bot doesn't have permission to send messages in this channel")
    if exc.status == 404:
        return HTTPException(404, "Channel not found")
    return HTTPException(500, "Failed to send message to Discord")


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
@router.get("")
async def list_embeds(
    guild_id: str,
    guild: dict = Depends(require_guild_manager),
    engine=Depends(get_engine),
):
    return ok(await run_db(embed_service.list_embeds, engine, guild_id))


@router.post("")
async def create_embed(
    guild_id: str,
    body: EmbedCreate,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
):
    try:
        row = await run_db(
            embed_service.create_embed,
            engine, guild_id, body.name, body.channel_id, body.content, body.embeds, body.buttons,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return ok(row)


@router.get("/{embed_id}")
async def get_embed(
    guild_id: str,
    embed_id: str,
    guild: dict = Depends(require_guild_manager),
    engine=Depends(get_engine),
):
    try:
        row = await run_db(embed_service.get_embed, engine, guild_id, embed_id)
    except embed_service.EmbedNotFound as exc:
        raise HTTPException(404, str(exc))
    return ok(embed_service.serialize_embed(row))


@router.patch("/{embed_id}")
async def update_embed(
    guild_id: str,
    embed_id: str,
    body: EmbedUpdate,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
):
    try:
        row = await run_db(
            embed_service.update_embed,
            engine, guild_id, embed_id, body.model_dump(exclude_unset=True),
        )
    except embed_service.EmbedNotFound as exc:
        raise HTTPException(404, str(exc))
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return ok(row)


@router.delete("/{embed_id}")
async def delete_embed(
    guild_id: str,
    embed_id: str,
    guild: dict = Depends(require_guild_manager),
    engine=Depends(get_engine),
):
    try:
        await run_db(embed_service.delete_embed, engine, guild_id, embed_id)
    except embed_service.EmbedNotFound as exc:
        raise HTTPException(404, str(exc))
    return ok()


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------
@router.post("/{embed_id}/send")
async def send_embed(
    guild_id: str,
    embed_id: str,
    body: EmbedSend | None = None,
    guild: dict = Depends(require_installed_guild),
    engine=Depends(get_engine),
    client: DiscordRestClient = Depends(get_rest_client),
):
    force_new = body.force_new if body is not None else False
    try:
        row = await run_db(embed_service.get_embed, engine, guild_id, embed_id)
    except embed_service.EmbedNotFound as exc:
        raise HTTPException(404, str(exc))
    if not row.channel_id:
        raise HTTPException(400, "No channel selected for this embed")
    try:
        payload = embed_service.build_message_payload(row.content, row.embeds, row.buttons)
    except ValueError as exc:
        raise HTTPException(400, str(exc))

    had_message = bool(row.discord_message_id)
    message_id = None
    if had_message and not force_new:
        try:
            await client.edit_message(row.channel_id, row.discord_message_id, payload)
            message_id = row.discord_message_id
        except DiscordApiError as exc:
            if exc.status != 404:
                raise _send_error(exc)
            logger.info("Saved embed %s: previous message is gone, sending a new one", embed_id)

    if message_id is None:
        try:
            message = await client.send_message(row.channel_id, payload)
        except DiscordApiError as exc:
            raise _send_error(exc)
        message_id = str(message["id"])

    await run_db(embed_service.set_discord_message, engine, guild_id, embed_id, message_id)
    return ok({
        "messageId": message_id,
        "channelId": row.channel_id,
        "updated": had_message and not force_new and message_id == row.discord_message_id,
    })
