"""
cozycore.services.embed_service — Saved embed messages
=======================================================

Storage for messages composed in the dashboard's embed builder and the
conversion from the builder's JSON shape to Discord's message payload.

Builder shape (camelCase, as the dashboard sends it)::

    {"title", "titleUrl", "description", "color": "#RRGGBB",
     "author": {"name", "iconUrl", "url"}, "footer": {"text", "iconUrl"},
     "imageUrl", "thumbnailUrl", "fields": [{"name", "value", "inline"}],
     "timestamp": bool}

Only link buttons can be sent without an interaction handler, so every
other button style is dropped at conversion time.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, select

from cozycore.database.engine import get_session
from cozycore.database.models import SavedEmbedMessage

logger = logging.getLogger(__name__)

ACTION_ROW = 1
BUTTON = 2
BUTTON_STYLES = {"primary": 1, "secondary": 2, "success": 3, "danger": 4, "link": 5}
MAX_BUTTONS_PER_ROW = 5


class EmbedNotFound(LookupError):
    pass


# ---------------------------------------------------------------------------
# Payload conversion (pure)
# ---------------------------------------------------------------------------
def parse_color(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value.lstrip("#"), 16)
    except ValueError:
        logger.debug("Ignoring invalid embed colour %r", value)
        return None


def to_discord_embed(data: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    embed: dict[str, Any] = {}
    if data.get("title"):
        embed["title"] = data["title"]
    if data.get("titleUrl"):
        embed["url"] = data["titleUrl"]
    if data.get("description"):
        embed["description"] = data["description"]

    color = parse_color(data.get("color"))
    if color is not None:
        embed["color"] = color

    author = data.get("author")
    if author:
        embed["author"] = {
            "name": author.get("name"),
            "icon_url": author.get("iconUrl"),
            "url": author.get("url"),
        }
    footer = data.get("footer")
    if footer:
        embed["footer"] = {"text": footer.get("text"), "icon_url": footer.get("iconUrl")}
    if data.get("imageUrl"):
        embed["image"] = {"url": data["imageUrl"]}
    if data.get("thumbnailUrl"):
        embed["thumbnail"] = {"url": data["thumbnailUrl"]}

    fields = data.get("fields") or []
    if fields:
        embed["fields"] = [
            {"name": f.get("name"), "value": f.get("value"), "inline": bool(f.get("inline", False))}
            for f in fields
        ]
    if data.get("timestamp"):
        embed["timestamp"] = (now or datetime.now(UTC)).isoformat()
    return embed


def link_button_rows(buttons: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """One action row with up to five link buttons, or nothing."""
    links = [
        b for b in buttons
        if b.get("style") == "link" and b.get("url") and b.get("label")
    ]
    if not links:
        return []
    return [{
        "type": ACTION_ROW,
        "components": [
            {"type": BUTTON, "style": BUTTON_STYLES["link"], "label": b["label"], "url": b["url"]}
            for b in links[:MAX_BUTTONS_PER_ROW]
        ],
    }]


def build_message_payload(
    content: str | None,
    embeds: list[dict[str, Any]] | None,
    buttons: list[dict[str, Any]] | None,
) -> dict[str, Any]:
    """Discord ``POST /channels/{id}/messages`` body.

    Raises ``ValueError`` when there is nothing to send.
    """
    embeds = embeds or []
    buttons = buttons or []
    if not embeds and not content and not buttons:
        raise ValueError("No content, embeds, or buttons to send")

    payload: dict[str, Any] = {}
    if embeds:
        payload["embeds"] = [to_discord_embed(e) for e in embeds]
    if content:
        payload["content"] = content
    components = link_button_rows(buttons)
    if components:
        payload["components"] = components
    return payload


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
def serialize_embed(row: SavedEmbedMessage) -> dict[str, Any]:
    return {
        "id": row.id,
        "guildId": row.guild_id,
        "name": row.name,
        "channelId": row.channel_id,
        "discordMessageId": row.discord_message_id,
        "content": row.content,
        "embeds": row.embeds or [],
        "buttons": row.buttons or [],
    }


def list_embeds(engine: Engine, guild_id: str) -> list[dict[str, Any]]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(SavedEmbedMessage)
            .where(SavedEmbedMessage.guild_id == guild_id)
            .order_by(SavedEmbedMessage.name)
        ).all()
        return [serialize_embed(r) for r in rows]


def _get_owned(session, guild_id: str, embed_id: str) -> SavedEmbedMessage:
    row = session.get(SavedEmbedMessage, embed_id)
    if row is None or row.guild_id != guild_id:
        raise EmbedNotFound("Embed not found")
    return row


def get_embed(engine: Engine, guild_id: str, embed_id: str) -> SavedEmbedMessage:
    with get_session(engine) as session:
        return _get_owned(session, guild_id, embed_id)


def create_embed(
    engine: Engine,
    guild_id: str,
    name: str | None,
    channel_id: str | None = None,
    content: str | None = None,
    embeds: list[dict[str, Any]] | None = None,
    buttons: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    if not name or not name.strip():
        raise ValueError("Name is required")
    with get_session(engine) as session:
        row = SavedEmbedMessage(
            guild_id=guild_id,
            name=name,
            channel_id=channel_id,
            content=content,
            embeds=embeds or [],
            buttons=buttons or [],
        )
        session.add(row)
        session.flush()
        logger.info("Saved embed %r created in guild %s", name, guild_id)
        return serialize_embed(row)


def update_embed(
    engine: Engine, guild_id: str, embed_id: str, changes: dict[str, Any]
) -> dict[str, Any]:
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValueError("Name is required")
    with get_session(engine) as session:
        row = _get_owned(session, guild_id, embed_id)
        for key, value in changes.items():
            setattr(row, key, value)
        session.flush()
        return serialize_embed(row)


def delete_embed(engine: Engine, guild_id: str, embed_id: str) -> None:
    with get_session(engine) as session:
        session.delete(_get_owned(session, guild_id, embed_id))
    logger.info("Saved embed %s deleted in guild %s", embed_id, guild_id)


def set_discord_message(engine: Engine, guild_id: str, embed_id: str, message_id: str) -> None:
    with get_session(engine) as session:
        _get_owned(session, guild_id, embed_id).discord_message_id = message_id
