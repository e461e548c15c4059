"""
cozycore.services.guild_service — Installed guild registry
===========================================================

The ``guilds`` table is the tenant boundary: a row exists exactly while the
bot is in the server.  The bot upserts a row on join and on every connect,
and deletes it on removal, which cascades to every per-guild table.
The dashboard reads it to tell "bot installed" from "invite the bot".
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, delete, select

from cozycore.database.engine import get_session
from cozycore.database.models import Guild

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GuildSnapshot:
    """What the bot knows about a guild when it syncs."""

    id: str
    name: str
    owner_id: str
    icon: str | None = None
    joined_at: datetime | None = None


def upsert_guild(engine: Engine, snapshot: GuildSnapshot) -> bool:
    """Insert or refresh the guild row.  Returns True when it was new."""
    with get_session(engine) as session:
        row = session.get(Guild, snapshot.id)
        created = row is None
        if created:
            row = Guild(
                id=snapshot.id,
                settings={},
                bot_joined_at=snapshot.joined_at or datetime.now(UTC),
            )
            session.add(row)
        row.name = snapshot.name
        row.icon = snapshot.icon
        row.owner_id = snapshot.owner_id
    if created:
        logger.info("Registered guild %s (%s)", snapshot.name, snapshot.id)
    return created


def sync_guilds(engine: Engine, snapshots: Iterable[GuildSnapshot]) -> int:
    """Upsert every guild the bot is in; returns how many were new."""
    return sum(upsert_guild(engine, s) for s in snapshots)


def remove_guild(engine: Engine, guild_id: str) -> bool:
    with get_session(engine) as session:
        result = session.execute(delete(Guild).where(Guild.id == guild_id))
    removed = bool(result.rowcount)
    if removed:
        logger.info("Removed guild %s and its data", guild_id)
    return removed


def get_guild(engine: Engine, guild_id: str) -> Guild | None:
    with get_session(engine) as session:
        return session.get(Guild, guild_id)


def is_installed(engine: Engine, guild_id: str) -> bool:
    return get_guild(engine, guild_id) is not None


def installed_ids(engine: Engine, guild_ids: Iterable[str]) -> set[str]:
    ids = list(guild_ids)
    if not ids:
        return set()
    with get_session(engine) as session:
        return set(session.scalars(select(Guild.id).where(Guild.id.in_(ids))).all())


def serialize_guild(row: Guild, *, is_owner: bool = False) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "icon": row.icon,
        "isOwner": is_owner,
        "botInstalled": True,
        "settings": row.settings or {},
    }


def update_settings(engine: Engine, guild_id: str, settings: dict[str, Any]) -> Guild | None:
    """Shallow-merge *settings* into the guild's settings object."""
    with get_session(engine) as session:
        row = session.get(Guild, guild_id)
        if row is None:
            return None
        row.settings = {**(row.settings or {}), **settings}
        return row
