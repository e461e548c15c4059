"""
cozycore.bot.cogs.guilds — Guild registry sync
===============================================

Keeps the ``guilds`` table equal to the set of servers the bot is in:
upsert on join and on every ready, delete on removal (which cascades to
all of that guild's data).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from cozycore.database.engine import run_db
from cozycore.services.guild_service import (
    GuildSnapshot,
    remove_guild,
    sync_guilds,
    upsert_guild,
)

if TYPE_CHECKING:
    from cozycore.bot.core import CozyBot

logger = logging.getLogger(__name__)


def snapshot_of(guild: discord.Guild) -> GuildSnapshot:
    return GuildSnapshot(
        id=str(guild.id),
        name=guild.name,
        owner_id=str(guild.owner_id),
        icon=guild.icon.key if guild.icon else None,
        joined_at=guild.me.joined_at if guild.me else None,
    )


class Guilds(commands.Cog, name="Guilds"):
    def __init__(self, bot: CozyBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        try:
            created = await run_db(
                sync_guilds, self.bot.engine, [snapshot_of(g) for g in self.bot.guilds],
            )
            logger.info("Guild sync complete: %d guilds, %d new", len(self.bot.guilds), created)
        except Exception:
            logger.exception("Guild sync failed")

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        try:
            await run_db(upsert_guild, self.bot.engine, snapshot_of(guild))
        except Exception:
            logger.exception("Failed to register guild %s", guild.id)

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        try:
            await run_db(remove_guild, self.bot.engine, str(guild.id))
        except Exception:
            logger.exception("Failed to remove guild %s", guild.id)


async def setup(bot: CozyBot) -> None:
    await bot.add_cog(Guilds(bot))
