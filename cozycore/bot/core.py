"""
cozycore.bot.core — Bot Instance & Cog Loader
==============================================

Defines :class:`CozyBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``), DB engine (``bot.engine``) and
   the message XP gate (``bot.gate``) so every Cog reaches them through
   ``self.bot``.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production, controlled by the ``DEV_GUILD_ID`` env var).

The bot serves every guild it is invited to; per-guild behaviour comes
from the database, never from this process's config.
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from cozycore.bot.gateway import DiscordGuildGateway
from cozycore.config import BotConfig
from cozycore.engine.gate import XpGate

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "cozycore.bot.cogs.guilds",
    "cozycore.bot.cogs.leveling",
    "cozycore.bot.cogs.forum",
    "cozycore.bot.cogs.onboarding",
    "cozycore.bot.cogs.boosters",
    "cozycore.bot.cogs.tasks",
]


class CozyBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`BotConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    gate:
        The in-process cooldown / similarity gate.  Defaults to a fresh
        :class:`XpGate` sized from ``cfg.message_history_size``.
    """

    def __init__(self, cfg: BotConfig, engine: Engine, gate: XpGate | None = None) -> None:
        # Privileged intents (enable in the Developer Portal):
        #   MESSAGE_CONTENT — length and similarity checks
        #   GUILD_MEMBERS   — onboarding, booster detection, role changes
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description="CozyCore — levels, onboarding and community helpers",
        )

        self.cfg = cfg
        self.engine = engine
        self.gate = gate or XpGate(history_size=cfg.message_history_size)

    def gateway_for(self, guild_id: str | int) -> DiscordGuildGateway | None:
        """Gateway for a guild the bot is in, or ``None``."""
        guild = self.get_guild(int(guild_id))
        return DiscordGuildGateway(guild) if guild is not None else None

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions.  One broken Cog is logged and skipped."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info(
            "Logged in as %s (ID: %s) in %d guilds",
            self.user.name, self.user.id, len(self.guilds),
        )

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        try:
            if dev_guild_id:
                guild = discord.Object(id=int(dev_guild_id))
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
                logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
            else:
                synced = await self.tree.sync()
                logger.info("Synced %d commands globally", len(synced))
        except discord.HTTPException:
            logger.exception("Slash command sync failed")

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        await super().close()
