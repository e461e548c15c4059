"""
cozycore.bot.cogs.leveling — Message XP
========================================

Every guild message from a human runs through, in order:

1. the guild's level config (missing or disabled → nothing happens),
2. the in-process gate (whitelist, length, cooldown, similarity),
3. the hourly / daily caps stored on the ledger row,
4. a random roll in ``[min_xp_per_message, max_xp_per_message]``,
5. the award engine, then the cap counters and the cooldown stamp.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from cozycore.bot.gateway import DiscordGuildGateway
from cozycore.database.engine import run_db
from cozycore.engine.caps import bump, cap_reached
from cozycore.engine.gate import GateRules, XpGate, roll_message_xp
from cozycore.services.level_service import (
    XpSource,
    award_xp,
    load_message_context,
    record_message_award,
)

if TYPE_CHECKING:
    from cozycore.bot.core import CozyBot

logger = logging.getLogger(__name__)


class Leveling(commands.Cog, name="Leveling"):
    """Awards XP for chatting."""

    def __init__(self, bot: CozyBot, gate: XpGate | None = None) -> None:
        self.bot = bot
        self.gate = gate or getattr(bot, "gate", None) or XpGate()

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        try:
            await self.handle_message(message)
        except Exception:
            logger.exception("Error processing message %s", message.id)

    async def handle_message(self, message: discord.Message) -> int | None:
        """Run the message XP pipeline.  Returns the XP awarded, if any."""
        if message.author.bot or message.guild is None:
            return None

        guild_id = str(message.guild.id)
        user_id = str(message.author.id)
        now = datetime.now(UTC)

        context = await run_db(load_message_context, self.bot.engine, guild_id, user_id, now)
        if context is None:
            return None
        config = context.config

        if self.gate.should_suppress(
            guild_id, user_id, message.channel.id, message.content,
            GateRules.from_config(config),
        ):
            return None
        if cap_reached(context.buckets, config):
            logger.debug("XP cap reached for %s in guild %s", user_id, guild_id)
            return None

        amount = roll_message_xp(config.min_xp_per_message, config.max_xp_per_message)
        await award_xp(
            self.bot.engine, DiscordGuildGateway(message.guild), user_id, amount, XpSource.MESSAGE,
        )
        await run_db(
            record_message_award, self.bot.engine, guild_id, user_id,
            bump(context.buckets, amount), now,
        )
        self.gate.mark_awarded(guild_id, user_id)
        return amount


async def setup(bot: CozyBot) -> None:
    await bot.add_cog(Leveling(bot, gate=bot.gate))
